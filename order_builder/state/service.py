"""
Order State Service

Owns the live order state of every flow for one client and keeps it in two
places:
    - the local state cache, written synchronously on every save
    - the remote store, written (debounced) while a user is signed in

It also carries the edit-draft pattern: a section of the order is edited on
an isolated copy and committed only when that section validates.

Identity lifecycle:
    sign_in(identity)
        1. handoff: a local copy holding customer data is pushed to the
           remote record of the new identity; otherwise a stored remote
           copy is adopted
        2. empty contact fields are prefilled from the profile
        3. one live subscription per flow is opened
    sign_out()
        pending remote writes are flushed and subscriptions closed; later
        writes are local only

Remote failures are logged and never reach the caller: the local copy
stays authoritative for the session.
"""

import logging
import uuid
from collections import defaultdict
from typing import Any, Callable, Optional

from order_builder.core.config import Settings, get_settings
from order_builder.exceptions import DraftNotFoundError, UnknownFlowError
from order_builder.schemas import DraftResult
from order_builder.state.debounce import Debouncer
from order_builder.state.defaults import (
    DEFAULT_STATES,
    deep_clone,
    deep_merge,
    default_state,
    derive_pricing,
    has_user_data,
)
from order_builder.state.identity import Identity
from order_builder.state.local_cache import LocalStateCache
from order_builder.state.remote import get_remote_store
from order_builder.state.remote.base import (
    BaseRemoteStore,
    RemoteRecord,
    RemoteStoreError,
    RemoteSubscription,
)
from order_builder.state.sections import SectionValidator, validate_section

logger = logging.getLogger(__name__)

StateListener = Callable[[dict[str, Any]], None]


class OrderStateService:
    """
    Dual-persisted, identity-aware order state.

    Attributes:
        remote_store: Remote backend used while signed in
        local_cache: File-backed versioned cache
        client_id: Tags remote writes so their echoes are ignored
        identity: The signed-in user, or None
    """

    def __init__(
        self,
        remote_store: Optional[BaseRemoteStore] = None,
        local_cache: Optional[LocalStateCache] = None,
        settings: Optional[Settings] = None,
        client_id: Optional[str] = None,
        section_validators: Optional[dict[str, SectionValidator]] = None,
    ):
        settings = settings or get_settings()
        self.version = settings.state_version
        self.storage_prefix = settings.storage_prefix
        self.debounce_seconds = settings.remote_write_debounce_seconds
        self.tax_rate = settings.tax_rate

        self.remote_store = remote_store if remote_store is not None else get_remote_store()
        self.local_cache = local_cache or LocalStateCache(
            settings.local_cache_directory,
            version=self.version,
            ttl_seconds=settings.local_state_ttl_seconds,
            lock_timeout=settings.local_cache_lock_timeout,
        )
        self.client_id = client_id or uuid.uuid4().hex
        self.section_validators = section_validators
        self.identity: Optional[Identity] = None

        self._states: dict[str, dict[str, Any]] = {}
        self._drafts: dict[str, dict[str, Any]] = {}
        self._listeners: dict[str, list[StateListener]] = defaultdict(list)
        self._debouncers: dict[str, Debouncer] = {}
        self._subscriptions: dict[str, RemoteSubscription] = {}

    def storage_key(self, flow_type: str) -> str:
        return f"{self.storage_prefix}-{flow_type}"

    @staticmethod
    def _check_flow(flow_type: str) -> None:
        if flow_type not in DEFAULT_STATES:
            raise UnknownFlowError(flow_type)

    # =========================================================================
    # LOAD / SAVE
    # =========================================================================

    def _ensure_loaded(self, flow_type: str) -> dict[str, Any]:
        """Live state of a flow, read from the local cache on first access."""
        self._check_flow(flow_type)
        if flow_type in self._states:
            return self._states[flow_type]

        stored = self.local_cache.load(self.storage_key(flow_type))
        if isinstance(stored, dict):
            state = stored
        else:
            state = default_state(flow_type)
            self.local_cache.save(self.storage_key(flow_type), state)

        self._states[flow_type] = state
        return state

    async def load_state(self, flow_type: str) -> dict[str, Any]:
        """
        Load a flow's state from the best available source.

        Signed in, a remote record of the running version wins and is cached
        locally. Otherwise the local copy is used, then the defaults.
        Subscribers are not notified.

        Raises:
            UnknownFlowError: If the flow has no registered defaults
        """
        self._check_flow(flow_type)

        if self.identity is not None:
            record = await self._fetch_remote(flow_type, self.identity)
            if record is not None:
                self._states[flow_type] = deep_clone(record.state)
                self.local_cache.save(self.storage_key(flow_type), record.state)
                return deep_clone(record.state)

        self._states.pop(flow_type, None)
        return deep_clone(self._ensure_loaded(flow_type))

    def get_state(self, flow_type: str) -> dict[str, Any]:
        return deep_clone(self._ensure_loaded(flow_type))

    def save_state(
        self,
        flow_type: str,
        updates: dict[str, Any],
        notify: bool = True,
        replace: bool = False,
    ) -> dict[str, Any]:
        """
        Merge updates into the live state and persist it.

        The local write happens now; the remote write is debounced and only
        happens while signed in.

        Args:
            flow_type: Flow to update
            updates: Partial state, deep-merged (lists replace)
            notify: Whether subscribers hear about the change
            replace: Store updates as the whole state instead of merging

        Returns:
            A copy of the new state
        """
        current = self._ensure_loaded(flow_type)
        state = deep_clone(updates) if replace else deep_merge(current, updates)
        state = derive_pricing(flow_type, state, self.tax_rate)

        self._states[flow_type] = state
        self.local_cache.save(self.storage_key(flow_type), state)

        if self.identity is not None:
            self._schedule_remote_write(flow_type)
        if notify:
            self._notify(flow_type)

        return deep_clone(state)

    async def clear_state(self, flow_type: str) -> dict[str, Any]:
        """Reset a flow to its defaults everywhere it is stored."""
        self._check_flow(flow_type)

        debouncer = self._debouncers.get(flow_type)
        if debouncer is not None:
            debouncer.cancel()
        self._drafts.pop(flow_type, None)
        self.local_cache.remove(self.storage_key(flow_type))

        state = default_state(flow_type)
        self._states[flow_type] = state
        self.local_cache.save(self.storage_key(flow_type), state)

        if self.identity is not None:
            try:
                await self.remote_store.delete(self.identity.uid, flow_type)
            except RemoteStoreError as e:
                logger.warning(f"Remote delete failed for {flow_type}: {e}")

        logger.info(f"Cleared {flow_type} state")
        self._notify(flow_type)
        return deep_clone(state)

    # =========================================================================
    # SUBSCRIPTIONS
    # =========================================================================

    def subscribe(self, flow_type: str, listener: StateListener) -> Callable[[], None]:
        """Register a listener for a flow; returns a function that removes it."""
        self._check_flow(flow_type)
        self._listeners[flow_type].append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners[flow_type]:
                self._listeners[flow_type].remove(listener)

        return unsubscribe

    def _notify(self, flow_type: str) -> None:
        state = self._states.get(flow_type)
        if state is None:
            return
        for listener in list(self._listeners.get(flow_type, [])):
            try:
                listener(deep_clone(state))
            except Exception:
                logger.exception(f"State listener failed for {flow_type}")

    # =========================================================================
    # DRAFTS
    # =========================================================================

    def create_draft(self, flow_type: str) -> dict[str, Any]:
        """Start editing on an isolated copy of the live state."""
        current = self._ensure_loaded(flow_type)
        self._drafts[flow_type] = deep_clone(current)
        return deep_clone(current)

    def update_draft(self, flow_type: str, updates: dict[str, Any]) -> dict[str, Any]:
        """
        Raises:
            DraftNotFoundError: If create_draft() was not called first
        """
        if flow_type not in self._drafts:
            raise DraftNotFoundError(flow_type)
        self._drafts[flow_type] = deep_merge(self._drafts[flow_type], updates)
        return deep_clone(self._drafts[flow_type])

    def get_draft(self, flow_type: str) -> Optional[dict[str, Any]]:
        draft = self._drafts.get(flow_type)
        return deep_clone(draft) if draft is not None else None

    def has_draft(self, flow_type: str) -> bool:
        return flow_type in self._drafts

    def apply_draft(self, flow_type: str, section: Optional[str] = None) -> DraftResult:
        """
        Commit the draft if the edited section validates.

        On failure the live state is untouched and the draft is kept so the
        customer can correct it.

        Raises:
            DraftNotFoundError: If no draft exists for the flow
        """
        draft = self._drafts.get(flow_type)
        if draft is None:
            raise DraftNotFoundError(flow_type)

        errors = validate_section(section, draft, self.section_validators)
        if errors:
            logger.info(f"Draft for {flow_type} rejected ({section}): {len(errors)} error(s)")
            return DraftResult(is_valid=False, errors=errors)

        self.save_state(flow_type, draft)
        del self._drafts[flow_type]
        logger.info(f"Draft for {flow_type} applied ({section or 'all sections'})")
        return DraftResult(is_valid=True)

    def discard_draft(self, flow_type: str) -> None:
        self._drafts.pop(flow_type, None)

    # =========================================================================
    # REMOTE SYNC
    # =========================================================================

    def _schedule_remote_write(self, flow_type: str) -> None:
        identity = self.identity
        debouncer = self._debouncers.get(flow_type)
        if debouncer is None:
            debouncer = Debouncer(self.debounce_seconds)
            self._debouncers[flow_type] = debouncer
        debouncer.schedule(lambda: self._push_remote(flow_type, identity))

    async def _push_remote(self, flow_type: str, identity: Identity) -> None:
        """Write the state current at call time to the remote record."""
        state = self._states.get(flow_type)
        if state is None:
            return
        record = RemoteRecord(
            flow_type=flow_type,
            identity=identity.uid,
            version=self.version,
            state=deep_clone(state),
            origin=self.client_id,
        )
        try:
            await self.remote_store.put(record)
            logger.debug(f"Remote write for {flow_type} ({identity.uid})")
        except RemoteStoreError as e:
            logger.warning(f"Remote write failed for {flow_type}; keeping local copy: {e}")

    async def _fetch_remote(self, flow_type: str, identity: Identity) -> Optional[RemoteRecord]:
        try:
            record = await self.remote_store.get(identity.uid, flow_type)
        except RemoteStoreError as e:
            logger.warning(f"Remote read failed for {flow_type}; using local copy: {e}")
            return None

        if record is not None and record.version != self.version:
            logger.info(f"Ignoring remote {flow_type} (version {record.version} ≠ {self.version})")
            return None
        return record

    def _on_remote_record(self, record: RemoteRecord) -> None:
        """Apply a record written by another client for the signed-in user."""
        if record.origin == self.client_id:
            return
        if self.identity is None or record.identity != self.identity.uid:
            return
        if record.version != self.version:
            logger.info(f"Dropped remote update for {record.flow_type} (version {record.version})")
            return
        if record.flow_type not in DEFAULT_STATES:
            return

        self._adopt(record.flow_type, record.state)
        logger.debug(f"Applied remote update for {record.flow_type}")

    def _adopt(self, flow_type: str, state: dict[str, Any]) -> None:
        self._states[flow_type] = deep_clone(state)
        self.local_cache.save(self.storage_key(flow_type), state)
        self._notify(flow_type)

    async def flush(self) -> None:
        """Perform every pending remote write now."""
        for debouncer in list(self._debouncers.values()):
            await debouncer.flush()

    async def _close_subscriptions(self) -> None:
        subscriptions, self._subscriptions = self._subscriptions, {}
        for subscription in subscriptions.values():
            try:
                await subscription.close()
            except RemoteStoreError as e:
                logger.warning(f"Error closing {subscription.flow_type} subscription: {e}")

    # =========================================================================
    # IDENTITY
    # =========================================================================

    async def sign_in(self, identity: Identity) -> None:
        if self.identity is not None and self.identity.uid != identity.uid:
            await self.sign_out()

        self.identity = identity
        logger.info(f"Signed in {identity.uid}")

        for flow_type in DEFAULT_STATES:
            local = self._ensure_loaded(flow_type)

            if has_user_data(local):
                logger.info(f"Handing off local {flow_type} to {identity.uid}")
                await self._push_remote(flow_type, identity)
            else:
                record = await self._fetch_remote(flow_type, identity)
                if record is not None:
                    self._adopt(flow_type, record.state)

            self._prefill_contact(flow_type, identity)

            if flow_type not in self._subscriptions:
                try:
                    self._subscriptions[flow_type] = await self.remote_store.subscribe(
                        identity.uid, flow_type, self._on_remote_record
                    )
                except RemoteStoreError as e:
                    logger.warning(f"Live sync unavailable for {flow_type}: {e}")

    def _prefill_contact(self, flow_type: str, identity: Identity) -> None:
        contact = self._states[flow_type].get("contact")
        if not isinstance(contact, dict):
            return

        updates = {
            key: value
            for key, value in identity.contact_prefill().items()
            if not contact.get(key)
        }
        if updates:
            self.save_state(flow_type, {"contact": updates})

    async def sign_out(self) -> None:
        if self.identity is None:
            return
        await self.flush()
        await self._close_subscriptions()
        logger.info(f"Signed out {self.identity.uid}")
        self.identity = None

    async def close(self) -> None:
        await self.flush()
        await self._close_subscriptions()
