"""
Remote State Store Abstract Base Class

Defines the interface contract for the remote half of order-state
persistence. InMemoryRemoteStore and SqlRemoteStore both implement it, so
OrderStateService never knows which backend is active.

One record exists per (identity, flow_type). Writes are whole-state
upserts; the last write wins across devices. Subscribers are called with
every record written for their key, including their own writes, so the
record carries the writing client's origin.
"""

import inspect
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Union


class RemoteStoreError(Exception):
    """Raised by a remote store when a read or write cannot be completed."""


@dataclass
class RemoteRecord:
    """
    A persisted order state as the remote store holds it.

    Attributes:
        flow_type: Which flow the state belongs to
        identity: Owning user id
        version: State schema version the writer ran
        state: The order state (plain JSON data)
        updated_at: Write time (UTC)
        origin: Id of the client that wrote the record
    """
    flow_type: str
    identity: str
    version: str
    state: dict[str, Any]
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    origin: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "flow_type": self.flow_type,
            "identity": self.identity,
            "version": self.version,
            "state": self.state,
            "updated_at": self.updated_at.isoformat(),
            "origin": self.origin,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RemoteRecord":
        updated_at = data.get("updated_at")
        return cls(
            flow_type=data["flow_type"],
            identity=data["identity"],
            version=data["version"],
            state=data.get("state") or {},
            updated_at=datetime.fromisoformat(updated_at) if updated_at else datetime.now(timezone.utc),
            origin=data.get("origin"),
        )


RecordListener = Callable[[RemoteRecord], None]
Closer = Callable[[], Union[Awaitable[None], None]]


class RemoteSubscription:
    """Handle for a live subscription; close() stops delivery."""

    def __init__(self, identity: str, flow_type: str, closer: Closer):
        self.identity = identity
        self.flow_type = flow_type
        self._closer = closer
        self.closed = False

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        result = self._closer()
        if inspect.isawaitable(result):
            await result


class BaseRemoteStore(ABC):
    """
    Abstract base class for remote state stores.

    Example:
        >>> store = get_remote_store()
        >>> await store.put(RemoteRecord("guided-planner", "user-1", "2.0.0", state))
        >>> record = await store.get("user-1", "guided-planner")
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """
        Return the name of the backend.

        Returns:
            str: Provider name (e.g., "memory", "postgresql")
        """
        pass

    @abstractmethod
    async def get(self, identity: str, flow_type: str) -> Optional[RemoteRecord]:
        """
        Fetch the record for a user and flow.

        Returns:
            RemoteRecord, or None if nothing is stored

        Raises:
            RemoteStoreError: If the backend cannot be reached
        """
        pass

    @abstractmethod
    async def put(self, record: RemoteRecord) -> None:
        """
        Upsert a record and notify its subscribers.

        Raises:
            RemoteStoreError: If the write fails
        """
        pass

    @abstractmethod
    async def delete(self, identity: str, flow_type: str) -> None:
        """
        Remove the record for a user and flow. Missing records are ignored.

        Raises:
            RemoteStoreError: If the delete fails
        """
        pass

    @abstractmethod
    async def subscribe(
        self,
        identity: str,
        flow_type: str,
        listener: RecordListener,
    ) -> RemoteSubscription:
        """
        Deliver every subsequent write for (identity, flow_type) to listener.

        Raises:
            RemoteStoreError: If the subscription cannot be opened
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Check if the backend is reachable.

        Returns:
            bool: True if healthy
        """
        pass

    async def close(self) -> None:
        """Release connections held by the store."""
        return None
