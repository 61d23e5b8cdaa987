"""
In-Memory Remote State Store

Stands in for the remote database in development mode (ENV_MODE=development)
and in tests:
    - Records live in a dict keyed by (identity, flow_type)
    - Subscribers are notified synchronously inside put()
    - Optional simulated latency and failure rate exercise the service's
      fallback paths
"""

import asyncio
import copy
import logging
import random
from collections import defaultdict
from typing import Optional

from order_builder.state.remote.base import (
    BaseRemoteStore,
    RecordListener,
    RemoteRecord,
    RemoteStoreError,
    RemoteSubscription,
)

logger = logging.getLogger(__name__)


class InMemoryRemoteStore(BaseRemoteStore):
    """
    Dict-backed remote store.

    Attributes:
        failure_rate: Probability that an operation raises RemoteStoreError
        latency: Simulated response time in seconds
    """

    def __init__(self, failure_rate: float = 0.0, latency: float = 0.0):
        self.failure_rate = failure_rate
        self.latency = latency
        self._records: dict[tuple[str, str], RemoteRecord] = {}
        self._listeners: dict[tuple[str, str], list[RecordListener]] = defaultdict(list)
        self.write_count = 0

        logger.info(
            f"InMemoryRemoteStore initialized "
            f"(failure_rate={failure_rate:.0%}, latency={latency}s)"
        )

    @property
    def provider_name(self) -> str:
        return "memory"

    async def _simulate(self, operation: str) -> None:
        if self.latency:
            await asyncio.sleep(self.latency)
        if random.random() < self.failure_rate:
            logger.warning(f"[MOCK] Simulated remote failure on {operation}")
            raise RemoteStoreError(f"Simulated {operation} failure")

    async def get(self, identity: str, flow_type: str) -> Optional[RemoteRecord]:
        await self._simulate("get")
        record = self._records.get((identity, flow_type))
        return copy.deepcopy(record) if record else None

    async def put(self, record: RemoteRecord) -> None:
        await self._simulate("put")
        key = (record.identity, record.flow_type)
        self._records[key] = copy.deepcopy(record)
        self.write_count += 1
        logger.debug(f"[MOCK] Stored {record.flow_type} for {record.identity}")

        for listener in list(self._listeners.get(key, [])):
            try:
                listener(copy.deepcopy(record))
            except Exception:
                logger.exception(f"Remote listener failed for {record.flow_type}")

    async def delete(self, identity: str, flow_type: str) -> None:
        await self._simulate("delete")
        self._records.pop((identity, flow_type), None)

    async def subscribe(
        self,
        identity: str,
        flow_type: str,
        listener: RecordListener,
    ) -> RemoteSubscription:
        await self._simulate("subscribe")
        key = (identity, flow_type)
        self._listeners[key].append(listener)

        def remove() -> None:
            if listener in self._listeners.get(key, []):
                self._listeners[key].remove(listener)

        return RemoteSubscription(identity, flow_type, remove)

    async def health_check(self) -> bool:
        return True

    def listener_count(self, identity: str, flow_type: str) -> int:
        return len(self._listeners.get((identity, flow_type), []))
