"""
PostgreSQL Remote State Store

Remote persistence for staging and production (ENV_MODE=staging|production):
    - Records are upserted into the order_drafts table through SQLAlchemy
      async sessions
    - Every write is published on a Redis channel per (identity, flow)
    - subscribe() runs a redis.asyncio pub/sub listener task that hands each
      published record to the listener

Database and Redis failures surface as RemoteStoreError.
"""

import asyncio
import contextlib
import json
import logging
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError
from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError

from order_builder.core.config import get_settings
from order_builder.database import get_session_maker
from order_builder.models import OrderDraftRecord
from order_builder.state.remote.base import (
    BaseRemoteStore,
    RecordListener,
    RemoteRecord,
    RemoteStoreError,
    RemoteSubscription,
)

logger = logging.getLogger(__name__)


class SqlRemoteStore(BaseRemoteStore):
    """
    SQLAlchemy + Redis implementation of the remote store.

    Attributes:
        redis_url: Redis connection string for change notifications
        channel_prefix: Prefix of the per-record notification channels
    """

    def __init__(
        self,
        session_maker=None,
        redis_url: Optional[str] = None,
        channel_prefix: Optional[str] = None,
    ):
        settings = get_settings()
        self._session_maker = session_maker
        self.redis_url = redis_url or settings.redis_url
        self.channel_prefix = channel_prefix or settings.remote_channel_prefix
        self._redis: Optional[aioredis.Redis] = None

        logger.info(f"SqlRemoteStore initialized (channels: {self.channel_prefix}:*)")

    @property
    def provider_name(self) -> str:
        return "postgresql"

    @property
    def session_maker(self):
        if self._session_maker is None:
            self._session_maker = get_session_maker()
        return self._session_maker

    @property
    def redis(self) -> aioredis.Redis:
        if self._redis is None:
            self._redis = aioredis.from_url(self.redis_url, decode_responses=True)
        return self._redis

    def channel(self, identity: str, flow_type: str) -> str:
        return f"{self.channel_prefix}:{identity}:{flow_type}"

    @staticmethod
    def _to_record(row: OrderDraftRecord) -> RemoteRecord:
        return RemoteRecord(
            flow_type=row.flow_type,
            identity=row.owner_identity,
            version=row.schema_version,
            state=row.state or {},
            updated_at=row.updated_at,
            origin=row.origin,
        )

    async def get(self, identity: str, flow_type: str) -> Optional[RemoteRecord]:
        try:
            async with self.session_maker() as session:
                result = await session.execute(
                    select(OrderDraftRecord).where(
                        OrderDraftRecord.owner_identity == identity,
                        OrderDraftRecord.flow_type == flow_type,
                    )
                )
                row = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Remote read failed for {identity}/{flow_type}: {e}")
            raise RemoteStoreError(str(e)) from e

        return self._to_record(row) if row else None

    async def put(self, record: RemoteRecord) -> None:
        try:
            async with self.session_maker() as session:
                result = await session.execute(
                    select(OrderDraftRecord).where(
                        OrderDraftRecord.owner_identity == record.identity,
                        OrderDraftRecord.flow_type == record.flow_type,
                    )
                )
                row = result.scalar_one_or_none()
                if row is None:
                    row = OrderDraftRecord(
                        owner_identity=record.identity,
                        flow_type=record.flow_type,
                    )
                    session.add(row)
                row.schema_version = record.version
                row.state = record.state
                row.origin = record.origin
                row.updated_at = record.updated_at
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Remote write failed for {record.identity}/{record.flow_type}: {e}")
            raise RemoteStoreError(str(e)) from e

        try:
            await self.redis.publish(
                self.channel(record.identity, record.flow_type),
                json.dumps(record.to_dict()),
            )
        except RedisError as e:
            # The row is committed; other devices pick it up on next load
            logger.warning(f"Change notification failed for {record.flow_type}: {e}")

    async def delete(self, identity: str, flow_type: str) -> None:
        try:
            async with self.session_maker() as session:
                result = await session.execute(
                    select(OrderDraftRecord).where(
                        OrderDraftRecord.owner_identity == identity,
                        OrderDraftRecord.flow_type == flow_type,
                    )
                )
                row = result.scalar_one_or_none()
                if row is not None:
                    await session.delete(row)
                    await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Remote delete failed for {identity}/{flow_type}: {e}")
            raise RemoteStoreError(str(e)) from e

    async def subscribe(
        self,
        identity: str,
        flow_type: str,
        listener: RecordListener,
    ) -> RemoteSubscription:
        channel = self.channel(identity, flow_type)
        pubsub = self.redis.pubsub()
        try:
            await pubsub.subscribe(channel)
        except RedisError as e:
            logger.error(f"Failed to subscribe to {channel}: {e}")
            raise RemoteStoreError(str(e)) from e

        async def listen() -> None:
            try:
                async for message in pubsub.listen():
                    if message.get("type") != "message":
                        continue
                    try:
                        record = RemoteRecord.from_dict(json.loads(message["data"]))
                    except (KeyError, TypeError, ValueError) as e:
                        logger.warning(f"Ignoring malformed notification on {channel}: {e}")
                        continue
                    try:
                        listener(record)
                    except Exception:
                        logger.exception(f"Remote listener failed for {flow_type}")
            except RedisError as e:
                logger.warning(f"Live sync on {channel} stopped: {e}")

        task = asyncio.create_task(listen())

        async def close() -> None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError, RedisError):
                await task
            try:
                await pubsub.unsubscribe(channel)
                await pubsub.aclose()
            except RedisError as e:
                logger.warning(f"Error closing subscription {channel}: {e}")

        logger.debug(f"Subscribed to {channel}")
        return RemoteSubscription(identity, flow_type, close)

    async def health_check(self) -> bool:
        try:
            async with self.session_maker() as session:
                await session.execute(text("SELECT 1"))
            await self.redis.ping()
            return True
        except (SQLAlchemyError, RedisError) as e:
            logger.error(f"Remote store health check failed: {e}")
            return False

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
