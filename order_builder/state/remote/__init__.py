"""
Remote State Store Factory

Provides a single entry point for obtaining the remote store.

Usage:
    from order_builder.state.remote import get_remote_store

    store = get_remote_store()
    record = await store.get(uid, "guided-planner")

Environment Switching:
    - ENV_MODE=development → InMemoryRemoteStore (no database)
    - ENV_MODE=staging → SqlRemoteStore
    - ENV_MODE=production → SqlRemoteStore
"""

import logging
from functools import lru_cache

from order_builder.core.config import get_settings
from order_builder.state.remote.base import (
    BaseRemoteStore,
    RecordListener,
    RemoteRecord,
    RemoteStoreError,
    RemoteSubscription,
)
from order_builder.state.remote.mock import InMemoryRemoteStore

logger = logging.getLogger(__name__)


@lru_cache()
def get_remote_store() -> BaseRemoteStore:
    """
    Get the configured remote store instance.

    The instance is cached so every state service in the process shares
    one store (and, in development, one set of in-memory records).
    """
    settings = get_settings()

    if not settings.use_real_services:
        logger.info("Remote Store: Using InMemoryRemoteStore (development mode)")
        return InMemoryRemoteStore()

    from order_builder.state.remote.sql import SqlRemoteStore

    logger.info(f"Remote Store: Using SqlRemoteStore ({settings.env_mode.value} mode)")
    return SqlRemoteStore()


def reset_remote_store() -> None:
    """Clear the cached remote store instance."""
    get_remote_store.cache_clear()
    logger.debug("Remote store cache cleared")


__all__ = [
    "get_remote_store",
    "reset_remote_store",
    "BaseRemoteStore",
    "InMemoryRemoteStore",
    "RecordListener",
    "RemoteRecord",
    "RemoteStoreError",
    "RemoteSubscription",
]
