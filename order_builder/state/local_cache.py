"""
Local State Cache with Concurrency Control

Fast local store for order state: one JSON file per key, written under a
file lock so a second worker process never reads a half-written envelope.

Envelope:
    {"version": "2.0.0", "timestamp": 1760875200.0, "data": {...}}

A stored copy is treated as absent (and removed) when its version differs
from the running version or when it is older than the TTL. Read and write
failures are logged and never raised.
"""

import json
import logging
import time
from pathlib import Path
from typing import Any, Callable, Optional

from filelock import FileLock, Timeout

logger = logging.getLogger(__name__)


class LocalStateCache:
    """
    File-backed, versioned, expiring key/value store.

    Attributes:
        directory: Where the cache files live
        version: Version stamped on writes and required on reads
        ttl_seconds: Maximum age of a readable entry
        lock_timeout: Seconds to wait for a file lock
    """

    def __init__(
        self,
        directory: Path | str,
        version: str,
        ttl_seconds: float = 24 * 3600,
        lock_timeout: float = 10,
        clock: Callable[[], float] = time.time,
    ):
        self.directory = Path(directory)
        self.version = version
        self.ttl_seconds = ttl_seconds
        self.lock_timeout = lock_timeout
        self._clock = clock

    def _path(self, key: str) -> Path:
        safe = "".join(c if c.isalnum() or c in "-_." else "_" for c in key)
        return self.directory / f"{safe}.json"

    def _lock(self, key: str) -> FileLock:
        return FileLock(str(self._path(key)) + ".lock", timeout=self.lock_timeout)

    def _ensure_directory(self) -> None:
        if not self.directory.exists():
            self.directory.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created state cache directory: {self.directory}")

    def save(self, key: str, data: Any) -> bool:
        """
        Write data under key.

        Returns:
            bool: False if the write failed (state stays in memory only)
        """
        try:
            payload = json.dumps({
                "version": self.version,
                "timestamp": self._clock(),
                "data": data,
            })
        except (TypeError, ValueError) as e:
            logger.warning(f"Failed to serialize {key} for local cache: {e}")
            return False

        try:
            self._ensure_directory()
            path = self._path(key)
            with self._lock(key):
                tmp_path = path.with_suffix(".json.tmp")
                tmp_path.write_text(payload, encoding="utf-8")
                tmp_path.replace(path)
            return True
        except Timeout:
            logger.error(f"Lock timeout ({self.lock_timeout}s) saving {key}")
        except OSError as e:
            logger.warning(f"Failed to save {key} to local cache: {e}")
        return False

    def load(self, key: str) -> Optional[Any]:
        """
        Read the data stored under key.

        Returns:
            The stored data, or None when missing, unreadable, from another
            version, or expired
        """
        path = self._path(key)
        if not path.exists():
            return None

        try:
            with self._lock(key):
                raw = path.read_text(encoding="utf-8")
            envelope = json.loads(raw)
        except Timeout:
            logger.error(f"Lock timeout ({self.lock_timeout}s) loading {key}")
            return None
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load {key} from local cache: {e}")
            self.remove(key)
            return None

        if not isinstance(envelope, dict) or envelope.get("version") != self.version:
            stored = envelope.get("version") if isinstance(envelope, dict) else None
            logger.info(f"Clearing {key} due to version mismatch ({stored} → {self.version})")
            self.remove(key)
            return None

        age = self._clock() - float(envelope.get("timestamp") or 0)
        if age > self.ttl_seconds:
            logger.info(f"Clearing {key}: expired ({age / 3600:.1f}h old)")
            self.remove(key)
            return None

        return envelope.get("data")

    def remove(self, key: str) -> None:
        path = self._path(key)
        try:
            with self._lock(key):
                if path.exists():
                    path.unlink()
        except (OSError, Timeout) as e:
            logger.warning(f"Failed to remove {key} from local cache: {e}")
