"""Key-value persistence for settings and ledger snapshots.

Values are opaque strings (JSON documents produced by the stores). Three
backends are available:

- ``InMemoryKeyValueStore``: process memory, used in tests and simulations
- ``FileKeyValueStore``: one JSON file, replaced atomically on every write
- ``RedisKeyValueStore``: ``redis.asyncio`` for shared deployments

All backends raise ``StorageError`` on failure so callers decide whether the
failure propagates (settings) or is logged (ledger writes on delivery).
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

try:
    import redis.asyncio as redis
    REDIS_AVAILABLE = True
except ImportError:
    REDIS_AVAILABLE = False
    redis = None

from config.settings import RedisSettings, Settings, get_settings

from .errors import StorageError

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Durable string storage keyed by name."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the stored value or None when absent."""

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``."""

    async def close(self) -> None:
        return None


class InMemoryKeyValueStore(KeyValueStore):
    """Dictionary-backed store."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def snapshot(self) -> Dict[str, str]:
        return dict(self._data)


class FileKeyValueStore(KeyValueStore):
    """All keys in a single JSON file.

    Writes go to a temporary file in the same directory and are moved into
    place with ``os.replace`` so a crash never leaves a torn document.
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    def _read_all(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            content = f.read()
        if not content.strip():
            return {}
        data = json.loads(content)
        if not isinstance(data, dict):
            raise ValueError("store document is not an object")
        return data

    def _write_all(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self.path.parent), prefix=".store-", suffix=".json"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    async def get(self, key: str) -> Optional[str]:
        try:
            data = await asyncio.to_thread(self._read_all)
        except (OSError, ValueError) as e:
            raise StorageError(f"Failed to read {self.path}: {e}", key) from e
        return data.get(key)

    async def set(self, key: str, value: str) -> None:
        async with self._lock:
            try:
                data = await asyncio.to_thread(self._read_all)
            except ValueError:
                logger.warning(f"Store file {self.path} is corrupt, rewriting it")
                data = {}
            except OSError as e:
                raise StorageError(f"Failed to read {self.path}: {e}", key) from e

            data[key] = value
            try:
                await asyncio.to_thread(self._write_all, data)
            except OSError as e:
                raise StorageError(f"Failed to write {self.path}: {e}", key) from e


class RedisKeyValueStore(KeyValueStore):
    """Redis-backed store using plain string keys."""

    def __init__(self, settings: Optional[RedisSettings] = None, client=None):
        if client is None and not REDIS_AVAILABLE:
            raise ImportError(
                "redis package is not installed. "
                "Install it with: pip install redis[hiredis]"
            )
        self.settings = settings or RedisSettings()
        self._client = client

    def _get_client(self):
        if self._client is None:
            self._client = redis.from_url(
                self.settings.url,
                decode_responses=True,
                socket_timeout=self.settings.socket_timeout,
                socket_connect_timeout=self.settings.socket_connect_timeout,
            )
        return self._client

    def _key(self, key: str) -> str:
        return f"{self.settings.key_prefix}{key}"

    async def get(self, key: str) -> Optional[str]:
        try:
            value = await self._get_client().get(self._key(key))
        except Exception as e:
            raise StorageError(f"Redis GET failed: {e}", key) from e
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value

    async def set(self, key: str, value: str) -> None:
        try:
            await self._get_client().set(self._key(key), value)
        except Exception as e:
            raise StorageError(f"Redis SET failed: {e}", key) from e

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def create_key_value_store(settings: Optional[Settings] = None) -> KeyValueStore:
    """Build the store selected by ``NOTIFY_STORAGE_BACKEND``."""
    settings = settings or get_settings()
    storage = settings.storage

    if storage.backend == "memory":
        logger.info("Notification storage: memory")
        return InMemoryKeyValueStore()

    if storage.backend == "redis":
        logger.info(f"Notification storage: redis at {settings.redis.host}:{settings.redis.port}")
        return RedisKeyValueStore(settings.redis)

    logger.info(f"Notification storage: file {storage.path}")
    return FileKeyValueStore(storage.path)
