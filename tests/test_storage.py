"""Tests for key-value persistence backends."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from config.settings import RedisSettings, Settings
from notifications.errors import StorageError
from notifications.storage import (
    FileKeyValueStore,
    InMemoryKeyValueStore,
    RedisKeyValueStore,
    create_key_value_store,
)


class TestInMemoryKeyValueStore:
    """Tests for the in-memory backend."""

    @pytest.mark.asyncio
    async def test_get_and_set(self):
        store = InMemoryKeyValueStore({"a": "1"})
        assert await store.get("a") == "1"
        assert await store.get("b") is None

        await store.set("b", "2")
        assert store.snapshot() == {"a": "1", "b": "2"}


class TestFileKeyValueStore:
    """Tests for the JSON file backend."""

    @pytest.mark.asyncio
    async def test_missing_file_reads_none(self, tmp_path):
        store = FileKeyValueStore(str(tmp_path / "store.json"))
        assert await store.get("anything") is None

    @pytest.mark.asyncio
    async def test_values_survive_a_new_instance(self, tmp_path):
        path = tmp_path / "nested" / "store.json"
        await FileKeyValueStore(str(path)).set("settings", '{"enabled": false}')
        await FileKeyValueStore(str(path)).set("ledger", "[]")

        store = FileKeyValueStore(str(path))
        assert await store.get("settings") == '{"enabled": false}'
        assert await store.get("ledger") == "[]"
        assert json.loads(path.read_text(encoding="utf-8")) == {
            "settings": '{"enabled": false}',
            "ledger": "[]",
        }

    @pytest.mark.asyncio
    async def test_no_temp_files_left_behind(self, tmp_path):
        store = FileKeyValueStore(str(tmp_path / "store.json"))
        await store.set("k", "v")
        assert [p.name for p in tmp_path.iterdir()] == ["store.json"]

    @pytest.mark.asyncio
    async def test_corrupt_file_raises_on_read(self, tmp_path):
        path = tmp_path / "store.json"
        path.write_text("{broken", encoding="utf-8")

        with pytest.raises(StorageError) as exc_info:
            await FileKeyValueStore(str(path)).get("k")
        assert exc_info.value.key == "k"

    @pytest.mark.asyncio
    async def test_corrupt_file_is_rewritten_on_set(self, tmp_path):
        path = tmp_path / "store.json"
        path.write_text("{broken", encoding="utf-8")
        store = FileKeyValueStore(str(path))

        await store.set("k", "v")

        assert await store.get("k") == "v"

    @pytest.mark.asyncio
    async def test_write_failure_raises_storage_error(self, tmp_path):
        store = FileKeyValueStore(str(tmp_path / "store.json"))

        with patch("notifications.storage.os.replace", side_effect=OSError("read-only")):
            with pytest.raises(StorageError):
                await store.set("k", "v")


class TestRedisKeyValueStore:
    """Tests for the Redis backend with a mocked client."""

    @pytest.mark.asyncio
    async def test_keys_are_prefixed(self):
        client = MagicMock()
        client.get = AsyncMock(return_value=b"value")
        client.set = AsyncMock()
        store = RedisKeyValueStore(RedisSettings(key_prefix="test:"), client=client)

        await store.set("settings", "value")
        assert await store.get("settings") == "value"

        client.set.assert_awaited_once_with("test:settings", "value")
        client.get.assert_awaited_once_with("test:settings")

    @pytest.mark.asyncio
    async def test_client_errors_become_storage_errors(self):
        client = MagicMock()
        client.set = AsyncMock(side_effect=ConnectionError("refused"))
        store = RedisKeyValueStore(RedisSettings(), client=client)

        with pytest.raises(StorageError):
            await store.set("settings", "{}")

    @pytest.mark.asyncio
    async def test_close(self):
        client = MagicMock()
        client.aclose = AsyncMock()
        store = RedisKeyValueStore(RedisSettings(), client=client)

        await store.close()

        client.aclose.assert_awaited_once()


class TestCreateKeyValueStore:
    """Tests for backend selection from configuration."""

    def test_memory_backend(self, monkeypatch):
        monkeypatch.setenv("NOTIFY_STORAGE_BACKEND", "memory")
        assert isinstance(create_key_value_store(Settings()), InMemoryKeyValueStore)

    def test_file_backend(self, monkeypatch, tmp_path):
        monkeypatch.setenv("NOTIFY_STORAGE_BACKEND", "file")
        monkeypatch.setenv("NOTIFY_STORAGE_PATH", str(tmp_path / "store.json"))

        store = create_key_value_store(Settings())

        assert isinstance(store, FileKeyValueStore)
        assert store.path == tmp_path / "store.json"

    def test_redis_backend(self, monkeypatch):
        monkeypatch.setenv("NOTIFY_STORAGE_BACKEND", "redis")
        assert isinstance(create_key_value_store(Settings()), RedisKeyValueStore)
