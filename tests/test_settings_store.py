"""Tests for notification preferences."""

import json
from unittest.mock import AsyncMock

import pytest

from notifications.errors import StorageError
from notifications.models import NotificationSettings, NotificationType
from notifications.settings_store import SettingsStore, merge_settings
from notifications.storage import FileKeyValueStore, InMemoryKeyValueStore


class TestDefaults:
    """Tests for default preferences."""

    def test_everything_enabled_by_default(self):
        settings = NotificationSettings()
        assert settings.enabled is True
        assert settings.push_enabled is True
        assert settings.in_app_enabled is True
        assert all(settings.categories[t] for t in NotificationType)
        assert settings.reminder_timing.three_days is True

    def test_json_uses_camel_case(self):
        data = NotificationSettings().to_json_dict()
        assert data["pushEnabled"] is True
        assert data["reminderTiming"] == {"threeDays": True, "oneDay": True, "sameDay": True}
        assert data["categories"]["expense_reminder"] is True


class TestMergeSettings:
    """Tests for partial updates."""

    def test_top_level_replace(self):
        merged = merge_settings(NotificationSettings(), {"soundEnabled": False})
        assert merged.sound_enabled is False
        assert merged.vibration_enabled is True

    def test_snake_case_keys_accepted(self):
        merged = merge_settings(NotificationSettings(), {"in_app_enabled": False})
        assert merged.in_app_enabled is False

    def test_categories_merge_one_level(self):
        current = merge_settings(NotificationSettings(), {"categories": {"job_update": False}})
        merged = merge_settings(current, {"categories": {"reserve_goal": False}})

        assert merged.categories[NotificationType.JOB_UPDATE] is False
        assert merged.categories[NotificationType.RESERVE_GOAL] is False
        assert merged.categories[NotificationType.EXPENSE_DUE] is True

    def test_enum_category_keys(self):
        merged = merge_settings(NotificationSettings(), {"categories": {NotificationType.GENERAL: False}})
        assert merged.category_enabled(NotificationType.GENERAL) is False

    def test_reminder_timing_merge(self):
        merged = merge_settings(NotificationSettings(), {"reminderTiming": {"sameDay": False}})
        assert merged.reminder_timing.same_day is False
        assert merged.reminder_timing.one_day is True

    def test_unknown_keys_ignored(self):
        merged = merge_settings(NotificationSettings(), {"theme": "dark", "categories": {"nope": False}})
        assert merged == NotificationSettings()

    def test_invalid_values_are_dropped_key_by_key(self):
        merged = merge_settings(
            NotificationSettings(),
            {
                "soundEnabled": "loud",
                "pushEnabled": False,
                "reminderTiming": {"oneDay": "sometimes", "sameDay": False},
                "categories": "all",
            },
        )

        assert merged.sound_enabled is True
        assert merged.push_enabled is False
        assert merged.reminder_timing.one_day is True
        assert merged.reminder_timing.same_day is False
        assert merged.categories == NotificationSettings().categories


class TestSettingsStore:
    """Tests for load, update and persistence."""

    @pytest.mark.asyncio
    async def test_load_defaults_when_absent(self, settings_store):
        assert await settings_store.load() == NotificationSettings()

    @pytest.mark.asyncio
    async def test_update_round_trips_through_storage(self, settings_store, storage):
        await settings_store.update({"pushEnabled": False, "categories": {"job_update": False}})

        restored = SettingsStore(storage)
        loaded = await restored.load()

        assert loaded == settings_store.get()
        assert loaded.push_enabled is False
        assert loaded.category_enabled(NotificationType.JOB_UPDATE) is False

    @pytest.mark.asyncio
    async def test_persisted_document_is_camel_case(self, settings_store, storage):
        await settings_store.update({"enabled": False})

        document = json.loads(storage.snapshot()["notification_settings"])
        assert document["enabled"] is False
        assert "inAppEnabled" in document

    @pytest.mark.asyncio
    async def test_partial_document_fills_defaults(self):
        storage = InMemoryKeyValueStore({"notification_settings": json.dumps({"soundEnabled": False})})
        settings = await SettingsStore(storage).load()

        assert settings.sound_enabled is False
        assert settings.enabled is True
        assert settings.categories[NotificationType.TASK_REMINDER] is True

    @pytest.mark.asyncio
    async def test_corrupt_document_falls_back_to_defaults(self):
        storage = InMemoryKeyValueStore({"notification_settings": "[1, 2"})
        assert await SettingsStore(storage).load() == NotificationSettings()

    @pytest.mark.asyncio
    async def test_update_with_invalid_value_keeps_the_rest(self, settings_store, storage):
        updated = await settings_store.update({"soundEnabled": "loud", "vibrationEnabled": False})

        assert updated.sound_enabled is True
        assert updated.vibration_enabled is False
        document = json.loads(storage.snapshot()["notification_settings"])
        assert document["vibrationEnabled"] is False

    @pytest.mark.asyncio
    async def test_unreadable_store_file_loads_defaults(self, tmp_path):
        path = tmp_path / "store.json"
        path.write_text("{not json", encoding="utf-8")
        store = SettingsStore(FileKeyValueStore(str(path)))

        assert await store.load() == NotificationSettings()

        await store.update({"enabled": False})
        assert json.loads(path.read_text(encoding="utf-8"))["notification_settings"]

    @pytest.mark.asyncio
    async def test_storage_failure_propagates_and_keeps_old_value(self):
        storage = InMemoryKeyValueStore()
        storage.set = AsyncMock(side_effect=StorageError("disk full", "notification_settings"))
        store = SettingsStore(storage)

        with pytest.raises(StorageError):
            await store.update({"enabled": False})

        assert store.get().enabled is True

    @pytest.mark.asyncio
    async def test_reset(self, settings_store):
        await settings_store.update({"enabled": False})
        assert (await settings_store.reset()).enabled is True
        assert settings_store.get() == NotificationSettings()
