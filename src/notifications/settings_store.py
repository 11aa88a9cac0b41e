"""Settings Store

Holds the user's notification preferences, loaded once at startup and
persisted after every update.
"""

import asyncio
import json
import logging
from enum import Enum
from typing import Any, Dict, Mapping, Tuple

from pydantic import BaseModel, ValidationError

from .errors import StorageError
from .models import NotificationSettings
from .storage import KeyValueStore

logger = logging.getLogger(__name__)

SETTINGS_KEY = "notification_settings"

# Nested objects merged one level deep instead of replaced.
_NESTED_FIELDS = ("categories", "reminder_timing")


def _field_names() -> Dict[str, str]:
    """Map both attribute names and camelCase aliases to attribute names."""
    names: Dict[str, str] = {}
    for name, info in NotificationSettings.model_fields.items():
        names[name] = name
        if info.alias:
            names[info.alias] = name
    return names


def _as_mapping(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump()
    return value


def merge_settings(current: NotificationSettings, partial: Mapping[str, Any]) -> NotificationSettings:
    """Apply a partial update to ``current`` and return the merged settings.

    Unknown keys are ignored. ``categories`` and ``reminderTiming`` are
    merged key by key; everything else replaces the top-level value. A value
    that does not validate is dropped and the current value is kept.
    """
    names = _field_names()
    merged = current.model_dump(mode="json")

    for key, value in partial.items():
        name = names.get(key)
        if name is None:
            logger.debug(f"Ignoring unknown settings key: {key}")
            continue

        value = _as_mapping(value)
        if name in _NESTED_FIELDS and isinstance(value, Mapping):
            if name == "reminder_timing":
                timing_names = {
                    alias: field_name
                    for field_name, info in type(current.reminder_timing).model_fields.items()
                    for alias in (field_name, info.alias)
                    if alias
                }
                for timing_key, enabled in value.items():
                    timing_name = timing_names.get(timing_key)
                    if timing_name is not None:
                        merged = _apply(merged, (name, timing_name), enabled, f"{key}.{timing_key}")
            else:
                for category, enabled in value.items():
                    if isinstance(category, Enum):
                        category = category.value
                    merged = _apply(merged, (name, category), enabled, f"{key}.{category}")
        else:
            merged = _apply(merged, (name,), value, key)

    return NotificationSettings.model_validate(merged)


def _apply(merged: Dict[str, Any], path: Tuple[str, ...], value: Any, label: str) -> Dict[str, Any]:
    """Return ``merged`` with ``value`` set at ``path`` if the result validates."""
    candidate = dict(merged)
    if len(path) == 2:
        nested = dict(candidate[path[0]])
        nested[path[1]] = value
        candidate[path[0]] = nested
    else:
        candidate[path[0]] = value

    try:
        NotificationSettings.model_validate(candidate)
    except ValidationError:
        logger.debug(f"Ignoring invalid value for settings key {label}: {value!r}")
        return merged
    return candidate


class SettingsStore:
    """
    Process-wide notification preferences.

    ``get()`` never touches storage. ``update()`` persists before the new
    value becomes visible, and storage failures propagate to the caller so a
    lost preference change is never silent.
    """

    def __init__(self, storage: KeyValueStore, key: str = SETTINGS_KEY):
        self._storage = storage
        self._key = key
        self._settings = NotificationSettings()
        self._lock = asyncio.Lock()

    async def load(self) -> NotificationSettings:
        """Read persisted settings, falling back to defaults."""
        try:
            raw = await self._storage.get(self._key)
        except StorageError as e:
            logger.warning(f"Could not read notification settings, using defaults: {e}")
            raw = None
        if raw is None:
            logger.info("No stored notification settings, using defaults")
            self._settings = NotificationSettings()
            return self._settings

        try:
            stored = json.loads(raw)
            if not isinstance(stored, dict):
                raise ValueError("settings document is not an object")
            self._settings = merge_settings(NotificationSettings(), stored)
        except (ValueError, ValidationError) as e:
            logger.warning(f"Stored notification settings unreadable, using defaults: {e}")
            self._settings = NotificationSettings()

        return self._settings

    def get(self) -> NotificationSettings:
        return self._settings

    async def update(self, partial: Mapping[str, Any]) -> NotificationSettings:
        """Merge ``partial`` into the current settings and persist.

        Raises:
            StorageError: persistence failed; in-memory settings are unchanged.
        """
        async with self._lock:
            updated = merge_settings(self._settings, partial)
            await self._persist(updated)
            self._settings = updated
            logger.info(f"Notification settings updated: {sorted(partial.keys())}")
            return updated

    async def reset(self) -> NotificationSettings:
        async with self._lock:
            defaults = NotificationSettings()
            await self._persist(defaults)
            self._settings = defaults
            return defaults

    async def _persist(self, settings: NotificationSettings) -> None:
        await self._storage.set(self._key, json.dumps(settings.to_json_dict()))
