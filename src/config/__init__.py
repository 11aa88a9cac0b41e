"""Configuration module for the notification engine."""

from .settings import (
    RedisSettings,
    RemoteStoreSettings,
    Settings,
    StorageSettings,
    get_settings,
)

__all__ = [
    "RedisSettings",
    "RemoteStoreSettings",
    "Settings",
    "StorageSettings",
    "get_settings",
]
