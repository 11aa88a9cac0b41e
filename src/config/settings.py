"""Application settings using Pydantic Settings.

Centralized runtime configuration for the notification engine.

Environment variables:
- NOTIFY_*: engine behaviour (ledger capacity, auto-dismiss window, theme, platform)
- NOTIFY_STORAGE_*: local persistence backend
- REDIS_*: Redis connection (when NOTIFY_STORAGE_BACKEND=redis)
- SUPABASE_*: remote notification store
"""

import logging
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class RedisSettings(BaseSettings):
    """Redis configuration for the key-value persistence backend."""

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        extra="ignore",
    )

    host: str = Field(default="localhost", description="Redis host")
    port: int = Field(default=6379, description="Redis port")
    db: int = Field(default=0, description="Redis database number")
    password: Optional[str] = Field(default=None, description="Redis password")
    ssl: bool = Field(default=False, description="Use SSL for Redis connection")

    socket_timeout: int = Field(default=5, description="Socket timeout in seconds")
    socket_connect_timeout: int = Field(default=5, description="Connection timeout")

    key_prefix: str = Field(default="notify:", description="Prefix for all keys")

    @property
    def url(self) -> str:
        """Get Redis URL."""
        auth = f":{self.password}@" if self.password else ""
        protocol = "rediss" if self.ssl else "redis"
        return f"{protocol}://{auth}{self.host}:{self.port}/{self.db}"


class StorageSettings(BaseSettings):
    """Local persistence for settings and ledger snapshots."""

    model_config = SettingsConfigDict(
        env_prefix="NOTIFY_STORAGE_",
        extra="ignore",
    )

    backend: str = Field(default="file", description="memory, file or redis")
    path: str = Field(default=".notifications/store.json", description="JSON file path for the file backend")

    @field_validator("backend")
    @classmethod
    def _check_backend(cls, value: str) -> str:
        value = value.lower().strip()
        if value not in ("memory", "file", "redis"):
            raise ValueError(f"Unsupported storage backend: {value}")
        return value


class RemoteStoreSettings(BaseSettings):
    """Remote notification store (Supabase / PostgREST)."""

    model_config = SettingsConfigDict(
        env_prefix="SUPABASE_",
        extra="ignore",
    )

    url: Optional[str] = Field(default=None, description="Project URL, e.g. https://xyz.supabase.co")
    anon_key: Optional[str] = Field(default=None, description="Public API key")
    access_token: Optional[str] = Field(default=None, description="User JWT for row level security")
    table: str = Field(default="notifications", description="Notifications table")
    rpc_function: str = Field(default="create_notification", description="Fallback RPC used when insert is rejected")
    timeout: float = Field(default=10.0, description="HTTP timeout in seconds")

    @property
    def is_configured(self) -> bool:
        return bool(self.url and self.anon_key)


class Settings(BaseSettings):
    """Main notification engine settings."""

    model_config = SettingsConfigDict(
        env_prefix="NOTIFY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application info
    name: str = Field(default="FinanceFlow Notifications", description="Application name")
    version: str = Field(default="1.0.0", description="Application version")
    debug: bool = Field(default=False, description="Debug mode")
    environment: str = Field(default="development", description="Environment name")
    log_level: str = Field(default="INFO", description="Root log level")

    # Engine behaviour
    ledger_capacity: int = Field(default=50, ge=1, description="Maximum in-app notifications kept")
    auto_dismiss_seconds: float = Field(default=5.0, gt=0, description="OS notification auto-close window")
    platform: str = Field(default="auto", description="auto, native, web or none")
    remote_sync_enabled: bool = Field(default=True, description="Mirror notifications to the remote store")

    # Presentation
    theme: str = Field(default="light", description="light or dark; selects icon set")
    icon_light: str = Field(default="/icons/web-app-manifest-192x192.png")
    icon_dark: str = Field(default="/icons/web-app-manifest-192x192-dark.png")
    badge_light: str = Field(default="/icons/favicon-96x96.png")
    badge_dark: str = Field(default="/icons/favicon-96x96-dark.png")

    # Storage keys
    settings_key: str = Field(default="notification_settings")
    ledger_key: str = Field(default="in_app_notifications")

    @field_validator("platform")
    @classmethod
    def _check_platform(cls, value: str) -> str:
        value = value.lower().strip()
        if value not in ("auto", "native", "web", "none"):
            raise ValueError(f"Unsupported platform: {value}")
        return value

    @field_validator("theme")
    @classmethod
    def _check_theme(cls, value: str) -> str:
        value = value.lower().strip()
        if value not in ("light", "dark"):
            raise ValueError(f"Unsupported theme: {value}")
        return value

    # Nested settings (loaded separately)
    @property
    def redis(self) -> RedisSettings:
        return RedisSettings()

    @property
    def storage(self) -> StorageSettings:
        return StorageSettings()

    @property
    def remote(self) -> RemoteStoreSettings:
        return RemoteStoreSettings()

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment in ("production", "prod", "staging")


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings instance.

    Returns:
        Settings: Cached settings loaded from environment.
    """
    return Settings()
