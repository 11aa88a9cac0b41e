"""
Notification Engine

Local reminders for financial due dates, an in-app notification list and
best-effort mirroring to the remote store.

Provides:
- Expense reminder scheduling (3 days, 1 day and same day before due)
- Delivery through native, browser or no OS channel, with in-app fallback
- Bounded, persisted in-app notification ledger
- Persisted user notification preferences

Usage:
    from notifications import create_notification_service

    service = create_notification_service()
    await service.startup()

    await service.schedule_expense_reminder(expense)
    await service.schedule_local_notification({"title": "Backup done"})

    service.get_in_app_notifications()
    await service.update_settings({"soundEnabled": False})
"""

from .models import (
    ExpenseEntity,
    InAppNotification,
    NotificationData,
    NotificationPriority,
    NotificationSettings,
    NotificationStats,
    NotificationType,
    PermissionState,
    PushNotificationPayload,
    ReminderBucket,
    ReminderKey,
    ReminderTiming,
    ScheduledReminder,
)
from .errors import NotificationError, RemoteSyncError, StorageError
from .clock import AsyncioClock, Clock, ManualClock, TimerHandle
from .storage import (
    FileKeyValueStore,
    InMemoryKeyValueStore,
    KeyValueStore,
    RedisKeyValueStore,
    create_key_value_store,
)
from .settings_store import SettingsStore
from .ledger import InAppNotificationLedger
from .senders import NativeSender, NotificationSender, NullSender, WebSender, resolve_sender
from .remote_sync import (
    NullRemoteStore,
    RemoteStore,
    RemoteSyncAdapter,
    SupabaseRemoteStore,
    SyncResult,
    create_remote_store,
)
from .dispatcher import DeliveryDispatcher, DeliveryOutcome, route_for
from .scheduler import ReminderScheduler
from .service import NotificationService, create_notification_service

__all__ = [
    # Models
    "ExpenseEntity",
    "InAppNotification",
    "NotificationData",
    "NotificationPriority",
    "NotificationSettings",
    "NotificationStats",
    "NotificationType",
    "PermissionState",
    "PushNotificationPayload",
    "ReminderBucket",
    "ReminderKey",
    "ReminderTiming",
    "ScheduledReminder",
    # Errors
    "NotificationError",
    "RemoteSyncError",
    "StorageError",
    # Infrastructure
    "AsyncioClock",
    "Clock",
    "ManualClock",
    "TimerHandle",
    "FileKeyValueStore",
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "RedisKeyValueStore",
    "create_key_value_store",
    # Components
    "SettingsStore",
    "InAppNotificationLedger",
    "NativeSender",
    "NotificationSender",
    "NullSender",
    "WebSender",
    "resolve_sender",
    "NullRemoteStore",
    "RemoteStore",
    "RemoteSyncAdapter",
    "SupabaseRemoteStore",
    "SyncResult",
    "create_remote_store",
    "DeliveryDispatcher",
    "DeliveryOutcome",
    "route_for",
    "ReminderScheduler",
    # Facade
    "NotificationService",
    "create_notification_service",
]
