"""
Notification Service

Application-facing facade. Wires the settings store, ledger, scheduler,
dispatcher and remote sync together and exposes the operations the rest of
the application calls.

Usage:
    service = create_notification_service()
    await service.startup()

    await service.schedule_expense_reminder({
        "id": "42",
        "description": "Aluguel",
        "value": 1500.0,
        "dueDate": "2024-06-10T00:00:00Z",
        "notificationEnabled": True,
        "userId": "user-1",
    })

    await service.shutdown()
"""

import logging
from datetime import timedelta
from typing import Any, List, Mapping, Optional, Union

from config.settings import Settings, get_settings
from realtime.connection_manager import ConnectionManager

from .clock import AsyncioClock, Clock
from .dispatcher import DeliveryDispatcher, DeliveryOutcome, IconSet
from .ledger import InAppNotificationLedger
from .models import (
    ExpenseEntity,
    InAppNotification,
    NotificationData,
    NotificationSettings,
    NotificationStats,
    PermissionState,
    ScheduledReminder,
)
from .remote_sync import RemoteStore, RemoteSyncAdapter, create_remote_store
from .scheduler import ReminderScheduler
from .senders import NotificationSender, resolve_sender
from .settings_store import SettingsStore
from .storage import KeyValueStore, create_key_value_store

logger = logging.getLogger(__name__)


class NotificationService:
    """Single entry point for scheduling, delivery and the in-app list."""

    def __init__(
        self,
        settings_store: SettingsStore,
        ledger: InAppNotificationLedger,
        dispatcher: DeliveryDispatcher,
        scheduler: ReminderScheduler,
        storage: KeyValueStore,
        remote_store: RemoteStore,
        clock: Clock,
        remote_sync: Optional[RemoteSyncAdapter] = None,
    ):
        self.settings_store = settings_store
        self.ledger = ledger
        self.dispatcher = dispatcher
        self.scheduler = scheduler
        self.storage = storage
        self.remote_store = remote_store
        self.clock = clock
        self.remote_sync = remote_sync
        self._started = False
        self.permission = PermissionState.DEFAULT

    @property
    def started(self) -> bool:
        return self._started

    async def startup(self) -> None:
        """Load persisted state and ask for OS permission."""
        if self._started:
            return
        await self.settings_store.load()
        await self.ledger.load()
        purged = await self.ledger.purge_expired(self.clock.now())
        if purged:
            logger.info(f"Purged {purged} expired in-app notification(s)")
        self.permission = await self.dispatcher.initialize()
        self._started = True
        logger.info(
            f"Notification service started (sender={self.dispatcher.sender.channel}, "
            f"permission={self.permission.value})"
        )

    async def shutdown(self) -> None:
        """Cancel timers, flush background syncs and close connections."""
        self.scheduler.cancel_all_notifications()
        await self.dispatcher.drain()
        await self.remote_store.close()
        await self.storage.close()
        self._started = False
        logger.info("Notification service stopped")

    # -- Scheduling ---------------------------------------------------------

    async def schedule_expense_reminder(
        self,
        entity: Union[ExpenseEntity, Mapping[str, Any]],
    ) -> List[ScheduledReminder]:
        return await self.scheduler.schedule_expense_reminder(entity)

    def cancel_expense_notifications(self, entity_id: Any) -> int:
        return self.scheduler.cancel_expense_notifications(entity_id)

    def cancel_all_notifications(self) -> int:
        return self.scheduler.cancel_all_notifications()

    def get_pending_reminders(self) -> List[ScheduledReminder]:
        return self.scheduler.pending()

    # -- Delivery -----------------------------------------------------------

    async def show_notification(self, data: NotificationData) -> DeliveryOutcome:
        return await self.dispatcher.show_notification(data)

    async def schedule_local_notification(
        self,
        payload: Union[NotificationData, Mapping[str, Any]],
    ) -> DeliveryOutcome:
        return await self.dispatcher.schedule_local_notification(payload)

    # -- In-app list --------------------------------------------------------

    def get_in_app_notifications(self) -> List[InAppNotification]:
        return self.ledger.list()

    def get_in_app_notification(self, notification_id: str) -> Optional[InAppNotification]:
        return self.ledger.get(notification_id)

    async def mark_in_app_notification_as_read(self, notification_id: str) -> bool:
        record = self.ledger.get(notification_id)
        changed = await self.ledger.mark_as_read(notification_id)
        if changed and record is not None and self.remote_sync is not None:
            self.dispatcher.spawn_remote(self.remote_sync.mark_read(notification_id, record.user_id))
        return changed

    async def mark_all_in_app_notifications_as_read(self) -> int:
        owners = {item.user_id for item in self.ledger.list() if not item.is_read}
        changed = await self.ledger.mark_all_as_read()
        if changed and self.remote_sync is not None:
            for user_id in sorted(owners):
                self.dispatcher.spawn_remote(self.remote_sync.mark_all_read(user_id))
        return changed

    async def delete_in_app_notification(self, notification_id: str) -> bool:
        record = self.ledger.get(notification_id)
        deleted = await self.ledger.delete(notification_id)
        if deleted and record is not None and self.remote_sync is not None:
            self.dispatcher.spawn_remote(self.remote_sync.delete(notification_id, record.user_id))
        return deleted

    def get_unread_count(self) -> int:
        return self.ledger.unread_count()

    def get_stats(self) -> NotificationStats:
        return self.ledger.stats()

    async def apply_remote_change(self, change: Mapping[str, Any]) -> None:
        """Apply a change that already happened remotely; nothing is mirrored back."""
        await self.ledger.apply_remote_change(change)

    async def refresh_from_remote(self, user_id: str) -> int:
        """Pull the user's newest remote rows into the in-app list.

        Returns:
            Number of rows that were not in the list yet.
        """
        if self.remote_sync is None:
            return 0
        rows = await self.remote_sync.fetch_recent(user_id, limit=self.ledger.capacity)
        imported = await self.ledger.import_remote_rows(rows)
        if imported:
            logger.info(f"Imported {imported} remote notification(s) for user {user_id}")
        return imported

    # -- Settings -----------------------------------------------------------

    def get_settings(self) -> NotificationSettings:
        return self.settings_store.get()

    async def update_settings(self, partial: Mapping[str, Any]) -> NotificationSettings:
        """Raises StorageError when the new settings could not be saved."""
        return await self.settings_store.update(partial)


def create_notification_service(
    settings: Optional[Settings] = None,
    clock: Optional[Clock] = None,
    storage: Optional[KeyValueStore] = None,
    remote_store: Optional[RemoteStore] = None,
    sender: Optional[NotificationSender] = None,
    connections: Optional[ConnectionManager] = None,
) -> NotificationService:
    """
    Build a fully wired service from configuration.

    Any collaborator can be passed in explicitly (tests, embedding);
    missing ones are created from ``settings``.
    """
    settings = settings or get_settings()
    clock = clock or AsyncioClock()
    storage = storage or create_key_value_store(settings)
    remote_store = remote_store or create_remote_store(settings.remote)
    sender = sender or resolve_sender(settings.platform, connections, app_name=settings.name)

    settings_store = SettingsStore(storage, key=settings.settings_key)
    ledger = InAppNotificationLedger(storage, capacity=settings.ledger_capacity, key=settings.ledger_key)
    remote_sync = RemoteSyncAdapter(
        remote_store,
        table=settings.remote.table,
        rpc_function=settings.remote.rpc_function,
        enabled=settings.remote_sync_enabled,
    )
    dispatcher = DeliveryDispatcher(
        settings_store=settings_store,
        ledger=ledger,
        sender=sender,
        remote_sync=remote_sync,
        clock=clock,
        auto_dismiss=timedelta(seconds=settings.auto_dismiss_seconds),
        icons=IconSet(
            icon_light=settings.icon_light,
            icon_dark=settings.icon_dark,
            badge_light=settings.badge_light,
            badge_dark=settings.badge_dark,
        ),
        theme_provider=lambda: settings.theme,
    )
    scheduler = ReminderScheduler(settings_store, dispatcher, remote_sync, clock)

    service = NotificationService(
        settings_store=settings_store,
        ledger=ledger,
        dispatcher=dispatcher,
        scheduler=scheduler,
        storage=storage,
        remote_store=remote_store,
        clock=clock,
        remote_sync=remote_sync,
    )
    if connections is not None:
        connections.set_mark_read_handler(service.mark_in_app_notification_as_read)
    return service
