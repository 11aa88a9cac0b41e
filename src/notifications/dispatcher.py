"""
Delivery Dispatcher

Decides whether and where a notification is shown at the moment it fires:

1. Master switch, in-flight dedup and category gates
2. OS channel (native or browser) when push is on and permission granted,
   auto-closed after a fixed window
3. In-app ledger, independent of the OS outcome
4. Remote sync in the background
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Set, Union

from .clock import Clock, TimerHandle
from .ledger import InAppNotificationLedger
from .models import (
    NotificationData,
    NotificationPriority,
    NotificationSettings,
    NotificationType,
    PermissionState,
    PushNotificationPayload,
    default_actions,
    parse_instant,
)
from .remote_sync import RemoteSyncAdapter
from .senders import NotificationSender, SenderHandle
from .settings_store import SettingsStore

logger = logging.getLogger(__name__)

DEFAULT_AUTO_DISMISS = timedelta(seconds=5)
VIBRATION_PATTERN = [200, 100, 200]

ROUTES: Dict[NotificationType, str] = {
    NotificationType.EXPENSE_REMINDER: "/monthly-costs",
    NotificationType.EXPENSE_DUE: "/monthly-costs",
    NotificationType.INCOME_RECEIVED: "/financial",
    NotificationType.RESERVE_GOAL: "/reserves",
    NotificationType.TASK_REMINDER: "/tasks",
    NotificationType.JOB_UPDATE: "/jobs",
}


def route_for(notification_type: NotificationType) -> str:
    """In-app destination opened when a notification is clicked."""
    return ROUTES.get(notification_type, "/")


@dataclass
class IconSet:
    icon_light: str = "/icons/web-app-manifest-192x192.png"
    icon_dark: str = "/icons/web-app-manifest-192x192-dark.png"
    badge_light: str = "/icons/favicon-96x96.png"
    badge_dark: str = "/icons/favicon-96x96-dark.png"

    def icon(self, theme: str) -> str:
        return self.icon_dark if theme == "dark" else self.icon_light

    def badge(self, theme: str) -> str:
        return self.badge_dark if theme == "dark" else self.badge_light


@dataclass
class DeliveryOutcome:
    """What happened to one ``show_notification`` call."""
    tag: str
    displayed: bool = False
    stored: bool = False
    skipped_reason: Optional[str] = None

    @property
    def delivered(self) -> bool:
        return self.displayed or self.stored

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tag": self.tag,
            "displayed": self.displayed,
            "stored": self.stored,
            "skipped_reason": self.skipped_reason,
        }


@dataclass
class _InFlight:
    data: NotificationData
    handle: Optional[SenderHandle] = None
    dismiss_timer: Optional[TimerHandle] = None


Navigator = Callable[[str, str, str], Awaitable[None]]


class DeliveryDispatcher:
    """
    Shows notifications on the platform channel and in the in-app list.

    A tag stays in the in-flight set while its OS notification is on screen;
    a second ``show_notification`` with the same tag is dropped until the
    notification is clicked or auto-dismissed.
    """

    def __init__(
        self,
        settings_store: SettingsStore,
        ledger: InAppNotificationLedger,
        sender: NotificationSender,
        remote_sync: RemoteSyncAdapter,
        clock: Clock,
        auto_dismiss: timedelta = DEFAULT_AUTO_DISMISS,
        icons: Optional[IconSet] = None,
        theme_provider: Optional[Callable[[], str]] = None,
        navigator: Optional[Navigator] = None,
    ):
        self._settings = settings_store
        self._ledger = ledger
        self._sender = sender
        self._remote_sync = remote_sync
        self._clock = clock
        self._auto_dismiss = auto_dismiss
        self._icons = icons or IconSet()
        self._theme_provider = theme_provider or (lambda: "light")
        self._navigator = navigator or sender.navigate

        self._in_flight: Dict[str, _InFlight] = {}
        self._sync_tasks: Set[asyncio.Task] = set()

        sender.on_click(self.handle_click)

    @property
    def sender(self) -> NotificationSender:
        return self._sender

    def in_flight_tags(self) -> Set[str]:
        return set(self._in_flight)

    async def initialize(self) -> PermissionState:
        """Ask the platform for permission once at startup."""
        if not self._sender.is_available:
            logger.warning("OS notifications not supported here; using in-app delivery only")
            return PermissionState.DENIED
        try:
            permission = await self._sender.request_permission()
        except Exception as e:
            logger.error(f"Error requesting notification permission: {e}")
            return PermissionState.DENIED
        if permission is PermissionState.DENIED:
            logger.warning("Notification permission denied; using in-app delivery only")
        else:
            logger.info(f"Notification permission: {permission.value}")
        return permission

    # -------------------------------------------------------------------------
    # Public operations
    # -------------------------------------------------------------------------

    async def show_notification(self, data: NotificationData) -> DeliveryOutcome:
        """Deliver ``data`` now, subject to settings and dedup."""
        return await self._deliver(data, in_app_fallback=False)

    async def schedule_local_notification(
        self,
        payload: Union[NotificationData, Mapping[str, Any]],
    ) -> DeliveryOutcome:
        """
        Deliver an ad-hoc notification on the best available channel.

        When the OS channel cannot display it (unsupported platform,
        permission denied, push off) the notification goes to the in-app
        list instead. Never raises for delivery failures.
        """
        data = payload if isinstance(payload, NotificationData) else _data_from_mapping(payload)
        return await self._deliver(data, in_app_fallback=True)

    async def handle_click(self, tag: str, action: str = "open") -> None:
        """Platform click: release the tag, close, and route to the destination."""
        entry = self._in_flight.pop(tag, None)
        if entry is None:
            logger.debug(f"Click on {tag} after it was released")
            return

        if entry.dismiss_timer is not None:
            entry.dismiss_timer.cancel()
        if entry.handle is not None:
            await self._close(entry.handle)

        if action == "close":
            return

        route = route_for(entry.data.type)
        try:
            await self._navigator(entry.data.user_id, route, tag)
        except Exception as e:
            logger.warning(f"Navigation to {route} after click on {tag} failed: {e}")

    def release_all(self) -> int:
        """Forget every in-flight tag and its auto-dismiss timer."""
        count = len(self._in_flight)
        for entry in self._in_flight.values():
            if entry.dismiss_timer is not None:
                entry.dismiss_timer.cancel()
        self._in_flight.clear()
        return count

    async def drain(self) -> None:
        """Wait for background remote syncs to finish."""
        while self._sync_tasks:
            await asyncio.gather(*list(self._sync_tasks), return_exceptions=True)

    # -------------------------------------------------------------------------
    # Delivery steps
    # -------------------------------------------------------------------------

    async def _deliver(self, data: NotificationData, in_app_fallback: bool) -> DeliveryOutcome:
        settings = self._settings.get()
        tag = data.effective_tag
        outcome = DeliveryOutcome(tag=tag)

        if not settings.enabled:
            outcome.skipped_reason = "disabled"
            return outcome

        if tag in self._in_flight:
            logger.debug(f"Notification {tag} already on screen, skipping")
            outcome.skipped_reason = "duplicate"
            return outcome

        if not settings.category_enabled(data.type):
            logger.debug(f"Category {data.type.value} disabled, skipping {tag}")
            outcome.skipped_reason = "category_disabled"
            return outcome

        entry = _InFlight(data=data)
        self._in_flight[tag] = entry

        if settings.push_enabled:
            outcome.displayed = await self._show_os(tag, entry, settings)

        if not outcome.displayed and self._in_flight.get(tag) is entry:
            del self._in_flight[tag]

        if settings.in_app_enabled or (in_app_fallback and not outcome.displayed):
            outcome.stored = await self._store_in_app(data)

        if data.sync_remote:
            self._spawn_sync(data)

        logger.info(
            f"Delivered {tag}: os={outcome.displayed} in_app={outcome.stored} "
            f"type={data.type.value} priority={data.priority.value}"
        )
        return outcome

    def render(self, data: NotificationData, settings: NotificationSettings) -> PushNotificationPayload:
        """Build the platform payload for ``data``."""
        theme = self._theme_provider()
        badge = data.badge or self._icons.badge(theme)
        return PushNotificationPayload(
            title=data.title,
            body=data.body,
            tag=data.effective_tag,
            icon=data.icon or self._icons.icon(theme),
            badge=badge,
            data={
                **data.data,
                "id": data.id,
                "type": data.type.value,
                "priority": data.priority.value,
                "userId": data.user_id,
                "route": route_for(data.type),
            },
            actions=default_actions(badge),
            require_interaction=data.priority is NotificationPriority.URGENT,
            silent=not settings.sound_enabled,
            vibrate=list(VIBRATION_PATTERN) if settings.vibration_enabled else None,
        )

    async def _show_os(self, tag: str, entry: _InFlight, settings: NotificationSettings) -> bool:
        if not self._sender.is_available:
            return False
        permission = self._sender.permission_for(entry.data.user_id)
        if permission is not PermissionState.GRANTED:
            logger.debug(f"No notification permission ({permission.value}) for {tag}")
            return False

        payload = self.render(entry.data, settings)
        try:
            handle = await self._sender.show(payload, entry.data.user_id)
        except Exception as e:
            logger.warning(f"Error showing {tag} on {self._sender.channel}: {e}")
            return False
        if handle is None:
            return False

        entry.handle = handle
        entry.dismiss_timer = self._clock.schedule_in(
            lambda: self._dismiss(tag, handle), self._auto_dismiss
        )
        return True

    async def _dismiss(self, tag: str, handle: SenderHandle) -> None:
        entry = self._in_flight.get(tag)
        if entry is not None:
            if entry.handle is not handle:
                # A newer notification owns the tag now.
                return
            del self._in_flight[tag]
        await self._close(handle)

    async def _close(self, handle: SenderHandle) -> None:
        try:
            await self._sender.close(handle)
        except Exception as e:
            logger.debug(f"Closing {handle.tag} failed: {e}")

    async def _store_in_app(self, data: NotificationData) -> bool:
        try:
            await self._ledger.add(data.to_in_app())
        except Exception as e:
            logger.error(f"Failed to store in-app notification {data.effective_tag}: {e}")
            return False
        return True

    def spawn_remote(self, operation: Awaitable[Any]) -> None:
        """Run a best-effort remote operation in the background; see ``drain``."""
        task = asyncio.ensure_future(operation)
        self._sync_tasks.add(task)
        task.add_done_callback(self._sync_done)

    def _spawn_sync(self, data: NotificationData) -> None:
        self.spawn_remote(self._remote_sync.persist(data))

    def _sync_done(self, task: "asyncio.Future[Any]") -> None:
        self._sync_tasks.discard(task)


def _data_from_mapping(payload: Mapping[str, Any]) -> NotificationData:
    """Build NotificationData from a loose dict (camelCase or snake_case)."""
    def pick(*names, default=None):
        for name in names:
            if payload.get(name) is not None:
                return payload[name]
        return default

    kwargs: Dict[str, Any] = {
        "title": str(pick("title", default="")),
        "body": str(pick("body", "message", default="")),
        "tag": pick("tag"),
        "type": _coerce(NotificationType, pick("type"), NotificationType.GENERAL),
        "priority": _coerce(NotificationPriority, pick("priority"), NotificationPriority.MEDIUM),
        "user_id": str(pick("user_id", "userId", default="")),
        "data": dict(pick("data", default={}) or {}),
        "icon": pick("icon"),
        "badge": pick("badge"),
        "category": pick("category"),
        "due_date": parse_instant(pick("due_date", "dueDate")),
        "expires_at": parse_instant(pick("expires_at", "expiresAt")),
    }
    notification_id = pick("id")
    if notification_id is not None:
        kwargs["id"] = str(notification_id)
    return NotificationData(**kwargs)


def _coerce(enum_cls, value, default):
    if value is None:
        return default
    try:
        return enum_cls(value)
    except ValueError:
        return default
