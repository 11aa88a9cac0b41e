"""
Platform Notification Senders

The dispatcher talks to exactly one sender, chosen once at startup:

- ``NativeSender``: desktop notifications through plyer
- ``WebSender``: browser Notification API, driven over WebSocket
- ``NullSender``: no OS channel; everything goes to the in-app list
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

from realtime.connection_manager import ConnectionManager
from realtime.events import create_close_event, create_navigate_event, create_notification_event

from .models import PermissionState, PushNotificationPayload

logger = logging.getLogger(__name__)

ClickCallback = Callable[[str, str], Awaitable[None]]


@dataclass
class SenderHandle:
    """Reference to a displayed OS notification."""
    tag: str
    user_id: str
    channel: str


class NotificationSender(ABC):
    """Common interface of every platform channel."""

    def __init__(self):
        self._click_callbacks: List[ClickCallback] = []

    @property
    @abstractmethod
    def channel(self) -> str:
        """Channel name for logging."""

    @property
    @abstractmethod
    def is_available(self) -> bool:
        """Whether this platform can display OS notifications at all."""

    @property
    @abstractmethod
    def permission(self) -> PermissionState:
        """Current permission without prompting."""

    def permission_for(self, user_id: str) -> PermissionState:
        """Permission that applies to notifications shown to ``user_id``."""
        return self.permission

    @abstractmethod
    async def request_permission(self) -> PermissionState:
        """Ask for permission to display notifications."""

    @abstractmethod
    async def show(self, payload: PushNotificationPayload, user_id: str) -> Optional[SenderHandle]:
        """Display ``payload``; None when nothing was displayed."""

    @abstractmethod
    async def close(self, handle: SenderHandle) -> None:
        """Close a displayed notification."""

    def on_click(self, callback: ClickCallback) -> None:
        self._click_callbacks.append(callback)

    async def handle_click(self, tag: str, action: str = "open") -> None:
        """Forward a platform click to registered callbacks."""
        for callback in list(self._click_callbacks):
            await callback(tag, action)

    async def navigate(self, user_id: str, route: str, tag: str) -> None:
        """Move the user's UI to ``route`` after a click."""
        logger.info(f"[{self.channel}] navigate {user_id or '*'} -> {route}")


class NullSender(NotificationSender):
    """No OS notifications on this platform."""

    @property
    def channel(self) -> str:
        return "null"

    @property
    def is_available(self) -> bool:
        return False

    @property
    def permission(self) -> PermissionState:
        return PermissionState.DENIED

    async def request_permission(self) -> PermissionState:
        return PermissionState.DENIED

    async def show(self, payload: PushNotificationPayload, user_id: str) -> Optional[SenderHandle]:
        logger.debug(f"[null] Would show notification {payload.tag}: {payload.title}")
        return None

    async def close(self, handle: SenderHandle) -> None:
        return None


class NativeSender(NotificationSender):
    """
    Desktop notifications through plyer.

    plyer has no close or click API, so ``close`` is a no-op and the
    notification's own timeout handles dismissal on the desktop.
    """

    def __init__(self, app_name: str = "FinanceFlow", timeout: int = 5):
        super().__init__()
        self.app_name = app_name
        self.timeout = timeout
        self._permission = PermissionState.DEFAULT
        self._notifier = None

    @property
    def channel(self) -> str:
        return "native"

    def _get_notifier(self):
        if self._notifier is None:
            from plyer import notification as plyer_notification
            self._notifier = plyer_notification
        return self._notifier

    @property
    def is_available(self) -> bool:
        try:
            self._get_notifier()
        except ImportError:
            return False
        return True

    @property
    def permission(self) -> PermissionState:
        return self._permission

    async def request_permission(self) -> PermissionState:
        # Desktop notifications need no prompt; availability is the permission.
        self._permission = PermissionState.GRANTED if self.is_available else PermissionState.DENIED
        return self._permission

    async def show(self, payload: PushNotificationPayload, user_id: str) -> Optional[SenderHandle]:
        notifier = self._get_notifier()
        await asyncio.to_thread(
            notifier.notify,
            title=payload.title,
            message=payload.body[:300],
            app_name=self.app_name,
            timeout=self.timeout,
        )
        return SenderHandle(tag=payload.tag, user_id=user_id, channel=self.channel)

    async def close(self, handle: SenderHandle) -> None:
        logger.debug(f"[native] {handle.tag} closes on its own timeout")


class WebSender(NotificationSender):
    """
    Browser notifications over WebSocket.

    The browser shows the payload with the Notification API and reports its
    permission and clicks back through the connection manager.
    """

    def __init__(self, connections: ConnectionManager):
        super().__init__()
        self._connections = connections
        connections.set_click_handler(self.handle_click)

    @property
    def channel(self) -> str:
        return "web"

    @property
    def is_available(self) -> bool:
        return True

    @property
    def permission(self) -> PermissionState:
        return PermissionState(self._connections.permission_state())

    def permission_for(self, user_id: str) -> PermissionState:
        return PermissionState(self._connections.permission_for(user_id))

    async def request_permission(self) -> PermissionState:
        # Browsers prompt on their own; we only learn the answer from clients.
        return self.permission

    async def show(self, payload: PushNotificationPayload, user_id: str) -> Optional[SenderHandle]:
        event = create_notification_event(
            user_id,
            payload.to_dict(),
            priority=str(payload.data.get("priority", "medium")),
        )
        delivered = await self._connections.send_event(event)
        if delivered == 0:
            return None
        return SenderHandle(tag=payload.tag, user_id=user_id, channel=self.channel)

    async def close(self, handle: SenderHandle) -> None:
        await self._connections.send_event(create_close_event(handle.user_id, handle.tag))

    async def navigate(self, user_id: str, route: str, tag: str) -> None:
        await self._connections.send_event(create_navigate_event(user_id, route, tag))


def resolve_sender(
    platform: str = "auto",
    connections: Optional[ConnectionManager] = None,
    app_name: str = "FinanceFlow",
) -> NotificationSender:
    """
    Pick the sender for this process.

    Selection order for ``auto``:
    1. WebSocket connection manager present -> WebSender
    2. plyer importable -> NativeSender
    3. NullSender
    """
    if platform == "none":
        logger.info("Notification sender: null (disabled by configuration)")
        return NullSender()

    if platform in ("auto", "web") and connections is not None:
        logger.info("Notification sender: web")
        return WebSender(connections)

    if platform in ("auto", "native"):
        native = NativeSender(app_name=app_name)
        if native.is_available:
            logger.info("Notification sender: native (plyer)")
            return native
        logger.warning("plyer is not installed; native notifications unavailable")

    logger.info("Notification sender: null")
    return NullSender()
