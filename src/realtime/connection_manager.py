"""
WebSocket Connection Manager

Tracks browser connections per user, the notification permission each
browser reported, and routes notification events to them.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional
from dataclasses import dataclass, field
from fastapi import WebSocket

from .events import ClientMessageType, EventType, RealtimeEvent

logger = logging.getLogger(__name__)

ClickHandler = Callable[[str, str], Awaitable[None]]
MarkReadHandler = Callable[[str], Awaitable[Any]]


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ConnectionInfo:
    """Information about a WebSocket connection."""
    websocket: WebSocket
    user_id: str
    connected_at: datetime = field(default_factory=_now)
    last_activity: datetime = field(default_factory=_now)

    # Browser Notification API permission as reported by the client
    permission: str = "default"

    # Stats
    messages_sent: int = 0
    messages_received: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "user_id": self.user_id,
            "connected_at": self.connected_at.isoformat(),
            "last_activity": self.last_activity.isoformat(),
            "permission": self.permission,
            "messages_sent": self.messages_sent,
            "messages_received": self.messages_received,
        }


class ConnectionManager:
    """
    Manages WebSocket connections for browser notification delivery.

    One connection per user; a new connection replaces the previous one.
    Click and mark-read messages from clients are forwarded to handlers
    registered by the notification service.
    """

    def __init__(self):
        self._connections: Dict[str, ConnectionInfo] = {}
        self._lock = asyncio.Lock()
        self._click_handler: Optional[ClickHandler] = None
        self._mark_read_handler: Optional[MarkReadHandler] = None

    def set_click_handler(self, handler: ClickHandler) -> None:
        self._click_handler = handler

    def set_mark_read_handler(self, handler: MarkReadHandler) -> None:
        self._mark_read_handler = handler

    async def connect(self, websocket: WebSocket, user_id: str) -> ConnectionInfo:
        """Accept a new WebSocket connection."""
        await websocket.accept()

        connection = ConnectionInfo(websocket=websocket, user_id=user_id)

        async with self._lock:
            old = self._connections.pop(user_id, None)
            self._connections[user_id] = connection

        if old is not None:
            await self._close_quietly(old)

        logger.info(f"[WS] Connected: user={user_id}")

        await self._send_to_connection(connection, RealtimeEvent(
            event_type=EventType.CONNECTED,
            user_id=user_id,
            data={"message": "Connected to notifications", "user_id": user_id},
        ))
        return connection

    async def disconnect(self, user_id: str, websocket: Optional[WebSocket] = None) -> None:
        """Forget a user's connection (only if it is still ``websocket``)."""
        async with self._lock:
            connection = self._connections.get(user_id)
            if connection is None:
                return
            if websocket is not None and connection.websocket is not websocket:
                return
            del self._connections[user_id]
        logger.info(f"[WS] Disconnected: user={user_id}")

    async def _close_quietly(self, connection: ConnectionInfo) -> None:
        try:
            await connection.websocket.close()
        except Exception as e:
            logger.debug(f"[WS] Close of replaced connection failed: {e}")

    def is_connected(self, user_id: str) -> bool:
        return user_id in self._connections

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def permission_state(self) -> str:
        """Aggregate permission across connected browsers.

        ``granted`` if any browser granted, ``denied`` if every browser
        that answered denied, otherwise ``default``.
        """
        states = [c.permission for c in self._connections.values()]
        if "granted" in states:
            return "granted"
        if states and all(s == "denied" for s in states):
            return "denied"
        return "default"

    def permission_for(self, user_id: str) -> str:
        """Permission reported by one user's browser; the aggregate for broadcasts."""
        if not user_id:
            return self.permission_state()
        connection = self._connections.get(user_id)
        return connection.permission if connection is not None else "default"

    async def send_event(self, event: RealtimeEvent) -> int:
        """
        Deliver an event.

        Returns:
            Number of connections the event was written to.
        """
        async with self._lock:
            if event.broadcast:
                connections = list(self._connections.values())
            else:
                connection = self._connections.get(event.user_id or "")
                connections = [connection] if connection else []

        delivered = 0
        for connection in connections:
            if await self._send_to_connection(connection, event):
                delivered += 1

        logger.debug(f"[WS] {event.event_type.value} -> {delivered} client(s)")
        return delivered

    async def _send_to_connection(self, connection: ConnectionInfo, event: RealtimeEvent) -> bool:
        try:
            await connection.websocket.send_json(event.to_dict())
        except Exception as e:
            logger.warning(f"[WS] Failed to send to {connection.user_id}: {e}")
            # Don't remove here - let the disconnect handler clean up
            return False
        connection.messages_sent += 1
        connection.last_activity = _now()
        return True

    async def handle_message(self, user_id: str, message: Dict[str, Any]) -> None:
        """
        Handle an incoming message from a client.

        Supported message types:
        - ping: keepalive, answered with a heartbeat
        - permission: {"state": "granted" | "denied" | "default"}
        - click: {"tag": "...", "action": "open" | "close"}
        - mark_read: {"notification_id": "..."}
        """
        connection = self._connections.get(user_id)
        if connection is None:
            return
        connection.messages_received += 1
        connection.last_activity = _now()

        try:
            msg_type = ClientMessageType(message.get("type", ""))
        except ValueError:
            logger.debug(f"[WS] Unknown message type from {user_id}: {message.get('type')!r}")
            return

        if msg_type is ClientMessageType.PING:
            await self._send_to_connection(connection, RealtimeEvent(
                event_type=EventType.HEARTBEAT,
                user_id=user_id,
                data={"timestamp": _now().isoformat()},
            ))

        elif msg_type is ClientMessageType.PERMISSION:
            state = str(message.get("state", "default"))
            if state in ("granted", "denied", "default"):
                connection.permission = state
                logger.info(f"[WS] Notification permission for {user_id}: {state}")

        elif msg_type is ClientMessageType.CLICK:
            tag = message.get("tag")
            if tag and self._click_handler is not None:
                await self._click_handler(str(tag), str(message.get("action") or "open"))

        elif msg_type is ClientMessageType.MARK_READ:
            notification_id = message.get("notification_id")
            if notification_id and self._mark_read_handler is not None:
                await self._mark_read_handler(str(notification_id))

    def get_connection_info(self, user_id: str) -> Optional[ConnectionInfo]:
        return self._connections.get(user_id)

    def get_stats(self) -> Dict[str, Any]:
        """Get connection statistics."""
        return {
            "total_connections": len(self._connections),
            "permission": self.permission_state(),
            "connections": [c.to_dict() for c in self._connections.values()],
        }

    async def close_all(self) -> None:
        async with self._lock:
            connections: List[ConnectionInfo] = list(self._connections.values())
            self._connections.clear()
        for connection in connections:
            await self._close_quietly(connection)
