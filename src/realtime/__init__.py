"""
Real-Time Notification Channel

WebSocket transport for browser notifications.

Features:
- Per-user WebSocket connection management
- Permission, click and read messages from browsers
- Typed events for display, close and navigation

WebSocket Connection:
    Connect to: ws://host/ws/notifications?user_id=<id>

    Messages (client -> server):
    - {"type": "ping"}
    - {"type": "permission", "state": "granted"}
    - {"type": "click", "tag": "...", "action": "open"}
    - {"type": "mark_read", "notification_id": "..."}

    Events (server -> client):
    - {"id": "...", "type": "notification", "data": {...}, "timestamp": "..."}
"""

from .events import (
    ClientMessageType,
    EventPriority,
    EventType,
    RealtimeEvent,
    create_close_event,
    create_ledger_event,
    create_navigate_event,
    create_notification_event,
)
from .connection_manager import ConnectionInfo, ConnectionManager

__all__ = [
    "ClientMessageType",
    "ConnectionInfo",
    "ConnectionManager",
    "EventPriority",
    "EventType",
    "RealtimeEvent",
    "create_close_event",
    "create_ledger_event",
    "create_navigate_event",
    "create_notification_event",
]
