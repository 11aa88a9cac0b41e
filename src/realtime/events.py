"""
Real-Time Event Models

Event types and structures exchanged with browser clients over WebSocket.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Dict, Any
from enum import Enum
from uuid import uuid4


class EventType(str, Enum):
    """Types of real-time events."""
    # Connection events
    CONNECTED = "connected"
    HEARTBEAT = "heartbeat"

    # Notification display (server -> client)
    NOTIFICATION = "notification"
    NOTIFICATION_CLOSE = "notification_close"
    NAVIGATE = "navigate"

    # Ledger changes (server -> client)
    NOTIFICATION_CREATED = "notification_created"
    NOTIFICATION_UPDATED = "notification_updated"
    NOTIFICATION_READ = "notification_read"
    NOTIFICATION_DELETED = "notification_deleted"
    SETTINGS_UPDATED = "settings_updated"


class ClientMessageType(str, Enum):
    """Messages a browser client may send."""
    PING = "ping"
    PERMISSION = "permission"
    CLICK = "click"
    MARK_READ = "mark_read"


class EventPriority(str, Enum):
    """Priority levels for events."""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


@dataclass
class RealtimeEvent:
    """
    Base class for all real-time events.

    Events are sent to a single user's connection, or to every connection
    when ``broadcast`` is set.
    """
    id: str = field(default_factory=lambda: str(uuid4()))
    event_type: EventType = EventType.NOTIFICATION
    priority: EventPriority = EventPriority.NORMAL

    # Payload
    data: Dict[str, Any] = field(default_factory=dict)

    # Targeting
    user_id: Optional[str] = None
    broadcast: bool = False

    # Metadata
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    source: str = "notifications"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "type": self.event_type.value,
            "priority": self.priority.value,
            "data": self.data,
            "user_id": self.user_id,
            "timestamp": self.created_at.isoformat(),
            "source": self.source,
        }


_PRIORITY_MAP = {
    "low": EventPriority.LOW,
    "medium": EventPriority.NORMAL,
    "high": EventPriority.HIGH,
    "urgent": EventPriority.URGENT,
}


# Convenience functions for creating common events

def create_notification_event(
    user_id: Optional[str],
    payload: Dict[str, Any],
    priority: str = "medium",
) -> RealtimeEvent:
    """Ask the browser to display a notification (``payload`` as rendered)."""
    return RealtimeEvent(
        event_type=EventType.NOTIFICATION,
        priority=_PRIORITY_MAP.get(priority, EventPriority.NORMAL),
        user_id=user_id or None,
        broadcast=not user_id,
        data=payload,
    )


def create_close_event(user_id: Optional[str], tag: str) -> RealtimeEvent:
    """Ask the browser to close a displayed notification."""
    return RealtimeEvent(
        event_type=EventType.NOTIFICATION_CLOSE,
        priority=EventPriority.LOW,
        user_id=user_id or None,
        broadcast=not user_id,
        data={"tag": tag},
    )


def create_navigate_event(user_id: Optional[str], route: str, tag: str) -> RealtimeEvent:
    """Route the browser to an in-app destination after a click."""
    return RealtimeEvent(
        event_type=EventType.NAVIGATE,
        user_id=user_id or None,
        broadcast=not user_id,
        data={"route": route, "tag": tag},
    )


def create_ledger_event(
    event_type: EventType,
    user_id: Optional[str],
    notification_id: Optional[str] = None,
) -> RealtimeEvent:
    """Tell other tabs that the in-app list changed."""
    return RealtimeEvent(
        event_type=event_type,
        priority=EventPriority.LOW,
        user_id=user_id or None,
        broadcast=not user_id,
        data={"notification_id": notification_id},
    )
