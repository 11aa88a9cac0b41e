"""
Notification Models

Enums, persisted records and transient payloads shared by the scheduling,
delivery and ledger components.

Persisted shapes (settings, in-app records) are pydantic models serialized
with camelCase keys; transient payloads are dataclasses.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_instant(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse an ISO-8601 string or datetime into an aware instant.

    Returns None for empty or unparseable input.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_aware(value)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return ensure_aware(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None


# =============================================================================
# ENUMS
# =============================================================================

class NotificationType(str, Enum):
    """Notification categories a user can opt in or out of."""
    EXPENSE_REMINDER = "expense_reminder"
    EXPENSE_DUE = "expense_due"
    INCOME_RECEIVED = "income_received"
    RESERVE_GOAL = "reserve_goal"
    SYSTEM_ALERT = "system_alert"
    TASK_REMINDER = "task_reminder"
    JOB_UPDATE = "job_update"
    GENERAL = "general"


class NotificationPriority(str, Enum):
    """Priority levels, ordered low to urgent."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        return _PRIORITY_ORDER.index(self)

    def __lt__(self, other):
        if not isinstance(other, NotificationPriority):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, NotificationPriority):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, NotificationPriority):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, NotificationPriority):
            return NotImplemented
        return self.rank >= other.rank


_PRIORITY_ORDER = [
    NotificationPriority.LOW,
    NotificationPriority.MEDIUM,
    NotificationPriority.HIGH,
    NotificationPriority.URGENT,
]


class ReminderBucket(str, Enum):
    """Fixed offsets before a due date at which a reminder may fire."""
    THREE_DAYS = "threeDays"
    ONE_DAY = "oneDay"
    SAME_DAY = "sameDay"

    @property
    def offset(self) -> timedelta:
        return _BUCKET_OFFSETS[self]

    @property
    def tag_suffix(self) -> str:
        return _BUCKET_SUFFIXES[self]

    @property
    def priority(self) -> NotificationPriority:
        return _BUCKET_PRIORITIES[self]

    @property
    def notification_type(self) -> NotificationType:
        if self is ReminderBucket.SAME_DAY:
            return NotificationType.EXPENSE_DUE
        return NotificationType.EXPENSE_REMINDER


_BUCKET_OFFSETS = {
    ReminderBucket.THREE_DAYS: timedelta(days=3),
    ReminderBucket.ONE_DAY: timedelta(days=1),
    ReminderBucket.SAME_DAY: timedelta(0),
}

_BUCKET_SUFFIXES = {
    ReminderBucket.THREE_DAYS: "3days",
    ReminderBucket.ONE_DAY: "1day",
    ReminderBucket.SAME_DAY: "sameday",
}

_BUCKET_PRIORITIES = {
    ReminderBucket.THREE_DAYS: NotificationPriority.MEDIUM,
    ReminderBucket.ONE_DAY: NotificationPriority.HIGH,
    ReminderBucket.SAME_DAY: NotificationPriority.URGENT,
}


class PermissionState(str, Enum):
    """OS notification permission."""
    DEFAULT = "default"
    GRANTED = "granted"
    DENIED = "denied"


# =============================================================================
# PERSISTED MODELS
# =============================================================================

class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=False,
    )


class ReminderTiming(_CamelModel):
    """Which reminder buckets are active."""
    three_days: bool = True
    one_day: bool = True
    same_day: bool = True

    def is_enabled(self, bucket: ReminderBucket) -> bool:
        if bucket is ReminderBucket.THREE_DAYS:
            return self.three_days
        if bucket is ReminderBucket.ONE_DAY:
            return self.one_day
        return self.same_day


def default_categories() -> Dict[NotificationType, bool]:
    return {notification_type: True for notification_type in NotificationType}


class NotificationSettings(_CamelModel):
    """User notification preferences."""
    enabled: bool = True
    push_enabled: bool = True
    in_app_enabled: bool = True
    sound_enabled: bool = True
    vibration_enabled: bool = True
    categories: Dict[NotificationType, bool] = Field(default_factory=default_categories)
    reminder_timing: ReminderTiming = Field(default_factory=ReminderTiming)

    @field_validator("categories", mode="before")
    @classmethod
    def _known_categories(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        known = {t.value for t in NotificationType}
        merged = {t.value: True for t in NotificationType}
        for key, enabled in value.items():
            key = key.value if isinstance(key, NotificationType) else key
            if key in known:
                merged[key] = bool(enabled)
        return merged

    def category_enabled(self, notification_type: NotificationType) -> bool:
        return self.categories.get(notification_type, True)

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class InAppNotification(_CamelModel):
    """A notification visible in the in-app list."""
    id: str = Field(default_factory=lambda: uuid4().hex)
    title: str
    message: str = ""
    type: NotificationType = NotificationType.GENERAL
    priority: NotificationPriority = NotificationPriority.MEDIUM
    category: Optional[str] = None
    due_date: Optional[datetime] = None
    is_read: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: Optional[datetime] = None
    user_id: str = ""
    data: Dict[str, Any] = Field(default_factory=dict)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and ensure_aware(self.expires_at) <= now

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ExpenseEntity(_CamelModel):
    """A due-dated expense that can carry reminders."""
    id: str
    description: str = ""
    value: Optional[float] = None
    due_date: Optional[datetime] = None
    notification_enabled: bool = False
    user_id: str = ""

    @field_validator("id", "user_id", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        return "" if value is None else str(value)

    @field_validator("due_date", mode="before")
    @classmethod
    def _lenient_due_date(cls, value: Any) -> Any:
        # Bad dates mean "no reminder", never a validation error.
        return parse_instant(value)


# =============================================================================
# TRANSIENT PAYLOADS
# =============================================================================

@dataclass(frozen=True)
class ReminderKey:
    """Composite key of one reminder: entity id plus bucket."""
    entity_id: str
    bucket: ReminderBucket

    @property
    def tag(self) -> str:
        return f"expense-{self.entity_id}-{self.bucket.tag_suffix}"


@dataclass
class NotificationData:
    """Input to the delivery dispatcher."""
    title: str
    body: str = ""
    id: str = field(default_factory=lambda: uuid4().hex)
    tag: Optional[str] = None
    type: NotificationType = NotificationType.GENERAL
    priority: NotificationPriority = NotificationPriority.MEDIUM
    user_id: str = ""
    created_at: datetime = field(default_factory=utcnow)
    data: Dict[str, Any] = field(default_factory=dict)
    icon: Optional[str] = None
    badge: Optional[str] = None
    category: Optional[str] = None
    due_date: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    sync_remote: bool = True

    @property
    def effective_tag(self) -> str:
        return self.tag or f"{self.type.value}-{self.id}"

    def to_in_app(self) -> InAppNotification:
        return InAppNotification(
            id=self.id,
            title=self.title,
            message=self.body,
            type=self.type,
            priority=self.priority,
            category=self.category or self.type.value,
            due_date=self.due_date,
            created_at=self.created_at,
            expires_at=self.expires_at,
            user_id=self.user_id,
            data=dict(self.data),
        )

    def to_remote_record(self) -> Dict[str, Any]:
        """Row shape of the remote ``notifications`` table."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type.value,
            "title": self.title,
            "body": self.body,
            "data": {
                **self.data,
                "priority": self.priority.value,
                "tag": self.effective_tag,
                "due_date": self.due_date.isoformat() if self.due_date else None,
            },
            "is_read": False,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class NotificationAction:
    action: str
    title: str
    icon: Optional[str] = None


def default_actions(icon: Optional[str] = None) -> List[NotificationAction]:
    return [
        NotificationAction(action="open", title="Abrir", icon=icon),
        NotificationAction(action="close", title="Fechar", icon=icon),
    ]


@dataclass
class PushNotificationPayload:
    """Rendered payload handed to a platform sender."""
    title: str
    body: str
    tag: str
    icon: Optional[str] = None
    badge: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    actions: List[NotificationAction] = field(default_factory=list)
    require_interaction: bool = False
    silent: bool = False
    vibrate: Optional[List[int]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "body": self.body,
            "tag": self.tag,
            "icon": self.icon,
            "badge": self.badge,
            "data": self.data,
            "actions": [
                {"action": a.action, "title": a.title, "icon": a.icon}
                for a in self.actions
            ],
            "requireInteraction": self.require_interaction,
            "silent": self.silent,
            "vibrate": self.vibrate,
        }


@dataclass
class ScheduledReminder:
    """A pending one-shot reminder."""
    key: ReminderKey
    fire_at: datetime
    notification: NotificationData

    @property
    def tag(self) -> str:
        return self.key.tag

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tag": self.tag,
            "entity_id": self.key.entity_id,
            "bucket": self.key.bucket.value,
            "fire_at": self.fire_at.isoformat(),
            "type": self.notification.type.value,
            "priority": self.notification.priority.value,
        }


@dataclass
class NotificationStats:
    total: int = 0
    unread: int = 0
    by_type: Dict[str, int] = field(default_factory=lambda: {t.value: 0 for t in NotificationType})
    by_priority: Dict[str, int] = field(default_factory=lambda: {p.value: 0 for p in NotificationPriority})

    @property
    def read(self) -> int:
        return self.total - self.unread

    @property
    def read_rate(self) -> int:
        """Percentage of read notifications, rounded."""
        if self.total == 0:
            return 0
        return round(self.read / self.total * 100)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "unread": self.unread,
            "read": self.read,
            "readRate": self.read_rate,
            "byType": dict(self.by_type),
            "byPriority": dict(self.by_priority),
        }
