"""
In-App Notification Ledger

Bounded, newest-first list of delivered notifications with read state.
The whole list is persisted as one JSON snapshot after every mutation.
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping

from pydantic import ValidationError

from .errors import StorageError
from .models import (
    InAppNotification,
    NotificationPriority,
    NotificationStats,
    NotificationType,
)
from .storage import KeyValueStore

logger = logging.getLogger(__name__)

LEDGER_KEY = "in_app_notifications"
DEFAULT_CAPACITY = 50

_TYPES = {t.value for t in NotificationType}
_PRIORITIES = {p.value for p in NotificationPriority}


class InAppNotificationLedger:
    """
    Ordered log of in-app notifications.

    Invariants:
    - at most ``capacity`` records; the oldest are evicted first
    - order is insertion order, newest first; read-state changes never reorder
    - operations on unknown ids are no-ops
    """

    def __init__(
        self,
        storage: KeyValueStore,
        capacity: int = DEFAULT_CAPACITY,
        key: str = LEDGER_KEY,
    ):
        self._storage = storage
        self._capacity = capacity
        self._key = key
        self._items: List[InAppNotification] = []
        self._lock = asyncio.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    async def load(self) -> List[InAppNotification]:
        """Restore the snapshot from storage."""
        try:
            raw = await self._storage.get(self._key)
        except StorageError as e:
            logger.warning(f"Could not read in-app notifications, starting empty: {e}")
            raw = None
        if raw is None:
            self._items = []
            return self.list()

        try:
            records = json.loads(raw)
            if not isinstance(records, list):
                raise ValueError("ledger snapshot is not a list")
            self._items = [InAppNotification.model_validate(r) for r in records][: self._capacity]
        except (ValueError, ValidationError) as e:
            logger.warning(f"In-app notification snapshot unreadable, starting empty: {e}")
            self._items = []

        logger.debug(f"Loaded {len(self._items)} in-app notifications")
        return self.list()

    def list(self) -> List[InAppNotification]:
        return list(self._items)

    def get(self, notification_id: str):
        for item in self._items:
            if item.id == notification_id:
                return item
        return None

    def unread_count(self) -> int:
        return sum(1 for item in self._items if not item.is_read)

    def stats(self) -> NotificationStats:
        stats = NotificationStats(total=len(self._items), unread=self.unread_count())
        for item in self._items:
            stats.by_type[item.type.value] = stats.by_type.get(item.type.value, 0) + 1
            stats.by_priority[item.priority.value] = stats.by_priority.get(item.priority.value, 0) + 1
        return stats

    async def add(self, record: InAppNotification) -> InAppNotification:
        async with self._lock:
            self._items.insert(0, record)
            evicted = len(self._items) - self._capacity
            if evicted > 0:
                del self._items[self._capacity:]
                logger.debug(f"Evicted {evicted} oldest in-app notification(s)")
            await self._persist()
        return record

    async def mark_as_read(self, notification_id: str) -> bool:
        async with self._lock:
            changed = False
            for item in self._items:
                if item.id == notification_id and not item.is_read:
                    item.is_read = True
                    changed = True
            await self._persist()
        return changed

    async def mark_all_as_read(self) -> int:
        async with self._lock:
            changed = 0
            for item in self._items:
                if not item.is_read:
                    item.is_read = True
                    changed += 1
            await self._persist()
        return changed

    async def delete(self, notification_id: str) -> bool:
        async with self._lock:
            before = len(self._items)
            self._items = [item for item in self._items if item.id != notification_id]
            await self._persist()
        return len(self._items) < before

    async def purge_expired(self, now: datetime) -> int:
        """Drop records whose ``expiresAt`` has passed."""
        async with self._lock:
            before = len(self._items)
            self._items = [item for item in self._items if not item.is_expired(now)]
            removed = before - len(self._items)
            if removed:
                await self._persist()
        return removed

    async def clear(self) -> None:
        async with self._lock:
            self._items = []
            await self._persist()

    async def apply_remote_change(self, change: Mapping[str, Any]) -> None:
        """Apply a change event from the remote notifications feed.

        ``change`` carries ``eventType`` (INSERT, UPDATE or DELETE) and the
        row in ``new`` / ``old``, using the remote column names.
        """
        event_type = str(change.get("eventType", "")).upper()
        if event_type == "INSERT":
            record = _from_remote_row(change.get("new") or {})
            async with self._lock:
                if any(item.id == record.id for item in self._items):
                    return
                self._items.insert(0, record)
                del self._items[self._capacity:]
                await self._persist()
        elif event_type == "UPDATE":
            row = change.get("new") or {}
            updates = _remote_updates(row)
            async with self._lock:
                for index, item in enumerate(self._items):
                    if item.id == str(row.get("id")):
                        self._items[index] = item.model_copy(update=updates)
                await self._persist()
        elif event_type == "DELETE":
            row = change.get("old") or {}
            async with self._lock:
                self._items = [item for item in self._items if item.id != str(row.get("id"))]
                await self._persist()
        else:
            logger.debug(f"Ignoring remote change of type {event_type!r}")

    async def import_remote_rows(self, rows: List[Mapping[str, Any]]) -> int:
        """Add fetched remote rows (newest first) that are not in the list yet."""
        async with self._lock:
            known = {item.id for item in self._items}
            fresh = [
                _from_remote_row(row) for row in rows
                if row.get("id") and str(row["id"]) not in known
            ]
            if not fresh:
                return 0
            self._items = (fresh + self._items)[: self._capacity]
            await self._persist()
        logger.debug(f"Imported {len(fresh)} remote notification(s)")
        return len(fresh)

    async def _persist(self) -> None:
        snapshot = json.dumps([item.to_json_dict() for item in self._items])
        await self._storage.set(self._key, snapshot)


def _from_remote_row(row: Mapping[str, Any]) -> InAppNotification:
    data: Dict[str, Any] = dict(row.get("data") or {})
    notification_type = row.get("type")
    if notification_type not in _TYPES:
        notification_type = NotificationType.GENERAL
    priority = data.pop("priority", None)
    if priority not in _PRIORITIES:
        priority = NotificationPriority.MEDIUM
    return InAppNotification(
        id=str(row.get("id")),
        title=row.get("title") or "",
        message=row.get("body") or "",
        type=notification_type,
        priority=priority,
        due_date=data.get("due_date"),
        is_read=bool(row.get("is_read", False)),
        created_at=row.get("created_at") or datetime.now().astimezone(),
        user_id=str(row.get("user_id") or ""),
        data=data,
    )


def _remote_updates(row: Mapping[str, Any]) -> Dict[str, Any]:
    """Fields of an existing record that a (possibly partial) remote row changes."""
    updates: Dict[str, Any] = {}
    if "is_read" in row:
        updates["is_read"] = bool(row["is_read"])
    if row.get("title") is not None:
        updates["title"] = str(row["title"])
    if row.get("body") is not None:
        updates["message"] = str(row["body"])
    if row.get("type") in _TYPES:
        updates["type"] = NotificationType(row["type"])
    if isinstance(row.get("data"), Mapping):
        data = dict(row["data"])
        priority = data.pop("priority", None)
        if priority in _PRIORITIES:
            updates["priority"] = NotificationPriority(priority)
        updates["data"] = data
    return updates
