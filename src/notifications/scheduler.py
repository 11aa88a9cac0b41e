"""
Reminder Scheduling Engine

Turns a due-dated expense into up to three one-shot reminders:

    threeDays  dueDate - 72h   expense_reminder  medium
    oneDay     dueDate - 24h   expense_reminder  high
    sameDay    dueDate         expense_due       urgent

Offsets are exact wall-clock arithmetic on the due instant. Instants that
are not strictly in the future are skipped, never fired late.

Rescheduling an entity supersedes its previous reminders: existing timers
for the same ``ReminderKey`` are cancelled before new ones are registered,
so there is never more than one pending timer per key.
"""

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import ValidationError

from middleware.correlation import correlation_scope

from .clock import Clock, TimerHandle
from .dispatcher import DeliveryDispatcher
from .models import (
    ExpenseEntity,
    NotificationData,
    ReminderBucket,
    ReminderKey,
    ScheduledReminder,
)
from .remote_sync import RemoteSyncAdapter
from .settings_store import SettingsStore

logger = logging.getLogger(__name__)


def format_currency(value: Optional[float]) -> str:
    """Format a value as Brazilian reais (R$ 1.234,56)."""
    if value is None:
        return ""
    text = f"{value:,.2f}"
    return "R$ " + text.replace(",", "_").replace(".", ",").replace("_", ".")


def reminder_content(entity: ExpenseEntity, bucket: ReminderBucket) -> Tuple[str, str]:
    """Title and body of the reminder for ``bucket``."""
    amount = format_currency(entity.value)
    suffix = f" de {amount}" if amount else ""
    description = entity.description or "Despesa"

    if bucket is ReminderBucket.THREE_DAYS:
        return "Lembrete de Vencimento", f"{description}{suffix} vence em 3 dias"
    if bucket is ReminderBucket.ONE_DAY:
        return "Vencimento Amanhã", f"{description}{suffix} vence amanhã"
    return "Vencimento Hoje", f"{description}{suffix} vence hoje"


class ReminderScheduler:
    """
    Owns the timer map ``ReminderKey -> TimerHandle``.

    Timer registration never awaits, so ``cancel_all_notifications`` can not
    interleave with a half-registered schedule.
    """

    def __init__(
        self,
        settings_store: SettingsStore,
        dispatcher: DeliveryDispatcher,
        remote_sync: RemoteSyncAdapter,
        clock: Clock,
    ):
        self._settings = settings_store
        self._dispatcher = dispatcher
        self._remote_sync = remote_sync
        self._clock = clock
        self._timers: Dict[ReminderKey, TimerHandle] = {}
        self._reminders: Dict[ReminderKey, ScheduledReminder] = {}

    async def schedule_expense_reminder(
        self,
        entity: Union[ExpenseEntity, Mapping[str, Any]],
    ) -> List[ScheduledReminder]:
        """
        Schedule the reminders of one expense.

        Returns:
            The reminders registered by this call (empty when nothing was
            scheduled: notifications off, no due date, or all instants past).
        """
        expense = _coerce_entity(entity)
        if expense is None:
            return []

        settings = self._settings.get()
        if not settings.enabled:
            logger.debug(f"Notifications disabled, not scheduling expense {expense.id}")
            return []
        if expense.due_date is None or not expense.notification_enabled:
            logger.debug(f"Expense {expense.id} has no due date or reminders off")
            return []

        self.cancel_expense_notifications(expense.id)

        now = self._clock.now()
        scheduled: List[ScheduledReminder] = []
        for bucket in ReminderBucket:
            if not settings.reminder_timing.is_enabled(bucket):
                continue
            fire_at = expense.due_date - bucket.offset
            if fire_at <= now:
                logger.debug(f"Skipping past {bucket.value} reminder for expense {expense.id}")
                continue

            key = ReminderKey(entity_id=expense.id, bucket=bucket)
            reminder = ScheduledReminder(
                key=key,
                fire_at=fire_at,
                notification=self._build_notification(expense, key),
            )
            self._register(reminder)
            scheduled.append(reminder)

        if scheduled:
            logger.info(
                f"Scheduled {len(scheduled)} reminder(s) for expense {expense.id}: "
                f"{', '.join(r.tag for r in scheduled)}"
            )
            await asyncio.gather(
                *(self._remote_sync.persist(r.notification) for r in scheduled)
            )
        return scheduled

    def cancel_expense_notifications(self, entity_id: Any) -> int:
        """Cancel every bucket timer of ``entity_id``. Idempotent."""
        entity_id = str(entity_id)
        cancelled = 0
        for bucket in ReminderBucket:
            key = ReminderKey(entity_id=entity_id, bucket=bucket)
            handle = self._timers.pop(key, None)
            self._reminders.pop(key, None)
            if handle is not None:
                handle.cancel()
                cancelled += 1
        if cancelled:
            logger.debug(f"Cancelled {cancelled} reminder(s) for expense {entity_id}")
        return cancelled

    def cancel_all_notifications(self) -> int:
        """Cancel every pending timer and release every in-flight tag."""
        cancelled = len(self._timers)
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        self._reminders.clear()
        released = self._dispatcher.release_all()
        logger.info(f"Cancelled {cancelled} reminder(s), released {released} in-flight tag(s)")
        return cancelled

    def pending(self) -> List[ScheduledReminder]:
        """Pending reminders ordered by fire instant."""
        return sorted(self._reminders.values(), key=lambda r: r.fire_at)

    def pending_for(self, entity_id: Any) -> List[ScheduledReminder]:
        entity_id = str(entity_id)
        return [r for r in self.pending() if r.key.entity_id == entity_id]

    # -------------------------------------------------------------------------

    def _register(self, reminder: ScheduledReminder) -> None:
        key = reminder.key
        existing = self._timers.pop(key, None)
        if existing is not None:
            existing.cancel()

        handle: Optional[TimerHandle] = None

        def fire():
            return self._fire(key, handle)

        handle = self._clock.schedule(fire, reminder.fire_at)
        self._timers[key] = handle
        self._reminders[key] = reminder

    async def _fire(self, key: ReminderKey, handle: Optional[TimerHandle]) -> None:
        if self._timers.get(key) is not handle:
            return
        del self._timers[key]
        reminder = self._reminders.pop(key)

        with correlation_scope(key.tag):
            logger.info(f"Reminder due: {key.tag}")
            await self._dispatcher.show_notification(reminder.notification)

    @staticmethod
    def _build_notification(expense: ExpenseEntity, key: ReminderKey) -> NotificationData:
        title, body = reminder_content(expense, key.bucket)
        return NotificationData(
            tag=key.tag,
            title=title,
            body=body,
            type=key.bucket.notification_type,
            priority=key.bucket.priority,
            user_id=expense.user_id,
            category=key.bucket.notification_type.value,
            due_date=expense.due_date,
            data={
                "expenseId": expense.id,
                "amount": expense.value,
                "bucket": key.bucket.value,
            },
            sync_remote=False,
        )


def _coerce_entity(entity: Union[ExpenseEntity, Mapping[str, Any]]) -> Optional[ExpenseEntity]:
    if isinstance(entity, ExpenseEntity):
        return entity
    try:
        return ExpenseEntity.model_validate(dict(entity))
    except (ValidationError, TypeError) as e:
        logger.debug(f"Ignoring unschedulable expense: {e}")
        return None
