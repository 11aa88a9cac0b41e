"""Wall clock and one-shot timers.

Callbacks run on the event loop. A callback may return an awaitable; the
clock keeps it alive until it completes (``AsyncioClock``) or awaits it
directly (``ManualClock``).
"""

from __future__ import annotations

import asyncio
import heapq
import inspect
import itertools
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, List, Optional, Set, Tuple

from .models import ensure_aware, utcnow

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Optional[Awaitable[Any]]]


class TimerHandle(ABC):
    """Cancellable reference to a pending timer."""

    def __init__(self, fire_at: datetime):
        self.fire_at = fire_at
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


class Clock(ABC):
    """Wall-clock time plus a schedule-at-instant primitive."""

    @abstractmethod
    def now(self) -> datetime:
        """Current aware UTC instant."""

    @abstractmethod
    def schedule(self, callback: TimerCallback, fire_at: datetime) -> TimerHandle:
        """Run ``callback`` once at ``fire_at``."""

    def schedule_in(self, callback: TimerCallback, delay: timedelta) -> TimerHandle:
        return self.schedule(callback, self.now() + delay)


class _AsyncioTimerHandle(TimerHandle):
    def __init__(self, fire_at: datetime, handle: asyncio.TimerHandle):
        super().__init__(fire_at)
        self._handle = handle

    def cancel(self) -> None:
        super().cancel()
        self._handle.cancel()


class AsyncioClock(Clock):
    """Real clock backed by ``loop.call_later``."""

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def now(self) -> datetime:
        return utcnow()

    def schedule(self, callback: TimerCallback, fire_at: datetime) -> TimerHandle:
        loop = asyncio.get_running_loop()
        fire_at = ensure_aware(fire_at)
        delay = max(0.0, (fire_at - self.now()).total_seconds())
        handle = loop.call_later(delay, self._run, callback)
        return _AsyncioTimerHandle(fire_at, handle)

    def _run(self, callback: TimerCallback) -> None:
        try:
            result = callback()
        except Exception:
            logger.exception("Timer callback failed")
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Timer task failed: {task.exception()!r}")


class _ManualTimerHandle(TimerHandle):
    pass


class ManualClock(Clock):
    """Clock that only moves when told to.

    Usage:
        clock = ManualClock(datetime(2024, 6, 1, tzinfo=timezone.utc))
        clock.schedule(callback, clock.now() + timedelta(hours=1))
        await clock.advance(timedelta(hours=2))  # callback runs here
    """

    def __init__(self, start: Optional[datetime] = None):
        self._now = ensure_aware(start) if start else utcnow()
        self._queue: List[Tuple[datetime, int, _ManualTimerHandle, TimerCallback]] = []
        self._sequence = itertools.count()

    def now(self) -> datetime:
        return self._now

    def schedule(self, callback: TimerCallback, fire_at: datetime) -> TimerHandle:
        fire_at = ensure_aware(fire_at)
        handle = _ManualTimerHandle(fire_at)
        heapq.heappush(self._queue, (fire_at, next(self._sequence), handle, callback))
        return handle

    @property
    def pending_count(self) -> int:
        return sum(1 for _, _, handle, _ in self._queue if not handle.cancelled)

    async def advance(self, delta: timedelta) -> int:
        """Move time forward, running due callbacks in fire order.

        Returns:
            Number of callbacks that ran.
        """
        return await self.advance_to(self._now + delta)

    async def advance_to(self, target: datetime) -> int:
        target = ensure_aware(target)
        fired = 0
        while self._queue and self._queue[0][0] <= target:
            fire_at, _, handle, callback = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self._now = max(self._now, fire_at)
            result = callback()
            if inspect.isawaitable(result):
                await result
            fired += 1
        self._now = max(self._now, target)
        return fired
