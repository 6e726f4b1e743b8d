"""
Habit Chain — Sequential Notification Scheduler.

Keeps exactly one reminder armed per active habit: the habit's next
occurrence. When that reminder fires, the delivery callback arms the one
after it, so the chain refills itself one link at a time and never
materialises the list of future reminders. This keeps the number of armed
wake-ups at one per habit, well under the platform's pending cap.

A restart drops every armed wake-up, so cold start calls reschedule_all(),
which wipes the platform and re-arms every active habit from scratch.

Concurrency:
- one asyncio.Lock per habit, created lazily; different habits never wait
  on each other.
- reschedule_all() and cancel_all() close a resync gate for the whole
  sweep and wait for per-habit operations already running to finish;
  new per-habit operations wait for the gate before taking their lock.
- every armed reminder carries a sequence token (epoch, generation). The
  epoch moves on each full sweep, the generation on each cancel(). A
  delivery whose token is no longer current is stale and does not re-arm,
  so a reminder that fires after its habit was cancelled cannot resurrect
  the chain.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, time
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Sequence, TypeVar

from habitchain.core.next_occurrence import NextOccurrenceFinder
from habitchain.core.recurrence import format_time
from habitchain.data.models import HabitLog

if TYPE_CHECKING:
    from habitchain.data.models import Occurrence
    from habitchain.ports.habit_store import HabitStore
    from habitchain.ports.platform_scheduler import PlatformScheduler

logger = logging.getLogger(__name__)

T = TypeVar("T")


class NotificationChain:
    """Per-habit reminder chain on top of a PlatformScheduler."""

    def __init__(
        self,
        store: HabitStore,
        platform: PlatformScheduler,
        finder: NextOccurrenceFinder | None = None,
        clock: Callable[[], datetime] | None = None,
        max_pending: int | None = None,
    ) -> None:
        if clock is None:
            from habitchain.core.clock import local_now

            clock = local_now
        if max_pending is None:
            from habitchain.config import settings

            max_pending = settings.MAX_PENDING_REMINDERS

        self._store = store
        self._platform = platform
        self._finder = finder or NextOccurrenceFinder(store)
        self._clock = clock
        self._max_pending = max_pending

        self._locks: dict[int, asyncio.Lock] = {}
        self._armed: dict[int, Occurrence] = {}
        self._generations: dict[int, int] = {}
        self._epoch = 0
        self._resync_lock = asyncio.Lock()
        self._idle = asyncio.Event()
        self._idle.set()
        self._in_flight = 0
        self._drained = asyncio.Event()
        self._drained.set()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def armed(self, habit_id: int) -> Occurrence | None:
        """The occurrence currently armed for *habit_id*, if any."""
        return self._armed.get(habit_id)

    def token(self, habit_id: int) -> tuple[int, int]:
        return (self._epoch, self._generations.get(habit_id, 0))

    # ------------------------------------------------------------------
    # Chain operations
    # ------------------------------------------------------------------

    async def schedule_next(self, habit_id: int) -> bool:
        """Arm *habit_id*'s next occurrence.

        Returns False when notifications are not authorized or the habit has
        no future occurrence. Other habits' reminders are never touched.
        """
        return await self._run_for_habit(habit_id, lambda: self._schedule_next_locked(habit_id))

    async def schedule_next_upcoming(self) -> bool:
        """Arm the single earliest occurrence across all active habits."""
        if not await self._platform.is_authorized():
            return False
        upcoming = await self._finder.next_global(self._clock())
        if upcoming is None:
            return False
        return await self.schedule_next(upcoming.habit_id)

    async def on_delivered(
        self,
        habit_id: int,
        token: Sequence[int] | None = None,
        on_date: date | None = None,
        at_time: time | None = None,
    ) -> bool:
        """Advance the chain after a reminder for *habit_id* fired.

        Scheduling failures are logged and swallowed: the delivery already
        happened and the next reschedule_all() repairs the chain.
        """

        async def _advance() -> bool:
            if token is not None and tuple(token) != self.token(habit_id):
                logger.warning(
                    "Stale delivery for habit #%d (token %s, current %s), not re-arming",
                    habit_id, tuple(token), self.token(habit_id),
                )
                return False
            self._forget_delivered(habit_id, on_date, at_time)
            return await self._advance_quietly(habit_id)

        return await self._run_for_habit(habit_id, _advance)

    async def on_user_completed_from_notification(
        self, habit_id: int, on_date: date, at_time: time,
    ) -> bool:
        """Record the completion the user tapped, then advance the chain.

        A failure to record the completion propagates. A failure to clear the
        reminder or arm the next link is logged and swallowed.
        """

        async def _complete() -> bool:
            await self._store.put_log(HabitLog(habit_id=habit_id, date=on_date, completed=True))
            logger.info(
                "Habit #%d completed from reminder (%s %s)",
                habit_id, on_date.isoformat(), format_time(at_time),
            )
            self._forget_delivered(habit_id, on_date, at_time)
            try:
                await self._platform.cancel(habit_id, on_date, at_time)
            except Exception as exc:
                logger.error("Failed to clear reminder for habit #%d: %s", habit_id, exc)
            return await self._advance_quietly(habit_id)

        return await self._run_for_habit(habit_id, _complete)

    async def cancel(self, habit_id: int) -> None:
        """Drop *habit_id*'s armed and visible reminders.

        Any delivery still in flight for the habit becomes stale.
        """

        async def _cancel() -> None:
            self._generations[habit_id] = self._generations.get(habit_id, 0) + 1
            self._armed.pop(habit_id, None)
            await self._platform.cancel_all_for_habit(habit_id)
            logger.info("Reminder chain for habit #%d cancelled", habit_id)

        await self._run_for_habit(habit_id, _cancel)

    async def reschedule_all(self) -> int:
        """Full resync after restart: clear everything, re-arm every active habit.

        Returns the number of habits armed.
        """
        return await asyncio.shield(self._sweep(rearm=True))

    async def cancel_all(self) -> None:
        """Clear every armed and visible reminder without re-arming."""
        await asyncio.shield(self._sweep(rearm=False))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lock_for(self, habit_id: int) -> asyncio.Lock:
        lock = self._locks.get(habit_id)
        if lock is None:
            lock = self._locks[habit_id] = asyncio.Lock()
        return lock

    async def _run_for_habit(self, habit_id: int, body: Callable[[], Awaitable[T]]) -> T:
        while not self._idle.is_set():
            await self._idle.wait()
        self._in_flight += 1
        self._drained.clear()

        async def _locked() -> T:
            try:
                async with self._lock_for(habit_id):
                    return await body()
            finally:
                self._in_flight -= 1
                if self._in_flight == 0:
                    self._drained.set()

        # Once started, run to completion even if the caller goes away.
        return await asyncio.shield(_locked())

    def _forget_delivered(self, habit_id: int, on_date: date | None, at_time: time | None) -> None:
        current = self._armed.get(habit_id)
        if current is None:
            return
        if on_date is None or at_time is None or (current.date, current.time) == (on_date, at_time):
            del self._armed[habit_id]

    async def _advance_quietly(self, habit_id: int) -> bool:
        try:
            return await self._schedule_next_locked(habit_id)
        except Exception as exc:
            logger.error("Failed to schedule next reminder for habit #%d: %s", habit_id, exc)
            return False

    async def _schedule_next_locked(self, habit_id: int) -> bool:
        if not await self._platform.is_authorized():
            logger.debug("Notifications not authorized, habit #%d left unarmed", habit_id)
            return False

        occurrence = await self._finder.next_for_habit(habit_id, self._clock())
        previous = self._armed.get(habit_id)

        if occurrence is None:
            if previous is not None:
                await self._platform.cancel(habit_id, previous.date, previous.time)
                self._armed.pop(habit_id, None)
            logger.debug("Habit #%d has no next occurrence, chain ends", habit_id)
            return False

        if previous is not None:
            if (previous.date, previous.time) == (occurrence.date, occurrence.time):
                return True
            await self._platform.cancel(habit_id, previous.date, previous.time)
            self._armed.pop(habit_id, None)

        await self._platform.arm(
            habit_id, occurrence.date, occurrence.time, self._payload(occurrence),
        )
        self._armed[habit_id] = occurrence
        logger.info(
            "Armed reminder for habit #%d '%s' at %s %s",
            habit_id, occurrence.habit_name,
            occurrence.date.isoformat(), format_time(occurrence.time),
        )
        return True

    def _payload(self, occurrence: Occurrence) -> dict[str, Any]:
        return {
            "habit_id": occurrence.habit_id,
            "habit_name": occurrence.habit_name,
            "habit_description": occurrence.habit_description,
            "habit_color": occurrence.habit_color,
            "date": occurrence.date.isoformat(),
            "time": format_time(occurrence.time),
            "token": list(self.token(occurrence.habit_id)),
        }

    async def _sweep(self, rearm: bool) -> int:
        async with self._resync_lock:
            self._idle.clear()
            try:
                await self._drained.wait()
                self._epoch += 1
                self._armed.clear()
                await self._platform.cancel_all()
                logger.info("All reminders cleared (epoch %d)", self._epoch)
                if not rearm:
                    return 0
                return await self._rearm_all()
            finally:
                self._idle.set()

    async def _rearm_all(self) -> int:
        if not await self._platform.is_authorized():
            logger.info("Notifications not authorized, nothing re-armed")
            return 0

        habits = sorted(await self._store.get_active_habits(), key=lambda h: h.id)
        if len(habits) > self._max_pending:
            logger.warning(
                "%d active habits exceed the platform cap of %d pending reminders",
                len(habits), self._max_pending,
            )

        armed = 0
        for habit in habits:
            if armed >= self._max_pending:
                logger.warning("Pending cap reached, habit #%d left unarmed", habit.id)
                continue
            async with self._lock_for(habit.id):
                try:
                    if await self._schedule_next_locked(habit.id):
                        armed += 1
                except Exception as exc:
                    logger.error("Failed to re-arm habit #%d: %s", habit.id, exc)

        logger.info("Rescheduled reminders for %d of %d active habits", armed, len(habits))
        return armed
