"""
Habit Chain — Habit use cases.

Every edit that changes when a habit fires goes through here so the
reminder chain follows the stored habit: create arms, update re-arms,
pause and delete cancel.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date, time
from typing import TYPE_CHECKING

from habitchain.core.next_occurrence import NextOccurrenceFinder
from habitchain.core.occurrences import occurrences_for_day
from habitchain.core.recurrence import Interval, RecurrenceRule
from habitchain.data.models import DEFAULT_COLOR, Habit, HabitLog

if TYPE_CHECKING:
    from habitchain.core.notification_chain import NotificationChain
    from habitchain.data.models import Occurrence
    from habitchain.ports.habit_store import HabitRepository

logger = logging.getLogger(__name__)

DEFAULT_HABIT_NAME = "Drink water"


class HabitService:
    """Habit CRUD plus completion, keeping reminders in step."""

    def __init__(self, store: HabitRepository, chain: NotificationChain) -> None:
        self._store = store
        self._chain = chain

    async def add_habit(
        self,
        name: str,
        rule: RecurrenceRule,
        description: str = "",
        color: str = DEFAULT_COLOR,
    ) -> Habit:
        """Create a habit and arm its first reminder."""
        habit = await self._store.create_habit(
            Habit(id=0, name=name, rule=rule, description=description, color=color),
        )
        await self._chain.schedule_next(habit.id)
        return habit

    async def update_habit(self, habit: Habit) -> None:
        """Persist an edit, then rebuild the habit's chain from scratch."""
        await self._store.update_habit(habit)
        await self._chain.cancel(habit.id)
        if habit.active:
            await self._chain.schedule_next(habit.id)

    async def set_active(self, habit_id: int, active: bool) -> Habit | None:
        """Pause or resume. Returns the updated habit, or None if missing."""
        habit = await self._store.get_habit(habit_id)
        if habit is None:
            return None
        updated = replace(habit, active=active)
        await self.update_habit(updated)
        return updated

    async def delete_habit(self, habit_id: int) -> bool:
        """Cancel the habit's reminders, then delete it and its logs."""
        await self._chain.cancel(habit_id)
        return await self._store.delete_habit(habit_id)

    async def complete(self, habit_id: int, on_date: date | None = None) -> HabitLog:
        """Mark *habit_id* done for *on_date* (default today) and re-arm.

        Completion is recorded per day, so a completed once-daily habit's
        chain moves on to tomorrow.
        """
        if on_date is None:
            on_date = self._today()
        log = await self._store.put_log(HabitLog(habit_id=habit_id, date=on_date, completed=True))
        try:
            await self._chain.schedule_next(habit_id)
        except Exception as exc:
            logger.error("Failed to re-arm habit #%d after completion: %s", habit_id, exc)
        return log

    async def today(self, on_date: date | None = None) -> list[Occurrence]:
        """All active habits' occurrences for a day (today by default)."""
        return await occurrences_for_day(self._store, on_date or self._today())

    async def next_up(self) -> Occurrence | None:
        """The next occurrence across all active habits."""
        from habitchain.core.clock import local_now

        return await NextOccurrenceFinder(self._store).next_global(local_now())

    async def setup_default_habits(self) -> Habit | None:
        """Create the default habit on first run.

        Never raises: a failure here must not block startup.
        """
        try:
            if await self._store.exists_by_name(DEFAULT_HABIT_NAME):
                logger.debug("Default habit already exists, skipping creation")
                return None
            logger.info("Creating default habit: %s", DEFAULT_HABIT_NAME)
            return await self.add_habit(
                DEFAULT_HABIT_NAME,
                Interval(anchor_time=time(9, 5), interval_minutes=30, end_time=time(17, 35)),
            )
        except Exception as exc:
            logger.error("Failed to setup default habits: %s", exc)
            return None

    @staticmethod
    def _today() -> date:
        from habitchain.core.clock import local_now

        return local_now().date()
