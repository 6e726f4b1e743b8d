"""
Habit Chain — Next-Occurrence Finder.

Answers "what fires next?" for one habit or across all active habits.
Looks at today and tomorrow only: every rule variant fires at least once
a day, so a day with nothing left falls through to tomorrow's first
occurrence.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from habitchain.core.occurrences import occurrences_for

if TYPE_CHECKING:
    from habitchain.data.models import Occurrence
    from habitchain.ports.habit_store import HabitStore

logger = logging.getLogger(__name__)

_LOOKAHEAD_DAYS = 2


class NextOccurrenceFinder:
    """Finds the earliest future, not-completed occurrence."""

    def __init__(self, store: HabitStore) -> None:
        self._store = store

    async def next_for_habit(self, habit_id: int, now: datetime) -> Occurrence | None:
        """Next occurrence of *habit_id* strictly after *now*, or None.

        Returns None when the habit is missing or inactive.
        """
        habit = await self._store.get_habit(habit_id)
        if habit is None or not habit.active:
            return None

        today = now.date()
        for offset in range(_LOOKAHEAD_DAYS):
            day = today + timedelta(days=offset)
            for occurrence in await occurrences_for(self._store, habit, day):
                if occurrence.at > now and not occurrence.completed:
                    return occurrence

        logger.debug("Habit #%d has no occurrence after %s", habit_id, now)
        return None

    async def next_global(self, now: datetime) -> Occurrence | None:
        """Earliest next occurrence across all active habits.

        Ties on time go to the lowest habit id.
        """
        best: Occurrence | None = None
        for habit in await self._store.get_active_habits():
            candidate = await self.next_for_habit(habit.id, now)
            if candidate is None:
                continue
            if best is None or (candidate.at, candidate.habit_id) < (best.at, best.habit_id):
                best = candidate
        return best
