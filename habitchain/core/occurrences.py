"""
Habit Chain — Occurrence Generator.

Expands a habit's recurrence rule into the concrete times it fires on one
calendar date. Generation is a pure function of (rule, date): nothing is
cached and nothing is queued, so callers may ask for any date at any time.

One call never returns times from two different dates. An hourly or
interval rule stops as soon as the next step would cross midnight; the
following date is covered by its own call.
"""

from __future__ import annotations

import logging
from datetime import date, time
from typing import TYPE_CHECKING

from habitchain.core.recurrence import END_OF_DAY, Hourly, Interval, OnceDaily, RecurrenceRule
from habitchain.data.models import Habit, HabitLog, Occurrence

if TYPE_CHECKING:
    from habitchain.ports.habit_store import HabitStore

logger = logging.getLogger(__name__)

_MINUTES_PER_DAY = 24 * 60


def _minutes(t: time) -> int:
    return t.hour * 60 + t.minute


def _stepped_times(anchor: time, interval_minutes: int, end: time | None) -> list[time]:
    """Times from anchor, every interval_minutes, up to end (inclusive)."""
    end_minutes = _minutes(end if end is not None else END_OF_DAY)
    step = max(1, interval_minutes)
    current = _minutes(anchor)
    times: list[time] = []
    while current <= end_minutes:
        times.append(time(current // 60, current % 60))
        current += step
        if current >= _MINUTES_PER_DAY:
            break
    return times


def generate(habit: Habit | RecurrenceRule, on_date: date) -> list[time]:
    """Return the ordered times of day at which *habit* fires on *on_date*.

    All current rule variants repeat identically every day, so on_date does
    not change the result; it is part of the contract so date-dependent
    rules can be added without touching callers.
    """
    rule = habit.rule if isinstance(habit, Habit) else habit
    if isinstance(rule, OnceDaily):
        return list(rule.times)
    if isinstance(rule, (Hourly, Interval)):
        return _stepped_times(rule.anchor_time, rule.interval_minutes, rule.end_time)
    raise TypeError(f"Unknown recurrence rule: {rule!r}")


def build_occurrences(habit: Habit, on_date: date, log: HabitLog | None) -> list[Occurrence]:
    """Join generated times with the day's completion log.

    The log holds one row per habit per day, so only once-daily habits can
    report completion. Hourly and interval occurrences are always reported
    as not completed.
    """
    if isinstance(habit.rule, OnceDaily):
        completed = log is not None and log.completed
    else:
        completed = False

    return [
        Occurrence(
            habit_id=habit.id,
            date=on_date,
            time=t,
            habit_name=habit.name,
            habit_description=habit.description,
            habit_color=habit.color,
            completed=completed,
        )
        for t in generate(habit, on_date)
    ]


async def occurrences_for(store: HabitStore, habit: Habit, on_date: date) -> list[Occurrence]:
    """Generate *habit*'s occurrences for *on_date* with completion state."""
    log = await store.get_log(habit.id, on_date)
    return build_occurrences(habit, on_date, log)


async def occurrences_for_day(store: HabitStore, on_date: date) -> list[Occurrence]:
    """All active habits' occurrences on *on_date*, ordered by time then habit."""
    habits = await store.get_active_habits()
    result: list[Occurrence] = []
    for habit in habits:
        result.extend(await occurrences_for(store, habit, on_date))
    result.sort(key=lambda o: (o.time, o.habit_id))
    logger.debug("%d occurrences for %s across %d habits", len(result), on_date, len(habits))
    return result
