"""
Habit Chain — Data Models.

Habits and their completion logs persist in SQLite across restarts.
Occurrences are never stored: they are computed from a habit's recurrence
rule whenever someone asks.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time

from habitchain.core.recurrence import FrequencyType, RecurrenceRule

DEFAULT_COLOR = "#2196F3"


@dataclass
class Habit:
    """A recurring habit: display fields plus exactly one recurrence rule."""

    id: int
    name: str
    rule: RecurrenceRule
    description: str = ""
    color: str = DEFAULT_COLOR
    active: bool = field(default=True)
    created_at: date = field(default_factory=date.today)

    @property
    def frequency_type(self) -> FrequencyType:
        return self.rule.frequency_type


@dataclass
class HabitLog:
    """Completion record, unique per (habit_id, date)."""

    habit_id: int
    date: date
    completed: bool = True
    id: int | None = None


@dataclass(frozen=True)
class Occurrence:
    """One concrete instance of a habit on a date at a time of day.

    Display fields are copied from the habit so a reminder can be shown
    without another store lookup.
    """

    habit_id: int
    date: date
    time: time
    habit_name: str
    habit_description: str = ""
    habit_color: str = DEFAULT_COLOR
    completed: bool = False

    @property
    def at(self) -> datetime:
        return datetime.combine(self.date, self.time)
