"""Recurrence rules — pure business logic.

A habit's recurrence is one of three variants (a tagged union):

- OnceDaily: fires at each listed time of day, every day.
- Hourly:    fires every N hours from an anchor time.
- Interval:  fires every N minutes from an anchor time, N taken from a
             fixed picker set (divisors of 60 plus whole hours up to 12).

Construction validates the interval against the variant's legal set and
raises ValidationError; it never clamps. nearest_legal() is the explicit
correction helper used by the UI.

No I/O: this module only transforms data.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time
from enum import Enum
from typing import Union

ONCE_DAILY_MINUTES = 1440

INTERVAL_MINUTES: tuple[int, ...] = (
    1, 2, 3, 4, 5, 6, 10, 12, 15, 20, 30, 60,
    120, 180, 240, 300, 360, 420, 480, 540, 600, 660, 720,
)

END_OF_DAY = time(23, 59)


class FrequencyType(str, Enum):
    ONCE_DAILY = "ONCE_DAILY"
    HOURLY = "HOURLY"
    INTERVAL = "INTERVAL"


class ValidationError(ValueError):
    """Raised when a recurrence rule is constructed with illegal values."""

    def __init__(self, frequency_type: FrequencyType, value: object, message: str) -> None:
        super().__init__(f"{frequency_type.value}: {message} (got {value!r})")
        self.frequency_type = frequency_type
        self.value = value


def legal_values_description(frequency_type: FrequencyType) -> str:
    """Human-readable legal set for *frequency_type*."""
    if frequency_type is FrequencyType.ONCE_DAILY:
        return f"only {ONCE_DAILY_MINUTES}"
    if frequency_type is FrequencyType.HOURLY:
        return "a positive multiple of 60"
    return "one of " + ", ".join(str(m) for m in INTERVAL_MINUTES)


def is_legal(frequency_type: FrequencyType, minutes: int) -> bool:
    """Check whether *minutes* is a legal interval for *frequency_type*."""
    if frequency_type is FrequencyType.ONCE_DAILY:
        return minutes == ONCE_DAILY_MINUTES
    if frequency_type is FrequencyType.HOURLY:
        return minutes > 0 and minutes % 60 == 0
    return minutes in INTERVAL_MINUTES


def nearest_legal(frequency_type: FrequencyType, minutes: int) -> int:
    """Return the legal interval closest to *minutes*.

    For INTERVAL, ties go to the smaller candidate.
    """
    if frequency_type is FrequencyType.ONCE_DAILY:
        return ONCE_DAILY_MINUTES
    if frequency_type is FrequencyType.HOURLY:
        if minutes <= 0:
            return 60
        hours = (minutes + 30) // 60
        return max(1, hours) * 60
    if minutes <= 0:
        return INTERVAL_MINUTES[0]
    # min() keeps the first of equal keys, and the tuple is ascending
    return min(INTERVAL_MINUTES, key=lambda m: abs(m - minutes))


def _to_minute(t: time) -> time:
    return t.replace(second=0, microsecond=0, tzinfo=None)


def _check_window(
    frequency_type: FrequencyType, anchor_time: time, end_time: time | None,
) -> None:
    if end_time is not None and end_time < anchor_time:
        raise ValidationError(
            frequency_type, end_time,
            f"end time must not be earlier than anchor time {format_time(anchor_time)}",
        )


@dataclass(frozen=True)
class OnceDaily:
    """Fires once per listed time, every day."""

    times: tuple[time, ...]

    def __post_init__(self) -> None:
        normalized = tuple(sorted({_to_minute(t) for t in self.times}))
        if not normalized:
            raise ValidationError(
                FrequencyType.ONCE_DAILY, list(self.times),
                "at least one scheduled time is required",
            )
        object.__setattr__(self, "times", normalized)

    @property
    def frequency_type(self) -> FrequencyType:
        return FrequencyType.ONCE_DAILY

    @property
    def interval_minutes(self) -> int:
        return ONCE_DAILY_MINUTES


@dataclass(frozen=True)
class Hourly:
    """Fires every N hours from anchor_time until end_time (or end of day)."""

    anchor_time: time
    interval_minutes: int = 60
    end_time: time | None = None

    def __post_init__(self) -> None:
        if not is_legal(FrequencyType.HOURLY, self.interval_minutes):
            raise ValidationError(
                FrequencyType.HOURLY, self.interval_minutes,
                "interval must be " + legal_values_description(FrequencyType.HOURLY),
            )
        object.__setattr__(self, "anchor_time", _to_minute(self.anchor_time))
        if self.end_time is not None:
            object.__setattr__(self, "end_time", _to_minute(self.end_time))
        _check_window(FrequencyType.HOURLY, self.anchor_time, self.end_time)

    @property
    def frequency_type(self) -> FrequencyType:
        return FrequencyType.HOURLY


@dataclass(frozen=True)
class Interval:
    """Fires every N minutes from anchor_time until end_time (or end of day)."""

    anchor_time: time
    interval_minutes: int = 60
    end_time: time | None = None

    def __post_init__(self) -> None:
        if not is_legal(FrequencyType.INTERVAL, self.interval_minutes):
            raise ValidationError(
                FrequencyType.INTERVAL, self.interval_minutes,
                "interval must be " + legal_values_description(FrequencyType.INTERVAL),
            )
        object.__setattr__(self, "anchor_time", _to_minute(self.anchor_time))
        if self.end_time is not None:
            object.__setattr__(self, "end_time", _to_minute(self.end_time))
        _check_window(FrequencyType.INTERVAL, self.anchor_time, self.end_time)

    @property
    def frequency_type(self) -> FrequencyType:
        return FrequencyType.INTERVAL


RecurrenceRule = Union[OnceDaily, Hourly, Interval]


def build_rule(
    frequency_type: FrequencyType,
    interval_minutes: int = ONCE_DAILY_MINUTES,
    times: list[time] | tuple[time, ...] = (),
    anchor_time: time | None = None,
    end_time: time | None = None,
) -> RecurrenceRule:
    """Build the rule variant for *frequency_type* from flat fields.

    Used by storage and the bot, where the variant arrives as a tag.
    """
    if frequency_type is FrequencyType.ONCE_DAILY:
        if interval_minutes != ONCE_DAILY_MINUTES:
            raise ValidationError(
                frequency_type, interval_minutes,
                "interval must be " + legal_values_description(frequency_type),
            )
        return OnceDaily(times=tuple(times))
    if anchor_time is None:
        raise ValidationError(frequency_type, None, "an anchor time is required")
    if frequency_type is FrequencyType.HOURLY:
        return Hourly(anchor_time=anchor_time, interval_minutes=interval_minutes, end_time=end_time)
    return Interval(anchor_time=anchor_time, interval_minutes=interval_minutes, end_time=end_time)


def parse_time(text: str) -> time:
    """Parse an "HH:MM" string. Raises ValueError on malformed input."""
    return datetime.strptime(text.strip(), "%H:%M").time()


def format_time(t: time) -> str:
    return t.strftime("%H:%M")
