"""Tests for habitchain.core.occurrences — per-day expansion of rules."""

from datetime import date, time, timedelta

import pytest

from habitchain.core.occurrences import (
    build_occurrences,
    generate,
    occurrences_for,
    occurrences_for_day,
)
from habitchain.core.recurrence import INTERVAL_MINUTES, Hourly, Interval, OnceDaily
from habitchain.data.models import Habit, HabitLog

DAY = date(2026, 3, 10)


class TestGenerateOnceDaily:
    def test_returns_listed_times_in_order(self):
        rule = OnceDaily(times=(time(18, 0), time(9, 0), time(14, 0)))
        assert generate(rule, DAY) == [time(9, 0), time(14, 0), time(18, 0)]

    def test_single_time(self):
        assert generate(OnceDaily(times=(time(7, 30),)), DAY) == [time(7, 30)]


class TestGenerateStepped:
    def test_interval_without_end_runs_to_end_of_day(self):
        rule = Interval(anchor_time=time(9, 0), interval_minutes=30)
        times = generate(rule, DAY)
        assert len(times) == 30
        assert times[0] == time(9, 0)
        assert times[-1] == time(23, 30)

    def test_interval_with_end_includes_end_when_on_step(self):
        rule = Interval(anchor_time=time(9, 5), interval_minutes=30, end_time=time(17, 35))
        times = generate(rule, DAY)
        assert times[0] == time(9, 5)
        assert times[-1] == time(17, 35)
        assert len(times) == 18

    def test_end_off_step_is_not_emitted(self):
        rule = Interval(anchor_time=time(9, 0), interval_minutes=20, end_time=time(9, 50))
        assert generate(rule, DAY) == [time(9, 0), time(9, 20), time(9, 40)]

    def test_late_anchor_does_not_wrap_past_midnight(self):
        rule = Interval(anchor_time=time(23, 50), interval_minutes=30)
        assert generate(rule, DAY) == [time(23, 50)]

    def test_one_minute_interval_stops_at_2359(self):
        rule = Interval(anchor_time=time(23, 55), interval_minutes=1)
        assert generate(rule, DAY) == [time(23, m) for m in range(55, 60)]

    def test_hourly(self):
        rule = Hourly(anchor_time=time(8, 0), interval_minutes=180, end_time=time(20, 0))
        assert generate(rule, DAY) == [time(8, 0), time(11, 0), time(14, 0), time(17, 0), time(20, 0)]

    def test_hourly_interval_longer_than_day_fires_once(self):
        rule = Hourly(anchor_time=time(6, 0), interval_minutes=1500)
        assert generate(rule, DAY) == [time(6, 0)]

    def test_anchor_equal_to_end_fires_once(self):
        rule = Interval(anchor_time=time(12, 0), interval_minutes=15, end_time=time(12, 0))
        assert generate(rule, DAY) == [time(12, 0)]

    @pytest.mark.parametrize("minutes", INTERVAL_MINUTES)
    def test_strictly_increasing_and_within_window(self, minutes):
        rule = Interval(anchor_time=time(6, 7), interval_minutes=minutes, end_time=time(22, 0))
        times = generate(rule, DAY)
        assert times
        assert all(a < b for a, b in zip(times, times[1:]))
        assert all(time(6, 7) <= t <= time(22, 0) for t in times)

    def test_deterministic_and_date_independent(self):
        rule = Interval(anchor_time=time(7, 0), interval_minutes=15)
        first = generate(rule, DAY)
        assert generate(rule, DAY) == first
        assert generate(rule, DAY + timedelta(days=200)) == first

    def test_accepts_habit(self):
        habit = Habit(id=1, name="Water", rule=Interval(anchor_time=time(22, 0), interval_minutes=60))
        assert generate(habit, DAY) == [time(22, 0), time(23, 0)]


class TestBuildOccurrences:
    def test_once_daily_completion_from_log(self):
        habit = Habit(id=4, name="Read", rule=OnceDaily(times=(time(9, 0), time(21, 0))))
        log = HabitLog(habit_id=4, date=DAY, completed=True)
        occurrences = build_occurrences(habit, DAY, log)
        assert [o.completed for o in occurrences] == [True, True]
        assert all(o.habit_id == 4 and o.date == DAY for o in occurrences)
        assert occurrences[0].habit_name == "Read"

    def test_once_daily_without_log_not_completed(self):
        habit = Habit(id=4, name="Read", rule=OnceDaily(times=(time(9, 0),)))
        assert build_occurrences(habit, DAY, None)[0].completed is False

    def test_once_daily_uncompleted_log(self):
        habit = Habit(id=4, name="Read", rule=OnceDaily(times=(time(9, 0),)))
        log = HabitLog(habit_id=4, date=DAY, completed=False)
        assert build_occurrences(habit, DAY, log)[0].completed is False

    def test_sub_daily_never_reports_completed(self):
        habit = Habit(id=2, name="Water", rule=Interval(anchor_time=time(9, 0), interval_minutes=60))
        log = HabitLog(habit_id=2, date=DAY, completed=True)
        occurrences = build_occurrences(habit, DAY, log)
        assert occurrences
        assert not any(o.completed for o in occurrences)

    def test_copies_display_fields(self):
        habit = Habit(
            id=7, name="Walk", rule=OnceDaily(times=(time(8, 0),)),
            description="Around the block", color="#FF0000",
        )
        [occ] = build_occurrences(habit, DAY, None)
        assert occ.habit_description == "Around the block"
        assert occ.habit_color == "#FF0000"


class TestOccurrencesForDay:
    @pytest.mark.asyncio
    async def test_reads_log_from_store(self, store):
        habit = store.add("Read", OnceDaily(times=(time(9, 0),)))
        await store.put_log(HabitLog(habit_id=habit.id, date=DAY))
        [occ] = await occurrences_for(store, habit, DAY)
        assert occ.completed is True

    @pytest.mark.asyncio
    async def test_merges_active_habits_sorted_by_time_then_id(self, store):
        store.add("B", OnceDaily(times=(time(14, 0),)), habit_id=2)
        store.add("A", OnceDaily(times=(time(9, 0), time(14, 0))), habit_id=1)
        store.add("Paused", OnceDaily(times=(time(8, 0),)), active=False, habit_id=3)

        occurrences = await occurrences_for_day(store, DAY)

        assert [(o.time, o.habit_id) for o in occurrences] == [
            (time(9, 0), 1),
            (time(14, 0), 1),
            (time(14, 0), 2),
        ]

    @pytest.mark.asyncio
    async def test_empty_store(self, store):
        assert await occurrences_for_day(store, DAY) == []
