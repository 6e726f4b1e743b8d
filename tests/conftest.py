"""Shared test fixtures and configuration.

Sets up fake environment variables so habitchain.config doesn't sys.exit(),
and provides temp-file SQLite fixtures plus in-memory fakes of the ports.
"""

import os

# Patch env vars BEFORE any habitchain imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("ALLOWED_USER_IDS", "12345")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("TIMEZONE", "UTC")

from dataclasses import replace
from datetime import date, datetime, time

import pytest


class FakeHabitStore:
    """In-memory HabitRepository."""

    def __init__(self):
        self.habits = {}
        self.logs = {}
        self._next_id = 1

    def add(self, name, rule, active=True, habit_id=None, **fields):
        from habitchain.data.models import Habit

        if habit_id is None:
            habit_id = self._next_id
        self._next_id = max(self._next_id, habit_id + 1)
        habit = Habit(id=habit_id, name=name, rule=rule, active=active, **fields)
        self.habits[habit_id] = habit
        return habit

    async def get_habit(self, habit_id):
        return self.habits.get(habit_id)

    async def get_active_habits(self):
        return [h for _, h in sorted(self.habits.items()) if h.active]

    async def list_habits(self, active_only=False):
        if active_only:
            return await self.get_active_habits()
        return [h for _, h in sorted(self.habits.items())]

    async def get_log(self, habit_id, on_date):
        return self.logs.get((habit_id, on_date))

    async def put_log(self, log):
        self.logs[(log.habit_id, log.date)] = log
        return log

    async def create_habit(self, habit):
        return self.add(
            habit.name, habit.rule, active=habit.active,
            description=habit.description, color=habit.color,
        )

    async def update_habit(self, habit):
        self.habits[habit.id] = replace(habit)

    async def delete_habit(self, habit_id):
        existed = self.habits.pop(habit_id, None) is not None
        for key in [k for k in self.logs if k[0] == habit_id]:
            del self.logs[key]
        return existed

    async def exists_by_name(self, name):
        return any(h.name == name for h in self.habits.values())


class FakePlatform:
    """In-memory PlatformScheduler / PermissionManager that records calls."""

    def __init__(self, authorized=True, exact=True):
        self.authorized = authorized
        self.exact = exact
        self.armed = {}
        self.calls = []

    async def arm(self, habit_id, on_date, at_time, payload):
        self.calls.append(("arm", habit_id, on_date, at_time))
        self.armed[(habit_id, on_date, at_time)] = payload

    async def cancel(self, habit_id, on_date, at_time):
        self.calls.append(("cancel", habit_id, on_date, at_time))
        self.armed.pop((habit_id, on_date, at_time), None)

    async def cancel_all_for_habit(self, habit_id):
        self.calls.append(("cancel_all_for_habit", habit_id))
        for key in [k for k in self.armed if k[0] == habit_id]:
            del self.armed[key]

    async def cancel_all(self):
        self.calls.append(("cancel_all",))
        self.armed.clear()

    async def is_authorized(self):
        return self.authorized

    async def request_authorization(self):
        self.calls.append(("request_authorization",))
        return self.authorized

    async def can_schedule_exact(self):
        return self.exact

    async def request_exact_permission(self):
        self.calls.append(("request_exact_permission",))
        return self.exact

    def armed_for(self, habit_id):
        return sorted((d, t) for (h, d, t) in self.armed if h == habit_id)

    def payload_for(self, habit_id):
        [payload] = [p for (h, _, _), p in self.armed.items() if h == habit_id]
        return payload


class FakePreferences:
    def __init__(self, **values):
        self.values = dict(values)

    async def get_bool(self, key, default=False):
        return self.values.get(key, default)

    async def set_bool(self, key, value):
        self.values[key] = value


class MutableClock:
    """Callable clock the tests can move forward."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


TODAY = date(2026, 3, 10)


@pytest.fixture
def store():
    return FakeHabitStore()


@pytest.fixture
def platform():
    return FakePlatform()


@pytest.fixture
def preferences():
    return FakePreferences()


@pytest.fixture
def clock():
    return MutableClock(datetime.combine(TODAY, time(10, 30)))


@pytest.fixture
def chain(store, platform, clock):
    from habitchain.core.notification_chain import NotificationChain

    return NotificationChain(store, platform, clock=clock, max_pending=64)


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_habits.db")


@pytest.fixture
def habit_db(tmp_db_path):
    """Return a HabitDB instance backed by a temp file."""
    from habitchain.data.db import HabitDB
    return HabitDB(db_path=tmp_db_path)


@pytest.fixture
def preference_db(tmp_path):
    """Return a PreferenceDB instance backed by a temp file."""
    from habitchain.data.db import PreferenceDB
    return PreferenceDB(db_path=str(tmp_path / "test_prefs.db"))
