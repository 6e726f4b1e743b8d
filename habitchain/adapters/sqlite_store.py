"""SQLite adapters — implement HabitRepository and PreferencesPort.

Wrap the synchronous HabitDB / PreferenceDB so core modules can await
them without blocking the event loop.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from datetime import date
from typing import Any, Callable, TypeVar

from habitchain.data.db import HabitDB, PreferenceDB
from habitchain.data.models import Habit, HabitLog
from habitchain.ports.habit_store import StoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def _call(fn: Callable[..., T], *args: Any) -> T:
    try:
        return await asyncio.to_thread(fn, *args)
    except sqlite3.Error as exc:
        logger.error("SQLite %s failed: %s", fn.__name__, exc)
        raise StoreError(f"{fn.__name__} failed: {exc}") from exc


class SQLiteHabitStore:
    """SQLite implementation of HabitRepository."""

    def __init__(self, db: HabitDB) -> None:
        self._db = db

    async def get_habit(self, habit_id: int) -> Habit | None:
        return await _call(self._db.get_habit, habit_id)

    async def get_active_habits(self) -> list[Habit]:
        return await _call(self._db.list_habits, True)

    async def list_habits(self, active_only: bool = False) -> list[Habit]:
        return await _call(self._db.list_habits, active_only)

    async def get_log(self, habit_id: int, on_date: date) -> HabitLog | None:
        return await _call(self._db.get_log, habit_id, on_date)

    async def put_log(self, log: HabitLog) -> HabitLog:
        return await _call(self._db.put_log, log)

    async def create_habit(self, habit: Habit) -> Habit:
        return await _call(
            self._db.add_habit,
            habit.name, habit.rule, habit.description, habit.color,
            habit.active, habit.created_at,
        )

    async def update_habit(self, habit: Habit) -> None:
        if not await _call(self._db.update_habit, habit):
            raise StoreError(f"Habit {habit.id} not found")

    async def delete_habit(self, habit_id: int) -> bool:
        return await _call(self._db.delete_habit, habit_id)

    async def exists_by_name(self, name: str) -> bool:
        return await _call(self._db.exists_by_name, name)


class SQLitePreferences:
    """SQLite implementation of PreferencesPort."""

    def __init__(self, db: PreferenceDB) -> None:
        self._db = db

    async def get_bool(self, key: str, default: bool = False) -> bool:
        return await _call(self._db.get_bool, key, default)

    async def set_bool(self, key: str, value: bool) -> None:
        await _call(self._db.set_bool, key, value)
