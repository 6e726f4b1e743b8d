"""Habit store port — abstract interface for habit and log persistence.

Core modules depend on this protocol, never on a specific database.
"""

from __future__ import annotations

from datetime import date
from typing import Protocol

from habitchain.data.models import Habit, HabitLog


class StoreError(Exception):
    """Raised when any habit store operation fails."""


class HabitStore(Protocol):
    """Abstract habit store used by core modules."""

    async def get_habit(self, habit_id: int) -> Habit | None: ...

    async def get_active_habits(self) -> list[Habit]: ...

    async def get_log(self, habit_id: int, on_date: date) -> HabitLog | None: ...

    async def put_log(self, log: HabitLog) -> HabitLog: ...


class HabitRepository(HabitStore, Protocol):
    """Full CRUD surface used by the habit use cases."""

    async def create_habit(self, habit: Habit) -> Habit: ...

    async def update_habit(self, habit: Habit) -> None: ...

    async def delete_habit(self, habit_id: int) -> bool: ...

    async def list_habits(self, active_only: bool = False) -> list[Habit]: ...

    async def exists_by_name(self, name: str) -> bool: ...
