"""Platform scheduler port — one-shot wake-ups and visible reminders.

The platform arms a wake-up at an absolute local time and, when it fires,
shows a reminder and reports the delivery back to the engine. Deliveries
are at-least-once with no ordering guarantee across habits, and a restart
may drop every armed wake-up.
"""

from __future__ import annotations

from datetime import date, time
from typing import Any, Protocol


class PlatformError(Exception):
    """Raised when the platform fails to arm, cancel or authorize."""


class PlatformScheduler(Protocol):
    """Abstract reminder platform used by the notification chain."""

    async def arm(
        self, habit_id: int, on_date: date, at_time: time, payload: dict[str, Any]
    ) -> None: ...

    async def cancel(self, habit_id: int, on_date: date, at_time: time) -> None: ...

    async def cancel_all_for_habit(self, habit_id: int) -> None: ...

    async def cancel_all(self) -> None: ...

    async def is_authorized(self) -> bool: ...

    async def request_authorization(self) -> bool: ...


class PermissionManager(Protocol):
    """Authorization surface driven by the permission flow."""

    async def is_authorized(self) -> bool: ...

    async def request_authorization(self) -> bool: ...

    async def can_schedule_exact(self) -> bool: ...

    async def request_exact_permission(self) -> bool: ...
