"""Preferences port — small persisted flags owned outside the engine."""

from __future__ import annotations

from typing import Protocol

KEY_NOTIFICATION_PERMISSION_REQUESTED = "notification_permission_requested"
KEY_NOTIFICATIONS_AUTHORIZED = "notifications_authorized"


class PreferencesPort(Protocol):
    async def get_bool(self, key: str, default: bool = False) -> bool: ...

    async def set_bool(self, key: str, value: bool) -> None: ...
