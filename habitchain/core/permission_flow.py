"""
Habit Chain — Notification permission flow.

Nothing is scheduled until the user has agreed to reminders. The flow
never prompts cold: it explains first, then asks, then (if the platform
needs it) explains and asks for exact-time delivery.

    INITIAL
      -> SHOW_NOTIFICATION_EXPLANATION -> REQUESTING_NOTIFICATION_PERMISSION
           -> SHOW_EXACT_ALARM_EXPLANATION -> REQUESTING_EXACT_ALARM_PERMISSION -> COMPLETED
           -> COMPLETED
           -> NOTIFICATION_PERMISSION_DENIED   (absorbing)
      -> SHOW_EXACT_ALARM_EXPLANATION ...      (already granted earlier)
      -> COMPLETED                             (flow already ran on this install)

The "already requested" preference is written as soon as the prompt is
shown or skipped, so the flow runs at most once per install.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING

from habitchain.ports.preferences_port import KEY_NOTIFICATION_PERMISSION_REQUESTED

if TYPE_CHECKING:
    from habitchain.ports.platform_scheduler import PermissionManager
    from habitchain.ports.preferences_port import PreferencesPort

logger = logging.getLogger(__name__)


class PermissionState(str, Enum):
    INITIAL = "initial"
    SHOW_NOTIFICATION_EXPLANATION = "show_notification_explanation"
    REQUESTING_NOTIFICATION_PERMISSION = "requesting_notification_permission"
    SHOW_EXACT_ALARM_EXPLANATION = "show_exact_alarm_explanation"
    REQUESTING_EXACT_ALARM_PERMISSION = "requesting_exact_alarm_permission"
    NOTIFICATION_PERMISSION_DENIED = "notification_permission_denied"
    COMPLETED = "completed"


_TERMINAL = {PermissionState.COMPLETED, PermissionState.NOTIFICATION_PERMISSION_DENIED}


class PermissionFlow:
    """Step-by-step permission negotiation for one install."""

    def __init__(self, permissions: PermissionManager, preferences: PreferencesPort) -> None:
        self._permissions = permissions
        self._preferences = preferences
        self._state = PermissionState.INITIAL

    @property
    def state(self) -> PermissionState:
        return self._state

    @property
    def finished(self) -> bool:
        return self._state in _TERMINAL

    def _set(self, state: PermissionState) -> PermissionState:
        if state is not self._state:
            logger.debug("Permission flow: %s -> %s", self._state.value, state.value)
        self._state = state
        return state

    def _allowed(self, action: str, *states: PermissionState) -> bool:
        if self._state in states:
            return True
        logger.warning("Permission flow: %s ignored in state %s", action, self._state.value)
        return False

    async def _mark_requested(self) -> None:
        await self._preferences.set_bool(KEY_NOTIFICATION_PERMISSION_REQUESTED, True)

    async def _after_notification_granted(self) -> PermissionState:
        if await self._permissions.can_schedule_exact():
            return self._set(PermissionState.COMPLETED)
        return self._set(PermissionState.SHOW_EXACT_ALARM_EXPLANATION)

    async def start(self) -> PermissionState:
        """Begin the flow on app start."""
        if not self._allowed("start", PermissionState.INITIAL):
            return self._state
        try:
            already = await self._preferences.get_bool(KEY_NOTIFICATION_PERMISSION_REQUESTED, False)
            if already:
                logger.debug("Notification permission already requested, skipping flow")
                return self._set(PermissionState.COMPLETED)

            if await self._permissions.is_authorized():
                logger.debug("Notification permission already granted")
                await self._mark_requested()
                return await self._after_notification_granted()

            return self._set(PermissionState.SHOW_NOTIFICATION_EXPLANATION)
        except Exception as exc:
            logger.error("Failed to start permission flow: %s", exc)
            return self._set(PermissionState.COMPLETED)

    async def on_notification_explanation_confirmed(self) -> PermissionState:
        """User agreed to be asked; invoke the platform prompt.

        The answer arrives later through on_return_from_notification_request().
        Cancelling this call abandons the prompt and leaves the flow waiting
        in REQUESTING_NOTIFICATION_PERMISSION.
        """
        if not self._allowed(
            "notification explanation confirmed", PermissionState.SHOW_NOTIFICATION_EXPLANATION,
        ):
            return self._state
        self._set(PermissionState.REQUESTING_NOTIFICATION_PERMISSION)
        try:
            await self._mark_requested()
            await self._permissions.request_authorization()
        except Exception as exc:
            logger.error("Failed to request notification permission: %s", exc)
            return self._set(PermissionState.NOTIFICATION_PERMISSION_DENIED)
        return self._state

    async def on_notification_explanation_dismissed(self) -> PermissionState:
        if not self._allowed(
            "notification explanation dismissed", PermissionState.SHOW_NOTIFICATION_EXPLANATION,
        ):
            return self._state
        try:
            await self._mark_requested()
        except Exception as exc:
            logger.error("Failed to persist permission flag: %s", exc)
        return self._set(PermissionState.COMPLETED)

    async def on_return_from_notification_request(self) -> PermissionState:
        """Read the prompt's outcome."""
        if not self._allowed(
            "notification request returned", PermissionState.REQUESTING_NOTIFICATION_PERMISSION,
        ):
            return self._state
        try:
            granted = await self._permissions.is_authorized()
            logger.info("Notification permission result: granted=%s", granted)
            await self._mark_requested()
            if not granted:
                return self._set(PermissionState.NOTIFICATION_PERMISSION_DENIED)
            return await self._after_notification_granted()
        except Exception as exc:
            logger.error("Failed to check notification permission result: %s", exc)
            return self._set(PermissionState.NOTIFICATION_PERMISSION_DENIED)

    async def on_exact_alarm_explanation_confirmed(self) -> PermissionState:
        if not self._allowed(
            "exact alarm explanation confirmed", PermissionState.SHOW_EXACT_ALARM_EXPLANATION,
        ):
            return self._state
        self._set(PermissionState.REQUESTING_EXACT_ALARM_PERMISSION)
        try:
            await self._permissions.request_exact_permission()
        except Exception as exc:
            logger.error("Failed to request exact alarm permission: %s", exc)
            return self._set(PermissionState.COMPLETED)
        return self._state

    async def on_exact_alarm_explanation_dismissed(self) -> PermissionState:
        if not self._allowed(
            "exact alarm explanation dismissed", PermissionState.SHOW_EXACT_ALARM_EXPLANATION,
        ):
            return self._state
        return self._set(PermissionState.COMPLETED)

    async def on_return_from_exact_alarm_request(self) -> PermissionState:
        if not self._allowed(
            "exact alarm request returned", PermissionState.REQUESTING_EXACT_ALARM_PERMISSION,
        ):
            return self._state
        try:
            granted = await self._permissions.can_schedule_exact()
            logger.info("Exact alarm permission result: granted=%s", granted)
        except Exception as exc:
            logger.error("Failed to check exact alarm permission result: %s", exc)
        return self._set(PermissionState.COMPLETED)

    async def on_permission_denied_dismissed(self) -> PermissionState:
        # Denial is terminal for the session; the user re-enables externally.
        return self._state


async def request_permission_on_startup(
    permissions: PermissionManager, preferences: PreferencesPort,
) -> bool:
    """Non-interactive variant: ask once per install, then only report.

    Returns True when notifications are authorized afterwards.
    """
    if await preferences.get_bool(KEY_NOTIFICATION_PERMISSION_REQUESTED, False):
        return await permissions.is_authorized()

    await preferences.set_bool(KEY_NOTIFICATION_PERMISSION_REQUESTED, True)
    if await permissions.is_authorized():
        return True
    return await permissions.request_authorization()
