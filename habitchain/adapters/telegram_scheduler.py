"""Telegram reminder adapter — implements PlatformScheduler and PermissionManager.

Wake-ups are one-shot JobQueue jobs named ``habit:<id>:<date>:<HH:MM>``.
When a job fires it posts the reminder (with a Complete button) to the
user's chat, remembers the message as the habit's visible reminder, and
reports the delivery back to the engine. A newer reminder replaces the
habit's previous one in the chat.

Authorization is the user's explicit opt-in, kept in the preference store.
Asking sends an Allow / Not now prompt; the answer comes back through the
bot's callback handler, which calls set_authorized().
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Sequence

from telegram import InlineKeyboardButton, InlineKeyboardMarkup
from telegram.error import TelegramError
from telegram.helpers import escape_markdown

from habitchain.core.clock import local_zone
from habitchain.core.recurrence import format_time, parse_time
from habitchain.ports.platform_scheduler import PlatformError
from habitchain.ports.preferences_port import KEY_NOTIFICATIONS_AUTHORIZED

if TYPE_CHECKING:
    from telegram import Bot
    from telegram.ext import CallbackContext, JobQueue

    from habitchain.ports.preferences_port import PreferencesPort

logger = logging.getLogger(__name__)

_JOB_PREFIX = "habit:"

DeliveryHandler = Callable[[int, Sequence[int] | None, date, time], Awaitable[Any]]


def job_name(habit_id: int, on_date: date, at_time: time) -> str:
    return f"{_JOB_PREFIX}{habit_id}:{on_date.isoformat()}:{format_time(at_time)}"


def complete_callback_data(habit_id: int, on_date: date, at_time: time) -> str:
    return f"done:{habit_id}:{on_date.isoformat()}:{format_time(at_time)}"


def parse_complete_callback(data: str) -> tuple[int, date, time] | None:
    """Parse ``done:<id>:<YYYY-MM-DD>:<HH:MM>``. Returns None if malformed."""
    parts = data.split(":", 2)
    if len(parts) != 3 or parts[0] != "done":
        return None
    try:
        habit_id = int(parts[1])
        date_str, time_str = parts[2].split(":", 1)
        return habit_id, date.fromisoformat(date_str), parse_time(time_str)
    except ValueError:
        return None


def format_reminder(payload: dict[str, Any]) -> str:
    name = escape_markdown(payload.get("habit_name") or "Habit Reminder")
    description = escape_markdown(payload.get("habit_description") or "Time to complete your habit!")
    return f"⏰ *{name}* ({payload.get('time', '')})\n{description}"


class TelegramReminderPlatform:
    """Reminder platform backed by a Telegram chat and its JobQueue."""

    def __init__(
        self,
        bot: Bot,
        job_queue: JobQueue,
        chat_id: int,
        preferences: PreferencesPort,
        on_delivered: DeliveryHandler | None = None,
    ) -> None:
        self._bot = bot
        self._job_queue = job_queue
        self._chat_id = chat_id
        self._preferences = preferences
        self._on_delivered = on_delivered
        self._visible: dict[int, tuple[date, time, int]] = {}

    def set_delivery_handler(self, handler: DeliveryHandler) -> None:
        self._on_delivered = handler

    # ------------------------------------------------------------------
    # PlatformScheduler
    # ------------------------------------------------------------------

    async def arm(
        self, habit_id: int, on_date: date, at_time: time, payload: dict[str, Any]
    ) -> None:
        name = job_name(habit_id, on_date, at_time)
        self._remove_jobs(lambda n: n == name)
        when = datetime.combine(on_date, at_time, tzinfo=local_zone())
        try:
            self._job_queue.run_once(
                self._fire,
                when=when,
                data={**payload, "habit_id": habit_id},
                name=name,
                chat_id=self._chat_id,
            )
        except Exception as exc:
            raise PlatformError(f"Failed to arm {name}: {exc}") from exc
        logger.debug("Job %s armed for %s", name, when.isoformat())

    async def cancel(self, habit_id: int, on_date: date, at_time: time) -> None:
        name = job_name(habit_id, on_date, at_time)
        self._remove_jobs(lambda n: n == name)
        shown = self._visible.get(habit_id)
        if shown is not None and shown[:2] == (on_date, at_time):
            del self._visible[habit_id]
            await self._delete_message(shown[2])

    async def cancel_all_for_habit(self, habit_id: int) -> None:
        prefix = f"{_JOB_PREFIX}{habit_id}:"
        removed = self._remove_jobs(lambda n: n.startswith(prefix))
        shown = self._visible.pop(habit_id, None)
        if shown is not None:
            await self._delete_message(shown[2])
        logger.debug("Removed %d jobs for habit #%d", removed, habit_id)

    async def cancel_all(self) -> None:
        removed = self._remove_jobs(lambda n: n.startswith(_JOB_PREFIX))
        visible, self._visible = self._visible, {}
        for _, _, message_id in visible.values():
            await self._delete_message(message_id)
        logger.debug("Removed %d reminder jobs", removed)

    # ------------------------------------------------------------------
    # Authorization (PlatformScheduler + PermissionManager)
    # ------------------------------------------------------------------

    async def is_authorized(self) -> bool:
        return await self._preferences.get_bool(KEY_NOTIFICATIONS_AUTHORIZED, False)

    async def request_authorization(self) -> bool:
        """Send the opt-in prompt; the answer arrives via set_authorized()."""
        keyboard = InlineKeyboardMarkup([[
            InlineKeyboardButton("Allow reminders", callback_data="perm:allow"),
            InlineKeyboardButton("Not now", callback_data="perm:deny"),
        ]])
        try:
            await self._bot.send_message(
                chat_id=self._chat_id,
                text="May I send you habit reminders?",
                reply_markup=keyboard,
            )
        except TelegramError as exc:
            raise PlatformError(f"Failed to send permission prompt: {exc}") from exc
        return await self.is_authorized()

    async def set_authorized(self, value: bool) -> None:
        await self._preferences.set_bool(KEY_NOTIFICATIONS_AUTHORIZED, value)
        logger.info("Reminders %s by user", "allowed" if value else "declined")

    async def can_schedule_exact(self) -> bool:
        # JobQueue timers fire at the requested time; no extra grant exists.
        return True

    async def request_exact_permission(self) -> bool:
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _remove_jobs(self, match: Callable[[str], bool]) -> int:
        removed = 0
        for job in self._job_queue.jobs():
            if job.name and match(job.name):
                job.schedule_removal()
                removed += 1
        return removed

    async def _delete_message(self, message_id: int) -> None:
        try:
            await self._bot.delete_message(chat_id=self._chat_id, message_id=message_id)
        except TelegramError as exc:
            # Already gone or too old to delete; nothing left to clear.
            logger.warning("Could not delete reminder message %d: %s", message_id, exc)

    async def _fire(self, context: CallbackContext) -> None:
        data = context.job.data
        habit_id = data["habit_id"]
        on_date = date.fromisoformat(data["date"])
        at_time = parse_time(data["time"])
        logger.info("Reminder due for habit #%d at %s %s", habit_id, data["date"], data["time"])

        keyboard = InlineKeyboardMarkup([[
            InlineKeyboardButton(
                "Complete", callback_data=complete_callback_data(habit_id, on_date, at_time),
            ),
        ]])
        try:
            message = await self._bot.send_message(
                chat_id=self._chat_id,
                text=format_reminder(data),
                parse_mode="Markdown",
                reply_markup=keyboard,
            )
            previous = self._visible.get(habit_id)
            self._visible[habit_id] = (on_date, at_time, message.message_id)
            if previous is not None:
                await self._delete_message(previous[2])
        except TelegramError as exc:
            logger.error("Failed to show reminder for habit #%d: %s", habit_id, exc)

        if self._on_delivered is None:
            return
        try:
            await self._on_delivered(habit_id, data.get("token"), on_date, at_time)
        except Exception as exc:
            logger.error("Delivery handler failed for habit #%d: %s", habit_id, exc)
