"""Tests for habitchain.adapters.telegram_scheduler — JobQueue-backed reminders.

Bot and JobQueue are mocked; no network access.
"""

from datetime import date, datetime, time
from unittest.mock import AsyncMock, MagicMock, patch
from zoneinfo import ZoneInfo

import pytest
from telegram.error import BadRequest, NetworkError

from habitchain.adapters.telegram_scheduler import (
    TelegramReminderPlatform,
    complete_callback_data,
    format_reminder,
    job_name,
    parse_complete_callback,
)
from habitchain.ports.platform_scheduler import PlatformError
from habitchain.ports.preferences_port import KEY_NOTIFICATIONS_AUTHORIZED

DAY = date(2026, 3, 10)
CHAT_ID = 12345


def _make_job(name):
    job = MagicMock()
    job.name = name
    return job


def _make_platform(preferences, jobs=(), on_delivered=None):
    bot = MagicMock()
    bot.send_message = AsyncMock(return_value=MagicMock(message_id=777))
    bot.delete_message = AsyncMock()
    job_queue = MagicMock()
    job_queue.jobs.return_value = list(jobs)
    platform = TelegramReminderPlatform(bot, job_queue, CHAT_ID, preferences, on_delivered)
    return platform, bot, job_queue


def _make_context(payload):
    context = MagicMock()
    context.job.data = payload
    return context


PAYLOAD = {
    "habit_id": 3,
    "habit_name": "Meds",
    "habit_description": "With food",
    "habit_color": "#2196F3",
    "date": "2026-03-10",
    "time": "14:00",
    "token": [1, 0],
}


class TestHelpers:
    def test_job_name(self):
        assert job_name(3, DAY, time(14, 0)) == "habit:3:2026-03-10:14:00"

    def test_complete_callback_parses_back(self):
        data = complete_callback_data(3, DAY, time(9, 5))
        assert data == "done:3:2026-03-10:09:05"
        assert parse_complete_callback(data) == (3, DAY, time(9, 5))

    def test_parse_rejects_malformed(self):
        assert parse_complete_callback("done:x:2026-03-10:09:05") is None
        assert parse_complete_callback("done:3:yesterday") is None
        assert parse_complete_callback("perm:allow") is None

    def test_format_reminder(self):
        text = format_reminder(PAYLOAD)
        assert "Meds" in text
        assert "14:00" in text
        assert "With food" in text

    def test_format_reminder_escapes_markdown(self):
        text = format_reminder({**PAYLOAD, "habit_name": "read_10_pages*"})
        assert "read\\_10\\_pages\\*" in text

    def test_format_reminder_fallbacks(self):
        text = format_reminder({"time": "08:00"})
        assert "Habit Reminder" in text
        assert "Time to complete your habit!" in text


class TestArmAndCancel:
    @pytest.mark.asyncio
    async def test_arm_schedules_one_shot_job(self, preferences):
        platform, _, job_queue = _make_platform(preferences)

        with patch(
            "habitchain.adapters.telegram_scheduler.local_zone",
            return_value=ZoneInfo("UTC"),
        ):
            await platform.arm(3, DAY, time(14, 0), PAYLOAD)

        job_queue.run_once.assert_called_once()
        kwargs = job_queue.run_once.call_args.kwargs
        assert kwargs["name"] == "habit:3:2026-03-10:14:00"
        assert kwargs["when"] == datetime(2026, 3, 10, 14, 0, tzinfo=ZoneInfo("UTC"))
        assert kwargs["data"]["habit_id"] == 3
        assert kwargs["chat_id"] == CHAT_ID

    @pytest.mark.asyncio
    async def test_arm_replaces_job_with_same_name(self, preferences):
        existing = _make_job("habit:3:2026-03-10:14:00")
        other = _make_job("habit:4:2026-03-10:14:00")
        platform, _, _ = _make_platform(preferences, jobs=[existing, other])

        await platform.arm(3, DAY, time(14, 0), PAYLOAD)

        existing.schedule_removal.assert_called_once()
        other.schedule_removal.assert_not_called()

    @pytest.mark.asyncio
    async def test_arm_failure_raises_platform_error(self, preferences):
        platform, _, job_queue = _make_platform(preferences)
        job_queue.run_once.side_effect = RuntimeError("scheduler shut down")

        with pytest.raises(PlatformError):
            await platform.arm(3, DAY, time(14, 0), PAYLOAD)

    @pytest.mark.asyncio
    async def test_cancel_all_for_habit_matches_prefix_only(self, preferences):
        mine = _make_job("habit:3:2026-03-10:14:00")
        not_mine = _make_job("habit:31:2026-03-10:14:00")
        platform, _, _ = _make_platform(preferences, jobs=[mine, not_mine])

        await platform.cancel_all_for_habit(3)

        mine.schedule_removal.assert_called_once()
        not_mine.schedule_removal.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancel_all_keeps_foreign_jobs(self, preferences):
        reminder = _make_job("habit:3:2026-03-10:14:00")
        foreign = _make_job("daily_digest")
        unnamed = _make_job(None)
        platform, _, _ = _make_platform(preferences, jobs=[reminder, foreign, unnamed])

        await platform.cancel_all()

        reminder.schedule_removal.assert_called_once()
        foreign.schedule_removal.assert_not_called()
        unnamed.schedule_removal.assert_not_called()


class TestFire:
    @pytest.mark.asyncio
    async def test_fire_sends_reminder_and_reports_delivery(self, preferences):
        handler = AsyncMock()
        platform, bot, _ = _make_platform(preferences, on_delivered=handler)

        await platform._fire(_make_context(PAYLOAD))

        bot.send_message.assert_called_once()
        kwargs = bot.send_message.call_args.kwargs
        assert kwargs["chat_id"] == CHAT_ID
        assert "Meds" in kwargs["text"]
        button = kwargs["reply_markup"].inline_keyboard[0][0]
        assert button.callback_data == "done:3:2026-03-10:14:00"
        handler.assert_awaited_once_with(3, [1, 0], DAY, time(14, 0))

    @pytest.mark.asyncio
    async def test_send_failure_still_reports_delivery(self, preferences):
        handler = AsyncMock()
        platform, bot, _ = _make_platform(preferences, on_delivered=handler)
        bot.send_message.side_effect = NetworkError("offline")

        await platform._fire(_make_context(PAYLOAD))

        handler.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_handler_failure_is_logged(self, preferences):
        handler = AsyncMock(side_effect=RuntimeError("store down"))
        platform, _, _ = _make_platform(preferences, on_delivered=handler)

        await platform._fire(_make_context(PAYLOAD))

        handler.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_cancel_deletes_visible_reminder(self, preferences):
        platform, bot, _ = _make_platform(preferences)
        await platform._fire(_make_context(PAYLOAD))

        await platform.cancel(3, DAY, time(14, 0))

        bot.delete_message.assert_awaited_once_with(chat_id=CHAT_ID, message_id=777)

    @pytest.mark.asyncio
    async def test_delete_failure_is_tolerated(self, preferences):
        platform, bot, _ = _make_platform(preferences)
        await platform._fire(_make_context(PAYLOAD))
        bot.delete_message.side_effect = BadRequest("Message to delete not found")

        await platform.cancel_all()

        bot.delete_message.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_cancel_all_for_habit_deletes_visible(self, preferences):
        platform, bot, _ = _make_platform(preferences)
        await platform._fire(_make_context(PAYLOAD))

        await platform.cancel_all_for_habit(3)
        await platform.cancel_all_for_habit(3)

        bot.delete_message.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_new_reminder_replaces_previous_message(self, preferences):
        platform, bot, _ = _make_platform(preferences)
        bot.send_message.side_effect = [MagicMock(message_id=100 + i) for i in range(50)]

        for minute in range(50):
            payload = {**PAYLOAD, "time": f"14:{minute:02d}"}
            await platform._fire(_make_context(payload))

        assert bot.delete_message.await_count == 49
        bot.delete_message.reset_mock()

        await platform.cancel_all_for_habit(3)

        bot.delete_message.assert_awaited_once_with(chat_id=CHAT_ID, message_id=149)

    @pytest.mark.asyncio
    async def test_cancel_of_older_occurrence_keeps_newer_message(self, preferences):
        platform, bot, _ = _make_platform(preferences)
        await platform._fire(_make_context(PAYLOAD))

        await platform.cancel(3, DAY, time(9, 0))

        bot.delete_message.assert_not_awaited()


class TestAuthorization:
    @pytest.mark.asyncio
    async def test_not_authorized_until_opt_in(self, preferences):
        platform, _, _ = _make_platform(preferences)

        assert await platform.is_authorized() is False
        await platform.set_authorized(True)

        assert await platform.is_authorized() is True
        assert preferences.values[KEY_NOTIFICATIONS_AUTHORIZED] is True

    @pytest.mark.asyncio
    async def test_request_sends_prompt(self, preferences):
        platform, bot, _ = _make_platform(preferences)

        assert await platform.request_authorization() is False

        kwargs = bot.send_message.call_args.kwargs
        callbacks = [b.callback_data for b in kwargs["reply_markup"].inline_keyboard[0]]
        assert callbacks == ["perm:allow", "perm:deny"]

    @pytest.mark.asyncio
    async def test_request_failure_raises_platform_error(self, preferences):
        platform, bot, _ = _make_platform(preferences)
        bot.send_message.side_effect = NetworkError("offline")

        with pytest.raises(PlatformError):
            await platform.request_authorization()

    @pytest.mark.asyncio
    async def test_exact_timing_always_available(self, preferences):
        platform, _, _ = _make_platform(preferences)
        assert await platform.can_schedule_exact() is True
        assert await platform.request_exact_permission() is True
