"""
Habit Chain — Telegram Bot.

Telegram is the only user interface. Habits are managed with commands,
reminders arrive as chat messages with a Complete button, and the
permission flow runs as inline-keyboard prompts on /start.

Security-first: unauthorized users are silently ignored.
"""

from __future__ import annotations

import logging
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Coroutine

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
)
from telegram.helpers import escape_markdown

from habitchain.config import settings
from habitchain.core.permission_flow import PermissionFlow, PermissionState
from habitchain.core.recurrence import (
    FrequencyType,
    Hourly,
    Interval,
    OnceDaily,
    RecurrenceRule,
    ValidationError,
    format_time,
    nearest_legal,
    parse_time,
)
from habitchain.ports.habit_store import StoreError

if TYPE_CHECKING:
    from habitchain.adapters.telegram_scheduler import TelegramReminderPlatform
    from habitchain.core.habit_service import HabitService
    from habitchain.core.notification_chain import NotificationChain
    from habitchain.data.models import Habit

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Security: silent-ignore decorator
# ---------------------------------------------------------------------------


def authorized_only(
    func: Callable[..., Coroutine[Any, Any, None]],
) -> Callable[..., Coroutine[Any, Any, None]]:
    """Decorator that silently ignores messages from unauthorized users."""

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = update.effective_user
        if user is None or user.id not in settings.ALLOWED_USER_IDS:
            uid = user.id if user else "unknown"
            logger.warning("Unauthorized access attempt from user_id=%s", uid)
            return  # Silent ignore
        return await func(update, context)

    return wrapper


# ---------------------------------------------------------------------------
# Formatting and parsing helpers
# ---------------------------------------------------------------------------

_ADDHABIT_USAGE = (
    "Usage:\n"
    "/addhabit daily 09:00,14:00 <name>\n"
    "/addhabit hourly <hours> 09:00[-18:00] <name>\n"
    "/addhabit interval <minutes> 09:00[-17:30] <name>"
)


def _describe_rule(rule: RecurrenceRule) -> str:
    if isinstance(rule, OnceDaily):
        return "daily at " + ", ".join(format_time(t) for t in rule.times)
    if isinstance(rule, Hourly):
        text = f"every {rule.interval_minutes // 60}h from {format_time(rule.anchor_time)}"
    else:
        text = f"every {rule.interval_minutes} min from {format_time(rule.anchor_time)}"
    if rule.end_time is not None:
        text += f" until {format_time(rule.end_time)}"
    return text


def _parse_window(text: str):
    """Parse "HH:MM" or "HH:MM-HH:MM" into (anchor, end_or_None)."""
    if "-" in text:
        start, end = text.split("-", 1)
        return parse_time(start), parse_time(end)
    return parse_time(text), None


def _parse_addhabit(args: list[str]) -> tuple[str, RecurrenceRule]:
    """Parse /addhabit arguments into (name, rule).

    Raises ValidationError for an illegal interval and ValueError for any
    other malformed input.
    """
    if len(args) < 3:
        raise ValueError(_ADDHABIT_USAGE)
    kind = args[0].lower()

    if kind == "daily":
        times = [parse_time(t) for t in args[1].split(",") if t.strip()]
        return " ".join(args[2:]), OnceDaily(times=tuple(times))

    if kind in ("hourly", "interval"):
        if len(args) < 4:
            raise ValueError(_ADDHABIT_USAGE)
        amount = int(args[1])
        anchor, end = _parse_window(args[2])
        name = " ".join(args[3:])
        if kind == "hourly":
            return name, Hourly(anchor_time=anchor, interval_minutes=amount * 60, end_time=end)
        return name, Interval(anchor_time=anchor, interval_minutes=amount, end_time=end)

    raise ValueError(_ADDHABIT_USAGE)


def _suggestion(exc: ValidationError) -> str:
    if not isinstance(exc.value, int):
        return ""
    nearest = nearest_legal(exc.frequency_type, exc.value)
    if exc.frequency_type is FrequencyType.HOURLY:
        return f"\nClosest valid interval: {nearest // 60}h"
    if exc.frequency_type is FrequencyType.INTERVAL:
        return f"\nClosest valid interval: {nearest} min"
    return ""


def _parse_habit_id(args: list[str] | None) -> int | None:
    if not args:
        return None
    try:
        return int(args[0])
    except ValueError:
        return None


def _service(context: ContextTypes.DEFAULT_TYPE) -> HabitService:
    return context.bot_data["service"]


# ---------------------------------------------------------------------------
# Permission flow
# ---------------------------------------------------------------------------

_PERMISSION_PROMPTS: dict[PermissionState, tuple[str, list[tuple[str, str]]]] = {
    PermissionState.SHOW_NOTIFICATION_EXPLANATION: (
        "I remind you when each habit is due, one reminder at a time.\n"
        "To do that I need your permission to send reminders.",
        [("Continue", "perm:explain_ok"), ("Skip", "perm:explain_no")],
    ),
    PermissionState.SHOW_EXACT_ALARM_EXPLANATION: (
        "Reminders can fire at the exact minute a habit is due.\n"
        "This needs one more permission.",
        [("Continue", "exact:ok"), ("Skip", "exact:no")],
    ),
}


async def _render_permission_state(
    state: PermissionState, context: ContextTypes.DEFAULT_TYPE, chat_id: int,
) -> None:
    """Send the message that belongs to the flow's current state."""
    if state in _PERMISSION_PROMPTS:
        text, buttons = _PERMISSION_PROMPTS[state]
        keyboard = InlineKeyboardMarkup([[
            InlineKeyboardButton(label, callback_data=data) for label, data in buttons
        ]])
        await context.bot.send_message(chat_id=chat_id, text=text, reply_markup=keyboard)
        return

    if state is PermissionState.NOTIFICATION_PERMISSION_DENIED:
        await context.bot.send_message(
            chat_id=chat_id,
            text="Reminders are off. Turn them on any time with /reminders on.",
        )
        return

    if state is PermissionState.COMPLETED:
        chain: NotificationChain = context.bot_data["chain"]
        armed = await chain.reschedule_all()
        if armed:
            await context.bot.send_message(
                chat_id=chat_id, text=f"Reminders are on for {armed} habit(s).",
            )


@authorized_only
async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start — welcome message, then the permission flow."""
    await update.message.reply_text(
        "Welcome to *Habit Chain*!\n\n"
        "I track your habits and remind you when each one is due.\n"
        "• /addhabit to create a habit\n"
        "• /today for today's schedule, /next for what's coming\n\n"
        "Type /help for the full command list.",
        parse_mode="Markdown",
    )
    flow = PermissionFlow(context.bot_data["platform"], context.bot_data["preferences"])
    context.bot_data["flow"] = flow
    state = await flow.start()
    await _render_permission_state(state, context, update.effective_chat.id)


async def _handle_permission_callback(
    update: Update, context: ContextTypes.DEFAULT_TYPE
) -> None:
    """Handle the explanation and Allow / Not now buttons."""
    query = update.callback_query
    await query.answer()

    user = query.from_user
    if user is None or user.id not in settings.ALLOWED_USER_IDS:
        return

    flow: PermissionFlow | None = context.bot_data.get("flow")
    platform: TelegramReminderPlatform = context.bot_data["platform"]
    action = query.data.split(":", 1)[1]

    if action in ("allow", "deny"):
        await platform.set_authorized(action == "allow")
        await query.edit_message_text(
            "Reminders allowed." if action == "allow" else "Okay, no reminders."
        )
        if flow is None:
            if action == "allow":
                await context.bot_data["chain"].reschedule_all()
            return
        state = await flow.on_return_from_notification_request()
    elif flow is None:
        await query.edit_message_text("This prompt has expired. Send /start again.")
        return
    elif action == "explain_ok":
        await query.edit_message_reply_markup(reply_markup=None)
        state = await flow.on_notification_explanation_confirmed()
    elif action == "explain_no":
        await query.edit_message_text("Okay. You can turn reminders on later with /reminders on.")
        state = await flow.on_notification_explanation_dismissed()
    else:
        return

    if flow.state is not PermissionState.REQUESTING_NOTIFICATION_PERMISSION:
        await _render_permission_state(state, context, query.message.chat_id)


async def _handle_exact_callback(
    update: Update, context: ContextTypes.DEFAULT_TYPE
) -> None:
    """Handle the exact-timing explanation buttons."""
    query = update.callback_query
    await query.answer()

    user = query.from_user
    if user is None or user.id not in settings.ALLOWED_USER_IDS:
        return

    flow: PermissionFlow | None = context.bot_data.get("flow")
    if flow is None:
        await query.edit_message_text("This prompt has expired. Send /start again.")
        return

    await query.edit_message_reply_markup(reply_markup=None)
    if query.data == "exact:ok":
        await flow.on_exact_alarm_explanation_confirmed()
        state = await flow.on_return_from_exact_alarm_request()
    else:
        state = await flow.on_exact_alarm_explanation_dismissed()
    await _render_permission_state(state, context, query.message.chat_id)


@authorized_only
async def cmd_reminders(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /reminders on|off — change reminder permission outside the flow."""
    args = context.args or []
    if not args or args[0].lower() not in ("on", "off"):
        await update.message.reply_text("Usage: /reminders on|off")
        return

    platform: TelegramReminderPlatform = context.bot_data["platform"]
    chain: NotificationChain = context.bot_data["chain"]
    enabled = args[0].lower() == "on"

    try:
        await platform.set_authorized(enabled)
        if enabled:
            armed = await chain.reschedule_all()
            await update.message.reply_text(f"Reminders are on for {armed} habit(s).")
        else:
            await chain.cancel_all()
            await update.message.reply_text("Reminders are off.")
    except Exception as exc:
        logger.error("/reminders error: %s", exc)
        await update.message.reply_text("Couldn't change reminder settings. Please try again.")


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help — list available commands."""
    await update.message.reply_text(
        "*Available commands:*\n"
        "/today — Today's habit schedule\n"
        "/next — The next reminder due\n"
        "/habits — List all habits\n"
        "/addhabit — Add a habit (send without arguments for the format)\n"
        "/done <id> — Mark a habit done for today\n"
        "/pause <id>, /resume <id> — Pause or resume a habit\n"
        "/deletehabit <id> — Delete a habit and its history\n"
        "/reminders on|off — Turn reminders on or off\n"
        "/help — Show this message",
        parse_mode="Markdown",
    )


@authorized_only
async def cmd_habits(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /habits — list all habits."""
    store = context.bot_data["store"]
    try:
        habits: list[Habit] = await store.list_habits()
    except StoreError as exc:
        logger.error("/habits error: %s", exc)
        await update.message.reply_text("Couldn't load habits. Please try again.")
        return

    if not habits:
        await update.message.reply_text("No habits yet. Add one with /addhabit.")
        return

    lines = ["*Habits:*\n"]
    for h in habits:
        status = "" if h.active else " (paused)"
        lines.append(f"`{h.id}` — {escape_markdown(h.name)}: {_describe_rule(h.rule)}{status}")
    await update.message.reply_text("\n".join(lines), parse_mode="Markdown")


@authorized_only
async def cmd_today(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /today — show today's occurrences."""
    try:
        occurrences = await _service(context).today()
    except StoreError as exc:
        logger.error("/today error: %s", exc)
        await update.message.reply_text("Couldn't load today's habits. Please try again.")
        return

    if not occurrences:
        await update.message.reply_text("Nothing scheduled for today.")
        return

    lines = ["*Today:*\n"]
    for o in occurrences:
        mark = "✅" if o.completed else "•"
        lines.append(f"{mark} {format_time(o.time)}  {escape_markdown(o.habit_name)}")
    await update.message.reply_text("\n".join(lines), parse_mode="Markdown")


@authorized_only
async def cmd_next(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /next — show the next occurrence across all habits."""
    try:
        upcoming = await _service(context).next_up()
    except StoreError as exc:
        logger.error("/next error: %s", exc)
        await update.message.reply_text("Couldn't load habits. Please try again.")
        return

    if upcoming is None:
        await update.message.reply_text("Nothing coming up.")
        return
    await update.message.reply_text(
        f"Next: *{escape_markdown(upcoming.habit_name)}* on {upcoming.date.isoformat()} "
        f"at {format_time(upcoming.time)}",
        parse_mode="Markdown",
    )


@authorized_only
async def cmd_addhabit(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /addhabit — create a habit from one line of arguments."""
    try:
        name, rule = _parse_addhabit(context.args or [])
    except ValidationError as exc:
        await update.message.reply_text(f"Invalid schedule: {exc}{_suggestion(exc)}")
        return
    except ValueError:
        await update.message.reply_text(_ADDHABIT_USAGE)
        return

    try:
        habit = await _service(context).add_habit(name, rule)
    except Exception as exc:
        logger.error("/addhabit error: %s", exc)
        await update.message.reply_text("Couldn't save the habit. Please try again.")
        return

    await update.message.reply_text(
        f"✅ Added `{habit.id}` — *{escape_markdown(habit.name)}*: {_describe_rule(habit.rule)}",
        parse_mode="Markdown",
    )


@authorized_only
async def cmd_done(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /done <id> — mark a habit done for today."""
    habit_id = _parse_habit_id(context.args)
    if habit_id is None:
        await update.message.reply_text("Usage: /done <habit_id>\nUse /habits to see IDs.")
        return

    try:
        habit = await context.bot_data["store"].get_habit(habit_id)
        if habit is None:
            await update.message.reply_text(f"Habit {habit_id} not found.")
            return
        await _service(context).complete(habit_id)
    except Exception as exc:
        logger.error("/done error: %s", exc)
        await update.message.reply_text(f"Couldn't mark habit {habit_id} as done.")
        return

    await update.message.reply_text(f"✅ Marked '*{escape_markdown(habit.name)}*' as done today.", parse_mode="Markdown")


async def _set_active(update: Update, context: ContextTypes.DEFAULT_TYPE, active: bool) -> None:
    verb = "resume" if active else "pause"
    habit_id = _parse_habit_id(context.args)
    if habit_id is None:
        await update.message.reply_text(f"Usage: /{verb} <habit_id>")
        return

    try:
        habit = await _service(context).set_active(habit_id, active)
    except Exception as exc:
        logger.error("/%s error: %s", verb, exc)
        await update.message.reply_text(f"Couldn't {verb} habit {habit_id}.")
        return

    if habit is None:
        await update.message.reply_text(f"Habit {habit_id} not found.")
        return
    await update.message.reply_text(f"Habit *{escape_markdown(habit.name)}* {verb}d.", parse_mode="Markdown")


@authorized_only
async def cmd_pause(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /pause <id>."""
    await _set_active(update, context, active=False)


@authorized_only
async def cmd_resume(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /resume <id>."""
    await _set_active(update, context, active=True)


@authorized_only
async def cmd_deletehabit(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /deletehabit <id> — delete a habit, its logs and reminders."""
    habit_id = _parse_habit_id(context.args)
    if habit_id is None:
        await update.message.reply_text("Usage: /deletehabit <habit_id>")
        return

    try:
        deleted = await _service(context).delete_habit(habit_id)
    except Exception as exc:
        logger.error("/deletehabit error: %s", exc)
        await update.message.reply_text("Something went wrong. Please try again.")
        return

    if deleted:
        await update.message.reply_text(f"✅ Habit {habit_id} deleted.")
    else:
        await update.message.reply_text(f"Habit {habit_id} not found.")


async def _handle_complete_callback(
    update: Update, context: ContextTypes.DEFAULT_TYPE
) -> None:
    """Handle the Complete button on a reminder."""
    from habitchain.adapters.telegram_scheduler import parse_complete_callback

    query = update.callback_query
    await query.answer()

    user = query.from_user
    if user is None or user.id not in settings.ALLOWED_USER_IDS:
        return

    parsed = parse_complete_callback(query.data)
    if parsed is None:
        logger.warning("Malformed complete callback: %r", query.data)
        return
    habit_id, on_date, at_time = parsed

    chain: NotificationChain = context.bot_data["chain"]
    try:
        await chain.on_user_completed_from_notification(habit_id, on_date, at_time)
    except Exception as exc:
        logger.error("Failed to complete habit #%d from reminder: %s", habit_id, exc)
        await context.bot.send_message(
            chat_id=query.message.chat_id,
            text="Couldn't record that. Please try /done instead.",
        )


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


async def _post_init(app: Application) -> None:
    """Cold start: every wake-up from the previous run is gone, re-arm all."""
    service: HabitService = app.bot_data["service"]
    chain: NotificationChain = app.bot_data["chain"]

    if settings.SETUP_DEFAULT_HABITS:
        await service.setup_default_habits()
    try:
        await chain.reschedule_all()
    except Exception as exc:
        logger.error("Failed to reschedule reminders on startup: %s", exc)


def build_app() -> Application:
    """Build and configure the Telegram Application with all handlers."""
    from habitchain.adapters.sqlite_store import SQLiteHabitStore, SQLitePreferences
    from habitchain.adapters.telegram_scheduler import TelegramReminderPlatform
    from habitchain.core.habit_service import HabitService
    from habitchain.core.notification_chain import NotificationChain
    from habitchain.data.db import HabitDB, PreferenceDB

    if not settings.ALLOWED_USER_IDS:
        raise ValueError("ALLOWED_USER_IDS must name the chat that receives reminders")

    app = ApplicationBuilder().token(settings.TELEGRAM_BOT_TOKEN).post_init(_post_init).build()

    store = SQLiteHabitStore(HabitDB())
    preferences = SQLitePreferences(PreferenceDB())
    platform = TelegramReminderPlatform(
        app.bot, app.job_queue, settings.ALLOWED_USER_IDS[0], preferences,
    )
    chain = NotificationChain(store, platform)
    platform.set_delivery_handler(chain.on_delivered)

    app.bot_data["store"] = store
    app.bot_data["preferences"] = preferences
    app.bot_data["platform"] = platform
    app.bot_data["chain"] = chain
    app.bot_data["service"] = HabitService(store, chain)

    # Commands
    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("habits", cmd_habits))
    app.add_handler(CommandHandler("today", cmd_today))
    app.add_handler(CommandHandler("next", cmd_next))
    app.add_handler(CommandHandler("addhabit", cmd_addhabit))
    app.add_handler(CommandHandler("done", cmd_done))
    app.add_handler(CommandHandler("pause", cmd_pause))
    app.add_handler(CommandHandler("resume", cmd_resume))
    app.add_handler(CommandHandler("deletehabit", cmd_deletehabit))
    app.add_handler(CommandHandler("reminders", cmd_reminders))
    app.add_handler(CallbackQueryHandler(_handle_permission_callback, pattern=r"^perm:"))
    app.add_handler(CallbackQueryHandler(_handle_exact_callback, pattern=r"^exact:"))
    app.add_handler(CallbackQueryHandler(_handle_complete_callback, pattern=r"^done:"))

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def main() -> None:
    """Entry point: build the app and start polling."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting Habit Chain bot...")
    app = build_app()
    app.run_polling()


if __name__ == "__main__":
    main()
