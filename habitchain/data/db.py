"""
Habit Chain — Habit Database.

Habits and their daily completion logs persist in SQLite, surviving bot
restarts. One log row per habit per day; writing the same (habit, day)
again replaces the row.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import date
from pathlib import Path

from habitchain.core.recurrence import (
    ONCE_DAILY_MINUTES,
    FrequencyType,
    Hourly,
    Interval,
    OnceDaily,
    RecurrenceRule,
    build_rule,
    format_time,
    parse_time,
)
from habitchain.data.models import Habit, HabitLog

logger = logging.getLogger(__name__)

_DEFAULT_TIME = "09:00"


def _rule_columns(rule: RecurrenceRule) -> dict:
    """Flatten a rule into its storage columns."""
    if isinstance(rule, OnceDaily):
        return {
            "frequency_type": FrequencyType.ONCE_DAILY.value,
            "interval_minutes": ONCE_DAILY_MINUTES,
            "scheduled_times": ",".join(format_time(t) for t in rule.times),
            "start_time": None,
            "end_time": None,
        }
    if isinstance(rule, (Hourly, Interval)):
        return {
            "frequency_type": rule.frequency_type.value,
            "interval_minutes": rule.interval_minutes,
            "scheduled_times": "",
            "start_time": format_time(rule.anchor_time),
            "end_time": format_time(rule.end_time) if rule.end_time else None,
        }
    raise TypeError(f"Unknown recurrence rule: {rule!r}")


def _detect_frequency(interval_minutes: int) -> FrequencyType:
    """Frequency for rows written before frequency_type was stored."""
    if interval_minutes == ONCE_DAILY_MINUTES:
        return FrequencyType.ONCE_DAILY
    if interval_minutes % 60 == 0:
        return FrequencyType.HOURLY
    return FrequencyType.INTERVAL


def _parse_times(text: str | None) -> list:
    times = []
    for part in (text or "").split(","):
        try:
            times.append(parse_time(part))
        except ValueError:
            continue
    return times or [parse_time(_DEFAULT_TIME)]


class HabitDB:
    """SQLite-backed storage for habits and completion logs."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from habitchain.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        """Create the habits and habit_logs tables, and migrate schema."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS habits (
                    id               INTEGER PRIMARY KEY AUTOINCREMENT,
                    name             TEXT    NOT NULL,
                    description      TEXT    NOT NULL DEFAULT '',
                    color            TEXT    NOT NULL DEFAULT '#2196F3',
                    active           INTEGER NOT NULL DEFAULT 1,
                    created_at       TEXT    NOT NULL,
                    interval_minutes INTEGER NOT NULL DEFAULT 1440,
                    scheduled_times  TEXT    NOT NULL DEFAULT '09:00'
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS habit_logs (
                    id        INTEGER PRIMARY KEY AUTOINCREMENT,
                    habit_id  INTEGER NOT NULL,
                    date      TEXT    NOT NULL,
                    completed INTEGER NOT NULL DEFAULT 1,
                    UNIQUE (habit_id, date)
                )
            """)
            # Migrate existing DBs: add new columns if missing
            existing_cols = {
                row[1] for row in conn.execute("PRAGMA table_info(habits)").fetchall()
            }
            if "frequency_type" not in existing_cols:
                conn.execute("ALTER TABLE habits ADD COLUMN frequency_type TEXT")
            if "start_time" not in existing_cols:
                conn.execute("ALTER TABLE habits ADD COLUMN start_time TEXT")
            if "end_time" not in existing_cols:
                conn.execute("ALTER TABLE habits ADD COLUMN end_time TEXT")
        logger.debug("Habit tables initialized at %s", self._db_path)

    @staticmethod
    def _row_to_habit(row: sqlite3.Row) -> Habit:
        interval = row["interval_minutes"]
        if row["frequency_type"]:
            frequency = FrequencyType(row["frequency_type"])
        else:
            frequency = _detect_frequency(interval)

        start = parse_time(row["start_time"]) if row["start_time"] else parse_time(_DEFAULT_TIME)
        end = parse_time(row["end_time"]) if row["end_time"] else None
        rule = build_rule(
            frequency,
            interval_minutes=interval,
            times=_parse_times(row["scheduled_times"]),
            anchor_time=start,
            end_time=end,
        )
        return Habit(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            color=row["color"],
            active=bool(row["active"]),
            created_at=date.fromisoformat(row["created_at"]),
            rule=rule,
        )

    @staticmethod
    def _row_to_log(row: sqlite3.Row) -> HabitLog:
        return HabitLog(
            id=row["id"],
            habit_id=row["habit_id"],
            date=date.fromisoformat(row["date"]),
            completed=bool(row["completed"]),
        )

    # ------------------------------------------------------------------
    # Habits
    # ------------------------------------------------------------------

    def add_habit(
        self,
        name: str,
        rule: RecurrenceRule,
        description: str = "",
        color: str = "#2196F3",
        active: bool = True,
        created_at: date | None = None,
    ) -> Habit:
        """Insert a new habit. created_at defaults to today."""
        if created_at is None:
            created_at = date.today()
        cols = _rule_columns(rule)

        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO habits
                    (name, description, color, active, created_at,
                     frequency_type, interval_minutes, scheduled_times,
                     start_time, end_time)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    name, description, color, int(active), created_at.isoformat(),
                    cols["frequency_type"], cols["interval_minutes"],
                    cols["scheduled_times"], cols["start_time"], cols["end_time"],
                ),
            )
            habit_id = cursor.lastrowid

        habit = Habit(
            id=habit_id,
            name=name,
            description=description,
            color=color,
            active=active,
            created_at=created_at,
            rule=rule,
        )
        logger.info("Habit added: #%d '%s' (%s)", habit_id, name, cols["frequency_type"])
        return habit

    def update_habit(self, habit: Habit) -> bool:
        """Overwrite every field of an existing habit."""
        cols = _rule_columns(habit.rule)
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE habits SET
                    name = ?, description = ?, color = ?, active = ?,
                    frequency_type = ?, interval_minutes = ?,
                    scheduled_times = ?, start_time = ?, end_time = ?
                WHERE id = ?
                """,
                (
                    habit.name, habit.description, habit.color, int(habit.active),
                    cols["frequency_type"], cols["interval_minutes"],
                    cols["scheduled_times"], cols["start_time"], cols["end_time"],
                    habit.id,
                ),
            )
        updated = cursor.rowcount > 0
        if updated:
            logger.info("Habit #%d updated", habit.id)
        return updated

    def get_habit(self, habit_id: int) -> Habit | None:
        """Fetch a single habit by ID."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM habits WHERE id = ?", (habit_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_habit(row)

    def list_habits(self, active_only: bool = False) -> list[Habit]:
        """List habits ordered by ID, optionally only active ones."""
        query = "SELECT * FROM habits"
        if active_only:
            query += " WHERE active = 1"
        query += " ORDER BY id"

        with self._connect() as conn:
            rows = conn.execute(query).fetchall()

        return [self._row_to_habit(r) for r in rows]

    def exists_by_name(self, name: str) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM habits WHERE name = ?", (name,)
            ).fetchone()
        return row is not None

    def delete_habit(self, habit_id: int) -> bool:
        """Permanently delete a habit and its logs."""
        with self._connect() as conn:
            conn.execute("DELETE FROM habit_logs WHERE habit_id = ?", (habit_id,))
            cursor = conn.execute("DELETE FROM habits WHERE id = ?", (habit_id,))
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Habit #%d deleted", habit_id)
        return deleted

    # ------------------------------------------------------------------
    # Logs
    # ------------------------------------------------------------------

    def get_log(self, habit_id: int, on_date: date) -> HabitLog | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM habit_logs WHERE habit_id = ? AND date = ?",
                (habit_id, on_date.isoformat()),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_log(row)

    def put_log(self, log: HabitLog) -> HabitLog:
        """Insert or replace the log for (habit_id, date)."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO habit_logs (habit_id, date, completed)
                VALUES (?, ?, ?)
                ON CONFLICT (habit_id, date) DO UPDATE SET completed = excluded.completed
                """,
                (log.habit_id, log.date.isoformat(), int(log.completed)),
            )
            row = conn.execute(
                "SELECT * FROM habit_logs WHERE habit_id = ? AND date = ?",
                (log.habit_id, log.date.isoformat()),
            ).fetchone()
        stored = self._row_to_log(row)
        logger.info(
            "Habit #%d logged %s for %s",
            log.habit_id, "done" if log.completed else "not done", log.date.isoformat(),
        )
        return stored


class PreferenceDB:
    """SQLite-backed key/value store for boolean app preferences."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from habitchain.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS preferences (
                    key   TEXT PRIMARY KEY,
                    value INTEGER NOT NULL
                )
            """)
        logger.debug("Preferences table initialized at %s", self._db_path)

    def get_bool(self, key: str, default: bool = False) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT value FROM preferences WHERE key = ?", (key,)
            ).fetchone()
        if row is None:
            return default
        return bool(row["value"])

    def set_bool(self, key: str, value: bool) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO preferences (key, value) VALUES (?, ?)
                ON CONFLICT (key) DO UPDATE SET value = excluded.value
                """,
                (key, int(value)),
            )
        logger.debug("Preference %s = %s", key, value)
