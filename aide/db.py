"""SQLite persistence layer."""

from __future__ import annotations

import json
import sqlite3
import time
from contextlib import contextmanager
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Iterator
from zoneinfo import ZoneInfo

from aide.models import (
    ChatMessage,
    ConversationState,
    Frequency,
    Role,
    ScheduleCreate,
    ScheduleEntry,
    ScheduleKind,
    ScheduleUpdate,
    ToolCall,
)
from aide.recurrence import to_local_minute

SCHEMA_VERSION = 1

_BUSY_TIMEOUT_SECONDS = 30.0
_SCHEDULE_COLUMNS = (
    "frequency",
    "time_of_day",
    "content",
    "kind",
    "day_of_week",
    "day_of_month",
    "scheduled_date",
)
_TIMING_COLUMNS = frozenset({"frequency", "time_of_day", "day_of_week", "day_of_month", "scheduled_date"})
_TODO_STATUSES = ("open", "done", "all")


class Database:
    """Small SQLite wrapper with explicit schema management."""

    def __init__(self, path: Path, timezone_name: str = "UTC") -> None:
        self._path = path
        self._tz = ZoneInfo(timezone_name)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._path, timeout=_BUSY_TIMEOUT_SECONDS)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Write transaction holding the database write lock from the first read."""

        conn = sqlite3.connect(self._path, timeout=_BUSY_TIMEOUT_SECONDS, isolation_level=None)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create or migrate schema."""

        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("CREATE TABLE IF NOT EXISTS schema_version (version INTEGER NOT NULL)")
            row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
            if row is None:
                self._create_schema(conn)
                conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
            elif row["version"] != SCHEMA_VERSION:
                raise RuntimeError(
                    f"Unsupported schema version {row['version']} (expected {SCHEMA_VERSION})"
                )

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS threads (
                thread_id TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL,
                summary TEXT NOT NULL DEFAULT '',
                summarized_through INTEGER NOT NULL DEFAULT 0,
                context_start INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                thread_id TEXT NOT NULL,
                role TEXT NOT NULL,
                content_json TEXT NOT NULL,
                tool_calls_json TEXT,
                tool_call_id TEXT,
                created_at TEXT NOT NULL,
                FOREIGN KEY(thread_id) REFERENCES threads(thread_id)
            );
            CREATE INDEX IF NOT EXISTS idx_messages_thread ON messages(thread_id, id);

            CREATE TABLE IF NOT EXISTS tool_executions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                owner_id TEXT NOT NULL,
                thread_id TEXT NOT NULL,
                tool_name TEXT NOT NULL,
                input_json TEXT NOT NULL,
                output_json TEXT NOT NULL,
                succeeded INTEGER NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS schedules (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                owner_id TEXT NOT NULL,
                kind TEXT NOT NULL,
                frequency TEXT NOT NULL,
                day_of_week INTEGER,
                day_of_month INTEGER,
                scheduled_date TEXT,
                time_of_day TEXT NOT NULL,
                content TEXT NOT NULL,
                active INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL,
                active_from TEXT,
                last_fired_at TEXT
            );
            CREATE INDEX IF NOT EXISTS idx_schedules_owner ON schedules(owner_id, active);

            CREATE TABLE IF NOT EXISTS todos (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                owner_id TEXT NOT NULL,
                title TEXT NOT NULL,
                notes TEXT,
                due_date TEXT,
                done INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                completed_at TEXT
            );

            CREATE TABLE IF NOT EXISTS google_tokens (
                owner_id TEXT PRIMARY KEY,
                access_token TEXT NOT NULL,
                refresh_token TEXT,
                expires_at INTEGER,
                scope TEXT,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS oauth_states (
                state TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL,
                created_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS owner_settings (
                owner_id TEXT PRIMARY KEY,
                proactive INTEGER NOT NULL DEFAULT 0,
                updated_at TEXT NOT NULL
            );
            """
        )

    # Conversations

    def ensure_thread(self, thread_id: str, owner_id: str) -> None:
        now = _utc_now_iso()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO threads(thread_id, owner_id, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(thread_id) DO NOTHING
                """,
                (thread_id, owner_id, now, now),
            )

    def append_messages(self, thread_id: str, messages: list[ChatMessage]) -> None:
        """Append messages in order within one transaction; assigns ``id`` on each."""

        now = _utc_now_iso()
        with self._transaction() as conn:
            for message in messages:
                tool_calls_json = (
                    json.dumps(
                        [{"id": c.id, "name": c.name, "arguments": c.arguments} for c in message.tool_calls]
                    )
                    if message.tool_calls
                    else None
                )
                cur = conn.execute(
                    """
                    INSERT INTO messages(thread_id, role, content_json, tool_calls_json, tool_call_id, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        thread_id,
                        Role(message.role).value,
                        json.dumps(message.content),
                        tool_calls_json,
                        message.tool_call_id,
                        now,
                    ),
                )
                message.id = int(cur.lastrowid)
            conn.execute("UPDATE threads SET updated_at = ? WHERE thread_id = ?", (now, thread_id))

    def get_messages(self, thread_id: str, after_id: int = 0) -> list[ChatMessage]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT id, role, content_json, tool_calls_json, tool_call_id
                FROM messages
                WHERE thread_id = ? AND id > ?
                ORDER BY id ASC
                """,
                (thread_id, after_id),
            ).fetchall()
        return [_row_to_message(row) for row in rows]

    def get_context_messages(self, thread_id: str) -> list[ChatMessage]:
        """Messages after the reset and summary watermarks, in append order."""

        thread = self.get_thread(thread_id)
        if thread is None:
            return []
        return self.get_messages(
            thread_id, after_id=max(thread["context_start"], thread["summarized_through"])
        )

    def get_thread(self, thread_id: str) -> dict[str, Any] | None:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT thread_id, owner_id, summary, summarized_through, context_start
                FROM threads WHERE thread_id = ?
                """,
                (thread_id,),
            ).fetchone()
        return dict(row) if row else None

    def get_conversation(self, thread_id: str) -> ConversationState | None:
        thread = self.get_thread(thread_id)
        if thread is None:
            return None
        return ConversationState(
            thread_id=thread_id,
            owner_id=thread["owner_id"],
            messages=self.get_messages(thread_id),
            summary=thread["summary"],
        )

    def save_summary(self, thread_id: str, summary: str, summarized_through: int) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE threads SET summary = ?, summarized_through = ?, updated_at = ? WHERE thread_id = ?",
                (summary, summarized_through, _utc_now_iso(), thread_id),
            )

    def reset_context(self, thread_id: str) -> None:
        """Start future prompts after the current last message; nothing is deleted."""

        with self._transaction() as conn:
            row = conn.execute(
                "SELECT COALESCE(MAX(id), 0) AS last_id FROM messages WHERE thread_id = ?",
                (thread_id,),
            ).fetchone()
            conn.execute(
                """
                UPDATE threads
                SET context_start = ?, summarized_through = ?, summary = '', updated_at = ?
                WHERE thread_id = ?
                """,
                (row["last_id"], row["last_id"], _utc_now_iso(), thread_id),
            )

    def log_tool_execution(
        self,
        owner_id: str,
        thread_id: str,
        tool_name: str,
        tool_input: dict[str, Any],
        tool_output: Any,
        succeeded: bool,
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO tool_executions(owner_id, thread_id, tool_name, input_json, output_json, succeeded, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    owner_id,
                    thread_id,
                    tool_name,
                    json.dumps(tool_input, default=str),
                    json.dumps(tool_output, default=str),
                    int(succeeded),
                    _utc_now_iso(),
                ),
            )

    # Schedules

    def _local_minute_iso(self, now: datetime | None) -> str:
        local = to_local_minute(now or datetime.now(timezone.utc), self._tz)
        return local.isoformat(timespec="minutes")

    def create_schedule(
        self, owner_id: str, data: ScheduleCreate, now: datetime | None = None
    ) -> ScheduleEntry:
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO schedules(owner_id, kind, frequency, day_of_week, day_of_month,
                                      scheduled_date, time_of_day, content, active, created_at,
                                      active_from)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, 1, ?, ?)
                """,
                (
                    owner_id,
                    data.kind.value,
                    data.frequency.value,
                    data.day_of_week,
                    data.day_of_month,
                    data.scheduled_date.isoformat() if data.scheduled_date else None,
                    data.time_of_day,
                    data.content,
                    _utc_now_iso(),
                    self._local_minute_iso(now),
                ),
            )
            row = conn.execute("SELECT * FROM schedules WHERE id = ?", (cur.lastrowid,)).fetchone()
        return _row_to_schedule(row)

    def list_schedules(self, owner_id: str) -> list[ScheduleEntry]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM schedules WHERE owner_id = ? AND active = 1 ORDER BY id ASC",
                (owner_id,),
            ).fetchall()
        return [_row_to_schedule(row) for row in rows]

    def get_schedule(self, schedule_id: int, owner_id: str) -> ScheduleEntry | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM schedules WHERE id = ? AND owner_id = ? AND active = 1",
                (schedule_id, owner_id),
            ).fetchone()
        return _row_to_schedule(row) if row else None

    def update_schedule(
        self, schedule_id: int, owner_id: str, update: ScheduleUpdate, now: datetime | None = None
    ) -> bool:
        """Merge the explicitly-set fields into an active entry owned by ``owner_id``.

        Returns False when nothing was given or the entry is missing, inactive,
        or owned by someone else. Raises ValueError when the merged entry is
        inconsistent (e.g. switching to weekly without a day).

        Changing any timing field restarts the entry from the current local
        minute, so an occurrence that already passed today is not delivered.
        """
        changes = update.changes()
        if not changes:
            return False
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM schedules WHERE id = ? AND owner_id = ? AND active = 1",
                (schedule_id, owner_id),
            ).fetchone()
            if row is None:
                return False
            current = {column: row[column] for column in _SCHEDULE_COLUMNS}
            merged = ScheduleCreate.model_validate({**current, **changes})
            active_from = row["active_from"]
            if _TIMING_COLUMNS.intersection(changes):
                active_from = self._local_minute_iso(now)
            conn.execute(
                """
                UPDATE schedules
                SET frequency = ?, time_of_day = ?, content = ?, kind = ?,
                    day_of_week = ?, day_of_month = ?, scheduled_date = ?, active_from = ?
                WHERE id = ?
                """,
                (
                    merged.frequency.value,
                    merged.time_of_day,
                    merged.content,
                    merged.kind.value,
                    merged.day_of_week,
                    merged.day_of_month,
                    merged.scheduled_date.isoformat() if merged.scheduled_date else None,
                    active_from,
                    schedule_id,
                ),
            )
        return True

    def delete_schedule(self, schedule_id: int, owner_id: str) -> bool:
        """Soft delete; a second call for the same id returns False."""

        with self._connect() as conn:
            cur = conn.execute(
                "UPDATE schedules SET active = 0 WHERE id = ? AND owner_id = ? AND active = 1",
                (schedule_id, owner_id),
            )
            return cur.rowcount > 0

    def list_active_schedules(self) -> list[ScheduleEntry]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM schedules WHERE active = 1 ORDER BY id ASC").fetchall()
        return [_row_to_schedule(row) for row in rows]

    def mark_schedule_fired(self, schedule_id: int, slot: datetime) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE schedules SET last_fired_at = ? WHERE id = ?",
                (slot.replace(tzinfo=None).isoformat(timespec="minutes"), schedule_id),
            )

    def retire_one_time_schedule(self, entry: ScheduleEntry) -> bool:
        """Deactivate ``entry`` if it is still the one-time occurrence that was delivered.

        The timing is compared in the same statement, so an entry edited into
        a recurring one (or moved to another date) while it was being
        delivered stays active.
        """

        with self._connect() as conn:
            cur = conn.execute(
                """
                UPDATE schedules SET active = 0
                WHERE id = ? AND active = 1 AND frequency = ? AND scheduled_date = ? AND time_of_day = ?
                """,
                (
                    entry.id,
                    Frequency.ONCE.value,
                    entry.scheduled_date.isoformat() if entry.scheduled_date else None,
                    entry.time_of_day,
                ),
            )
            return cur.rowcount > 0

    # To-dos

    def create_todo(
        self, owner_id: str, title: str, notes: str | None = None, due_date: str | None = None
    ) -> int:
        with self._connect() as conn:
            cur = conn.execute(
                "INSERT INTO todos(owner_id, title, notes, due_date, created_at) VALUES (?, ?, ?, ?, ?)",
                (owner_id, title, notes, due_date, _utc_now_iso()),
            )
            return int(cur.lastrowid)

    def list_todos(self, owner_id: str, status: str = "open", limit: int = 50) -> list[dict[str, Any]]:
        if status not in _TODO_STATUSES:
            raise ValueError(f"status must be one of {', '.join(_TODO_STATUSES)}")
        query = "SELECT id, title, notes, due_date, done, created_at, completed_at FROM todos WHERE owner_id = ?"
        if status == "open":
            query += " AND done = 0"
        elif status == "done":
            query += " AND done = 1"
        query += " ORDER BY id ASC LIMIT ?"
        with self._connect() as conn:
            rows = conn.execute(query, (owner_id, limit)).fetchall()
        return [{**dict(row), "done": bool(row["done"])} for row in rows]

    def update_todo(self, todo_id: int, owner_id: str, fields: dict[str, Any]) -> bool:
        allowed = {k: v for k, v in fields.items() if k in ("title", "notes", "due_date")}
        if not allowed:
            return False
        assignments = ", ".join(f"{column} = ?" for column in allowed)
        with self._connect() as conn:
            cur = conn.execute(
                f"UPDATE todos SET {assignments} WHERE id = ? AND owner_id = ?",
                (*allowed.values(), todo_id, owner_id),
            )
            return cur.rowcount > 0

    def complete_todo(self, todo_id: int, owner_id: str) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                "UPDATE todos SET done = 1, completed_at = ? WHERE id = ? AND owner_id = ? AND done = 0",
                (_utc_now_iso(), todo_id, owner_id),
            )
            return cur.rowcount > 0

    # Google OAuth

    def save_google_tokens(
        self,
        owner_id: str,
        access_token: str,
        refresh_token: str | None,
        expires_at: int | None,
        scope: str | None = None,
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO google_tokens(owner_id, access_token, refresh_token, expires_at, scope, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(owner_id) DO UPDATE SET
                    access_token = excluded.access_token,
                    refresh_token = COALESCE(excluded.refresh_token, google_tokens.refresh_token),
                    expires_at = excluded.expires_at,
                    scope = COALESCE(excluded.scope, google_tokens.scope),
                    updated_at = excluded.updated_at
                """,
                (owner_id, access_token, refresh_token, expires_at, scope, _utc_now_iso()),
            )

    def get_google_tokens(self, owner_id: str) -> dict[str, Any] | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT access_token, refresh_token, expires_at, scope FROM google_tokens WHERE owner_id = ?",
                (owner_id,),
            ).fetchone()
        return dict(row) if row else None

    def create_oauth_state(self, state: str, owner_id: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO oauth_states(state, owner_id, created_at) VALUES (?, ?, ?)",
                (state, owner_id, int(time.time())),
            )

    def consume_oauth_state(self, state: str, max_age_seconds: int) -> str | None:
        """Return the owner for a pending state and forget it; None if unknown or expired."""

        with self._transaction() as conn:
            row = conn.execute(
                "SELECT owner_id, created_at FROM oauth_states WHERE state = ?", (state,)
            ).fetchone()
            if row is None:
                return None
            conn.execute("DELETE FROM oauth_states WHERE state = ?", (state,))
        if int(time.time()) - row["created_at"] > max_age_seconds:
            return None
        return row["owner_id"]

    # Owner settings

    def set_proactive(self, owner_id: str, enabled: bool) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO owner_settings(owner_id, proactive, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(owner_id) DO UPDATE SET
                    proactive = excluded.proactive,
                    updated_at = excluded.updated_at
                """,
                (owner_id, int(enabled), _utc_now_iso()),
            )

    def list_proactive_owners(self) -> list[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT owner_id FROM owner_settings WHERE proactive = 1 ORDER BY owner_id"
            ).fetchall()
        return [row["owner_id"] for row in rows]


def _row_to_message(row: sqlite3.Row) -> ChatMessage:
    tool_calls = [
        ToolCall(id=call["id"], name=call["name"], arguments=call.get("arguments") or {})
        for call in json.loads(row["tool_calls_json"] or "[]")
    ]
    return ChatMessage(
        role=Role(row["role"]),
        content=json.loads(row["content_json"]),
        tool_calls=tool_calls,
        tool_call_id=row["tool_call_id"],
        id=row["id"],
    )


def _row_to_schedule(row: sqlite3.Row) -> ScheduleEntry:
    return ScheduleEntry(
        id=row["id"],
        owner_id=row["owner_id"],
        kind=ScheduleKind(row["kind"]),
        frequency=Frequency(row["frequency"]),
        time_of_day=row["time_of_day"],
        content=row["content"],
        active=bool(row["active"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        day_of_week=row["day_of_week"],
        day_of_month=row["day_of_month"],
        scheduled_date=date.fromisoformat(row["scheduled_date"]) if row["scheduled_date"] else None,
        active_from=datetime.fromisoformat(row["active_from"]) if row["active_from"] else None,
        last_fired_at=datetime.fromisoformat(row["last_fired_at"]) if row["last_fired_at"] else None,
    )


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
