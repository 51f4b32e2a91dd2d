"""Tests for the /command dispatch system."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from aide.commands import WELCOME_TEXT, CommandDispatcher, parse_command
from aide.db import Database
from aide.models import ChatMessage, InboundMessage, Role, ScheduleCreate


def _msg(text: str, owner_id: str = "user-1") -> InboundMessage:
    return InboundMessage(
        thread_id=owner_id,
        owner_id=owner_id,
        chat_id=owner_id,
        text=text,
        timestamp=datetime.now(timezone.utc),
    )


@pytest.fixture
def db(tmp_path):  # noqa: ANN001, ANN201
    database = Database(tmp_path / "aide.db")
    database.initialize()
    return database


# ===========================================================================
# parse_command
# ===========================================================================


class TestParseCommand:
    def test_regular_text_returns_none(self):
        assert parse_command("hello world") is None

    def test_empty_string_returns_none(self):
        assert parse_command("") is None

    def test_slash_alone_returns_none(self):
        assert parse_command("/") is None
        assert parse_command("/   ") is None

    def test_command_with_no_args(self):
        assert parse_command("/schedules") == ("schedules", [])

    def test_command_with_args(self):
        assert parse_command("/delete 12") == ("delete", ["12"])

    def test_command_is_lowercased(self):
        assert parse_command("/RESET") == ("reset", [])

    def test_bot_mention_suffix_is_stripped(self):
        assert parse_command("/start@aide_bot") == ("start", [])


# ===========================================================================
# CommandDispatcher
# ===========================================================================


class TestCommandDispatcher:
    @pytest.mark.asyncio
    async def test_start_and_help_return_welcome(self, db):
        dispatcher = CommandDispatcher(db)

        assert await dispatcher.dispatch(_msg("/start")) == WELCOME_TEXT
        assert await dispatcher.dispatch(_msg("/help")) == WELCOME_TEXT

    @pytest.mark.asyncio
    async def test_unknown_command_returns_none(self, db):
        assert await CommandDispatcher(db).dispatch(_msg("/weather")) is None

    @pytest.mark.asyncio
    async def test_plain_text_returns_none(self, db):
        assert await CommandDispatcher(db).dispatch(_msg("hello")) is None

    @pytest.mark.asyncio
    async def test_schedules_empty(self, db):
        reply = await CommandDispatcher(db).dispatch(_msg("/schedules"))

        assert reply == "📅 You have no scheduled tasks."

    @pytest.mark.asyncio
    async def test_schedules_lists_only_own_entries_escaped(self, db):
        entry = db.create_schedule(
            "user-1",
            ScheduleCreate(frequency="weekly", day_of_week=0, time_of_day="20:00", content="Submit <homework>"),
        )
        db.create_schedule("user-2", ScheduleCreate(frequency="daily", time_of_day="08:00", content="Not mine"))

        reply = await CommandDispatcher(db).dispatch(_msg("/schedules"))

        assert "Every Sunday at 20:00" in reply
        assert "Submit &lt;homework&gt;" in reply
        assert f"ID: {entry.id}" in reply
        assert "Not mine" not in reply

    @pytest.mark.asyncio
    async def test_delete_own_schedule(self, db):
        entry = db.create_schedule("user-1", ScheduleCreate(frequency="daily", time_of_day="08:00", content="x"))

        reply = await CommandDispatcher(db).dispatch(_msg(f"/delete {entry.id}"))

        assert reply == "✅ Schedule deleted!"
        assert db.list_schedules("user-1") == []

    @pytest.mark.asyncio
    async def test_delete_other_owners_schedule_is_refused(self, db):
        entry = db.create_schedule("user-2", ScheduleCreate(frequency="daily", time_of_day="08:00", content="x"))

        reply = await CommandDispatcher(db).dispatch(_msg(f"/delete {entry.id}"))

        assert reply.startswith("❌")
        assert len(db.list_schedules("user-2")) == 1

    @pytest.mark.asyncio
    async def test_delete_without_valid_id_shows_usage(self, db):
        dispatcher = CommandDispatcher(db)

        assert (await dispatcher.dispatch(_msg("/delete"))).startswith("Usage: /delete")
        assert (await dispatcher.dispatch(_msg("/delete abc"))).startswith("Usage: /delete")

    @pytest.mark.asyncio
    async def test_reset_moves_context_start(self, db):
        db.ensure_thread("user-1", "user-1")
        db.append_messages("user-1", [ChatMessage(role=Role.USER, content="remember me")])

        reply = await CommandDispatcher(db).dispatch(_msg("/reset"))

        assert reply == "🔄 Conversation history cleared!"
        assert db.get_context_messages("user-1") == []
        assert len(db.get_messages("user-1")) == 1

    @pytest.mark.asyncio
    async def test_proactive_toggle(self, db):
        dispatcher = CommandDispatcher(db)

        assert (await dispatcher.dispatch(_msg("/proactive on"))).startswith("🔔")
        assert db.list_proactive_owners() == ["user-1"]
        assert (await dispatcher.dispatch(_msg("/proactive OFF"))).startswith("🔕")
        assert db.list_proactive_owners() == []
        assert await dispatcher.dispatch(_msg("/proactive maybe")) == "Usage: /proactive on|off"
