"""Tests for the Google Calendar tools."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from aide.errors import CalendarError, CalendarNotAuthorized
from aide.google_calendar import GoogleCalendarClient
from aide.tools.base import ToolContext
from aide.tools.calendar_tool import (
    CheckCalendarAuthTool,
    CreateCalendarEventTool,
    GetFreeBusyTool,
    ListCalendarEventsTool,
    SearchCalendarEventsTool,
)

CONTEXT = ToolContext(owner_id="alice", thread_id="alice")
AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth?state=abc"


def _calendar() -> MagicMock:
    calendar = MagicMock(spec=GoogleCalendarClient)
    calendar.auth_url.return_value = AUTH_URL
    calendar.is_authorized.return_value = True
    return calendar


@pytest.mark.asyncio
async def test_check_auth_connected():
    assert await CheckCalendarAuthTool(_calendar()).run(CONTEXT) == "Google Calendar is connected."


@pytest.mark.asyncio
async def test_check_auth_returns_link_when_not_connected():
    calendar = _calendar()
    calendar.is_authorized.return_value = False

    result = await CheckCalendarAuthTool(calendar).run(CONTEXT)

    assert result.endswith(AUTH_URL)
    calendar.auth_url.assert_called_once_with("alice")


@pytest.mark.asyncio
async def test_list_events_formats_numbered_lines():
    calendar = _calendar()
    calendar.list_events = AsyncMock(
        return_value=[
            {"summary": "Dentist", "start": {"dateTime": "2025-03-14T15:00:00+01:00"}},
            {"summary": "Offsite", "start": {"date": "2025-03-20"}, "location": "Lisbon"},
        ]
    )

    result = await ListCalendarEventsTool(calendar).run(CONTEXT, max_results=500)

    assert result == (
        "Upcoming events:\n"
        "1. Dentist - 2025-03-14T15:00:00+01:00\n"
        "2. Offsite - 2025-03-20 @ Lisbon"
    )
    assert calendar.list_events.call_args.kwargs["max_results"] == 50


@pytest.mark.asyncio
async def test_list_events_empty():
    calendar = _calendar()
    calendar.list_events = AsyncMock(return_value=[])

    assert await ListCalendarEventsTool(calendar).run(CONTEXT) == "No upcoming events found."


@pytest.mark.asyncio
async def test_not_authorized_becomes_link_for_the_user():
    calendar = _calendar()
    calendar.list_events = AsyncMock(side_effect=CalendarNotAuthorized("Google Calendar is not connected"))

    result = await ListCalendarEventsTool(calendar).run(CONTEXT)

    assert result.startswith("Not authorized (Google Calendar is not connected).")
    assert AUTH_URL in result


@pytest.mark.asyncio
async def test_calendar_error_becomes_error_text():
    calendar = _calendar()
    calendar.search_events = AsyncMock(side_effect=CalendarError("Google Calendar returned 500: backend"))

    result = await SearchCalendarEventsTool(calendar).run(CONTEXT, query="dentist")

    assert result == "Error: Google Calendar returned 500: backend"


@pytest.mark.asyncio
async def test_search_events():
    calendar = _calendar()
    calendar.search_events = AsyncMock(return_value=[{"summary": "Dentist", "start": {"date": "2025-03-14"}}])

    result = await SearchCalendarEventsTool(calendar).run(CONTEXT, query=" dentist ")

    assert result == 'Events matching "dentist":\n1. Dentist - 2025-03-14'
    calendar.search_events.assert_awaited_once_with("alice", "dentist")


@pytest.mark.asyncio
async def test_create_event_includes_link():
    calendar = _calendar()
    calendar.create_event = AsyncMock(
        return_value={
            "summary": "Lunch",
            "start": {"dateTime": "2025-03-14T12:00:00+01:00"},
            "htmlLink": "https://calendar.google.com/event?eid=1",
        }
    )

    result = await CreateCalendarEventTool(calendar).run(
        CONTEXT, summary="Lunch", start_time="2025-03-14T12:00:00", end_time="2025-03-14T13:00:00"
    )

    assert result == (
        "Event created: Lunch - 2025-03-14T12:00:00+01:00 (https://calendar.google.com/event?eid=1)"
    )


@pytest.mark.asyncio
async def test_free_busy():
    calendar = _calendar()
    calendar.free_busy = AsyncMock(return_value=[{"start": "09:00", "end": "10:00"}])
    tool = GetFreeBusyTool(calendar)

    assert await tool.run(CONTEXT, time_min="a", time_max="b") == "Busy time slots:\n1. 09:00 - 10:00"

    calendar.free_busy = AsyncMock(return_value=[])
    assert await tool.run(CONTEXT, time_min="a", time_max="b") == "No busy time slots between a and b."
