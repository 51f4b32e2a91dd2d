"""Google Calendar tools."""

from __future__ import annotations

import logging
from typing import Any

from aide.errors import CalendarError, CalendarNotAuthorized
from aide.google_calendar import GoogleCalendarClient, format_event
from aide.tools.base import Tool, ToolContext

LOGGER = logging.getLogger(__name__)


class _CalendarTool(Tool):
    """Turns calendar failures into text the model can relay to the user."""

    def __init__(self, calendar: GoogleCalendarClient) -> None:
        self._calendar = calendar

    async def run(self, context: ToolContext, **kwargs: Any) -> str:
        try:
            return await self._run(context, **kwargs)
        except CalendarNotAuthorized as exc:
            url = self._calendar.auth_url(context.owner_id)
            return f"Not authorized ({exc}). Ask the user to connect Google Calendar here: {url}"
        except CalendarError as exc:
            LOGGER.warning("%s failed for %s: %s", self.name, context.owner_id, exc)
            return f"Error: {exc}"

    async def _run(self, context: ToolContext, **kwargs: Any) -> str:
        raise NotImplementedError


class CheckCalendarAuthTool(_CalendarTool):
    name = "check_calendar_auth"
    description = (
        "Check whether the user has connected Google Calendar. "
        "Returns an authorization link when they have not."
    )
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {},
        "additionalProperties": False,
    }

    async def _run(self, context: ToolContext, **kwargs: Any) -> str:
        if self._calendar.is_authorized(context.owner_id):
            return "Google Calendar is connected."
        url = self._calendar.auth_url(context.owner_id)
        return f"Google Calendar is not connected. Ask the user to open this link to authorize: {url}"


class ListCalendarEventsTool(_CalendarTool):
    name = "list_calendar_events"
    description = "List upcoming events from the user's primary Google Calendar."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "max_results": {"type": "integer", "description": "Default 10, max 50."},
            "time_min": {"type": "string", "description": "RFC 3339 lower bound, default now."},
            "time_max": {"type": "string", "description": "RFC 3339 upper bound."},
        },
        "additionalProperties": False,
    }

    async def _run(self, context: ToolContext, **kwargs: Any) -> str:
        max_results = max(1, min(int(kwargs.get("max_results") or 10), 50))
        events = await self._calendar.list_events(
            context.owner_id,
            max_results=max_results,
            time_min=kwargs.get("time_min"),
            time_max=kwargs.get("time_max"),
        )
        if not events:
            return "No upcoming events found."
        lines = [f"{i}. {format_event(event)}" for i, event in enumerate(events, start=1)]
        return "Upcoming events:\n" + "\n".join(lines)


class CreateCalendarEventTool(_CalendarTool):
    name = "create_calendar_event"
    description = "Create an event in the user's primary Google Calendar."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "summary": {"type": "string", "description": "Event title."},
            "start_time": {"type": "string", "description": "ISO 8601 start, e.g. 2025-03-14T15:00:00."},
            "end_time": {"type": "string", "description": "ISO 8601 end."},
            "description": {"type": "string"},
            "location": {"type": "string"},
        },
        "required": ["summary", "start_time", "end_time"],
        "additionalProperties": False,
    }

    async def _run(self, context: ToolContext, **kwargs: Any) -> str:
        event = await self._calendar.create_event(
            context.owner_id,
            summary=kwargs["summary"],
            start_time=kwargs["start_time"],
            end_time=kwargs["end_time"],
            description=kwargs.get("description"),
            location=kwargs.get("location"),
        )
        link = event.get("htmlLink")
        return f"Event created: {format_event(event)}" + (f" ({link})" if link else "")


class SearchCalendarEventsTool(_CalendarTool):
    name = "search_calendar_events"
    description = "Search upcoming events in the user's primary Google Calendar by text."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {"query": {"type": "string"}},
        "required": ["query"],
        "additionalProperties": False,
    }

    async def _run(self, context: ToolContext, **kwargs: Any) -> str:
        query = str(kwargs["query"]).strip()
        events = await self._calendar.search_events(context.owner_id, query)
        if not events:
            return f'No events found matching "{query}".'
        lines = [f"{i}. {format_event(event)}" for i, event in enumerate(events, start=1)]
        return f'Events matching "{query}":\n' + "\n".join(lines)


class GetFreeBusyTool(_CalendarTool):
    name = "get_free_busy"
    description = "List busy time slots in the user's primary calendar between two times."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "time_min": {"type": "string", "description": "RFC 3339 start of the range."},
            "time_max": {"type": "string", "description": "RFC 3339 end of the range."},
        },
        "required": ["time_min", "time_max"],
        "additionalProperties": False,
    }

    async def _run(self, context: ToolContext, **kwargs: Any) -> str:
        busy = await self._calendar.free_busy(context.owner_id, kwargs["time_min"], kwargs["time_max"])
        if not busy:
            return f"No busy time slots between {kwargs['time_min']} and {kwargs['time_max']}."
        lines = [f"{i}. {slot.get('start')} - {slot.get('end')}" for i, slot in enumerate(busy, start=1)]
        return "Busy time slots:\n" + "\n".join(lines)
