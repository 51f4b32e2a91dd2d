"""Schedule management tools, scoped to the calling owner."""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from aide.db import Database
from aide.models import ScheduleCreate, ScheduleUpdate
from aide.recurrence import describe_schedule
from aide.tools.base import Tool, ToolContext

_SCHEDULE_FIELDS: dict[str, Any] = {
    "frequency": {"type": "string", "enum": ["once", "daily", "weekly", "monthly"]},
    "time_of_day": {"type": "string", "description": "24h HH:MM in the user's timezone."},
    "content": {
        "type": "string",
        "description": "Reminder text (static) or the prompt to answer at delivery time (generated).",
    },
    "kind": {"type": "string", "enum": ["static", "generated"]},
    "day_of_week": {"type": "integer", "description": "Weekly only: 0=Sunday..6=Saturday."},
    "day_of_month": {"type": "integer", "description": "Monthly only: 1-31."},
    "scheduled_date": {"type": "string", "description": "Once only: YYYY-MM-DD."},
}


def _validation_message(exc: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in error['loc']) or 'schedule'}: {error['msg']}"
        for error in exc.errors()
    )


class ListSchedulesTool(Tool):
    name = "list_schedules"
    description = "List the user's active scheduled messages and reminders with their ids."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {},
        "additionalProperties": False,
    }

    def __init__(self, db: Database) -> None:
        self._db = db

    async def run(self, context: ToolContext, **kwargs: Any) -> str:
        entries = self._db.list_schedules(context.owner_id)
        if not entries:
            return "No active schedules."
        return "\n".join(describe_schedule(entry) for entry in entries)


class CreateScheduleTool(Tool):
    """Persist a new recurring or one-time message."""

    name = "create_schedule"
    description = (
        "Schedule a reminder or recurring message. Weekly needs day_of_week, "
        "monthly needs day_of_month, once needs scheduled_date."
    )
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": _SCHEDULE_FIELDS,
        "required": ["frequency", "time_of_day", "content"],
        "additionalProperties": False,
    }

    def __init__(self, db: Database) -> None:
        self._db = db

    async def run(self, context: ToolContext, **kwargs: Any) -> str:
        try:
            data = ScheduleCreate.model_validate(kwargs)
        except ValidationError as exc:
            return f"Error: invalid schedule: {_validation_message(exc)}"
        entry = self._db.create_schedule(context.owner_id, data)
        return f"Created schedule {describe_schedule(entry)}"


class UpdateScheduleTool(Tool):
    """Change only the fields given; the rest of the entry is kept."""

    name = "update_schedule"
    description = "Change an existing schedule by id. Only the fields given are changed."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {"schedule_id": {"type": "integer"}, **_SCHEDULE_FIELDS},
        "required": ["schedule_id"],
        "additionalProperties": False,
    }

    def __init__(self, db: Database) -> None:
        self._db = db

    async def run(self, context: ToolContext, **kwargs: Any) -> str:
        schedule_id = int(kwargs.pop("schedule_id"))
        try:
            update = ScheduleUpdate.model_validate(kwargs)
        except ValidationError as exc:
            return f"Error: invalid update: {_validation_message(exc)}"
        if not update.changes():
            return "Error: nothing to update."
        try:
            updated = self._db.update_schedule(schedule_id, context.owner_id, update)
        except ValidationError as exc:
            return f"Error: the updated schedule would be invalid: {_validation_message(exc)}"
        if not updated:
            return f"Schedule {schedule_id} not found."
        entry = self._db.get_schedule(schedule_id, context.owner_id)
        return f"Updated schedule {describe_schedule(entry)}" if entry else f"Schedule {schedule_id} updated."


class DeleteScheduleTool(Tool):
    name = "delete_schedule"
    description = "Delete (deactivate) one of the user's schedules by id."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {"schedule_id": {"type": "integer"}},
        "required": ["schedule_id"],
        "additionalProperties": False,
    }

    def __init__(self, db: Database) -> None:
        self._db = db

    async def run(self, context: ToolContext, **kwargs: Any) -> str:
        schedule_id = int(kwargs["schedule_id"])
        if self._db.delete_schedule(schedule_id, context.owner_id):
            return f"Schedule {schedule_id} deleted."
        return f"Schedule {schedule_id} not found."
