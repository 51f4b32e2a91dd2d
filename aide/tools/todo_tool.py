"""To-do list tools, scoped to the calling owner."""

from __future__ import annotations

from datetime import date
from typing import Any

from aide.db import Database
from aide.tools.base import Tool, ToolContext


def _check_due_date(value: str | None) -> str | None:
    if value is None:
        return None
    try:
        return date.fromisoformat(value).isoformat()
    except ValueError:
        raise ValueError("due_date must be YYYY-MM-DD") from None


class GetTasksTool(Tool):
    """List the owner's to-do items."""

    name = "get_tasks"
    description = "List the user's to-do items. Defaults to open items."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "status": {"type": "string", "enum": ["open", "done", "all"]},
            "limit": {"type": "integer"},
        },
        "additionalProperties": False,
    }

    def __init__(self, db: Database) -> None:
        self._db = db

    async def run(self, context: ToolContext, **kwargs: Any) -> list[dict[str, Any]] | str:
        status = kwargs.get("status") or "open"
        limit = max(1, min(int(kwargs.get("limit") or 50), 200))
        todos = self._db.list_todos(context.owner_id, status=status, limit=limit)
        if not todos:
            return f"No {status} tasks." if status != "all" else "No tasks."
        return todos


class CreateTaskTool(Tool):
    """Add a to-do item."""

    name = "create_task"
    description = "Add an item to the user's to-do list."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "title": {"type": "string"},
            "notes": {"type": "string"},
            "due_date": {"type": "string", "description": "YYYY-MM-DD"},
        },
        "required": ["title"],
        "additionalProperties": False,
    }

    def __init__(self, db: Database) -> None:
        self._db = db

    async def run(self, context: ToolContext, **kwargs: Any) -> dict[str, Any] | str:
        title = str(kwargs["title"]).strip()
        if not title:
            return "Error: title must not be empty."
        try:
            due_date = _check_due_date(kwargs.get("due_date"))
        except ValueError as exc:
            return f"Error: {exc}"
        task_id = self._db.create_todo(context.owner_id, title, kwargs.get("notes"), due_date)
        return {"task_id": task_id, "title": title, "due_date": due_date}


class UpdateTaskTool(Tool):
    """Edit the title, notes or due date of a to-do item."""

    name = "update_task"
    description = "Change the title, notes or due date of one of the user's tasks."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "task_id": {"type": "integer"},
            "title": {"type": "string"},
            "notes": {"type": "string"},
            "due_date": {"type": "string", "description": "YYYY-MM-DD"},
        },
        "required": ["task_id"],
        "additionalProperties": False,
    }

    def __init__(self, db: Database) -> None:
        self._db = db

    async def run(self, context: ToolContext, **kwargs: Any) -> str:
        task_id = int(kwargs.pop("task_id"))
        if not kwargs:
            return "Error: nothing to update."
        if "due_date" in kwargs:
            try:
                kwargs["due_date"] = _check_due_date(kwargs["due_date"])
            except ValueError as exc:
                return f"Error: {exc}"
        if self._db.update_todo(task_id, context.owner_id, kwargs):
            return f"Task {task_id} updated."
        return f"Task {task_id} not found."


class CompleteTaskTool(Tool):
    """Mark a to-do item as done."""

    name = "complete_task"
    description = "Mark one of the user's tasks as done."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {"task_id": {"type": "integer"}},
        "required": ["task_id"],
        "additionalProperties": False,
    }

    def __init__(self, db: Database) -> None:
        self._db = db

    async def run(self, context: ToolContext, **kwargs: Any) -> str:
        task_id = int(kwargs["task_id"])
        if self._db.complete_todo(task_id, context.owner_id):
            return f"Task {task_id} completed."
        return f"Task {task_id} not found or already done."
