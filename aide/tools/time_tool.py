"""Time utility tool."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from zoneinfo import ZoneInfo

from aide.tools.base import Tool, ToolContext


class GetCurrentTimeTool(Tool):
    """Returns the current time in the assistant's timezone."""

    name = "get_current_time"
    description = "Get the current local date, time and weekday."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {},
        "additionalProperties": False,
    }

    def __init__(self, timezone_name: str = "UTC") -> None:
        self._tz = ZoneInfo(timezone_name)
        self._timezone_name = timezone_name

    async def run(self, context: ToolContext, **kwargs: Any) -> dict[str, str]:
        now = datetime.now(timezone.utc)
        local = now.astimezone(self._tz)
        return {
            "local_time": local.isoformat(timespec="seconds"),
            "weekday": local.strftime("%A"),
            "timezone": self._timezone_name,
            "utc_time": now.isoformat(timespec="seconds"),
        }
