"""Registry for safe tool registration and execution."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Literal

from pydantic import ConfigDict, ValidationError, create_model

from aide.db import Database
from aide.errors import InvalidToolArguments, ToolExecutionError, UnknownTool
from aide.tools.base import Tool, ToolContext

LOGGER = logging.getLogger(__name__)


class ToolRegistry:
    """Explicit registry of safe tools."""

    def __init__(self, db: Database, timeout_seconds: float | None = None) -> None:
        self._db = db
        self._timeout_seconds = timeout_seconds
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def names(self) -> list[str]:
        return list(self._tools)

    def list_tool_specs(self) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters_schema,
                },
            }
            for tool in self._tools.values()
        ]

    async def execute(
        self, context: ToolContext, tool_name: str, arguments: dict[str, Any] | str
    ) -> str:
        """Validate, run and audit one tool call; returns the result as text.

        Raises:
            UnknownTool, InvalidToolArguments, ToolExecutionError
        """
        tool = self._tools.get(tool_name)
        if tool is None:
            raise UnknownTool(f"Unknown tool: {tool_name}")

        try:
            validated = _validate_json_schema(tool.parameters_schema, _load_arguments(arguments))
        except InvalidToolArguments as exc:
            logged = arguments if isinstance(arguments, dict) else {"raw": arguments}
            self._log(context, tool_name, logged, {"error": str(exc)}, succeeded=False)
            raise

        try:
            result = await asyncio.wait_for(tool.run(context, **validated), timeout=self._timeout_seconds)
        except asyncio.TimeoutError as exc:
            message = f"{tool_name} timed out after {self._timeout_seconds:g}s"
            self._log(context, tool_name, validated, {"error": message}, succeeded=False)
            raise ToolExecutionError(message) from exc
        except Exception as exc:  # noqa: BLE001
            self._log(context, tool_name, validated, {"error": str(exc)}, succeeded=False)
            raise ToolExecutionError(f"{tool_name} failed: {exc}") from exc

        self._log(context, tool_name, validated, result, succeeded=True)
        return result if isinstance(result, str) else json.dumps(result, default=str)

    def _log(
        self,
        context: ToolContext,
        tool_name: str,
        tool_input: dict[str, Any],
        tool_output: Any,
        succeeded: bool,
    ) -> None:
        LOGGER.info("Tool %s for owner %s succeeded=%s", tool_name, context.owner_id, succeeded)
        self._db.log_tool_execution(
            context.owner_id, context.thread_id, tool_name, tool_input, tool_output, succeeded
        )


def _load_arguments(arguments: dict[str, Any] | str) -> dict[str, Any]:
    if isinstance(arguments, dict):
        return arguments
    try:
        parsed = json.loads(arguments)
    except json.JSONDecodeError as exc:
        raise InvalidToolArguments(f"arguments are not valid JSON: {exc.msg} in {arguments[:200]!r}") from exc
    if not isinstance(parsed, dict):
        raise InvalidToolArguments(f"arguments must be a JSON object, got {type(parsed).__name__}")
    return parsed


def _validate_json_schema(schema: dict[str, Any], payload: dict[str, Any]) -> dict[str, Any]:
    props = schema.get("properties", {})
    required = set(schema.get("required", []))
    fields: dict[str, tuple[Any, Any]] = {}
    for name, config in props.items():
        typ = _python_type(config)
        if name in required:
            fields[name] = (typ, ...)
        else:
            fields[name] = (typ | None, None)

    extra = "forbid" if schema.get("additionalProperties") is False else "ignore"
    model = create_model("ToolInputModel", __config__=ConfigDict(extra=extra), **fields)
    try:
        value = model(**payload)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'input'}: {error['msg']}"
            for error in exc.errors()
        )
        raise InvalidToolArguments(f"Invalid input for tool: {problems}") from exc
    return value.model_dump(exclude_none=True)


def _python_type(config: dict[str, Any]) -> Any:
    if "enum" in config:
        return Literal[tuple(config["enum"])]
    mapping: dict[str, type[Any]] = {
        "string": str,
        "integer": int,
        "number": float,
        "boolean": bool,
        "object": dict,
        "array": list,
    }
    return mapping.get(config.get("type", "string"), str)
