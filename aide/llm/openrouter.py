"""OpenRouter implementation of LLMProvider."""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from typing import Any

import httpx

from aide.config import Settings
from aide.errors import ModelUnavailable
from aide.llm.base import LLMProvider
from aide.models import ChatMessage, LLMResponse, ToolCall

_LOGGER = logging.getLogger(__name__)

_MAX_RETRIES = 3
_RETRY_BACKOFF_SECONDS = [2, 5, 10]
_RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class OpenRouterProvider(LLMProvider):
    """LLM provider using OpenRouter's OpenAI-compatible chat endpoint."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    async def generate(
        self,
        messages: list[ChatMessage],
        tools: list[dict[str, Any]] | None = None,
    ) -> LLMResponse:
        payload: dict[str, Any] = {
            "model": self._settings.openrouter_model,
            "messages": [to_wire_message(m) for m in messages],
        }
        if tools:
            payload["tools"] = tools

        timeout = httpx.Timeout(self._settings.request_timeout_seconds)
        try:
            async with httpx.AsyncClient(base_url=self._settings.openrouter_base_url, timeout=timeout) as client:
                for attempt in range(_MAX_RETRIES + 1):
                    response = await client.post(
                        "/chat/completions",
                        headers={
                            "Authorization": f"Bearer {self._settings.openrouter_api_key}",
                            "Content-Type": "application/json",
                        },
                        json=payload,
                    )
                    if response.status_code in _RETRYABLE_STATUS and attempt < _MAX_RETRIES:
                        wait = _RETRY_BACKOFF_SECONDS[attempt]
                        _LOGGER.warning(
                            "OpenRouter returned %d, retrying in %ds (attempt %d/%d)",
                            response.status_code,
                            wait,
                            attempt + 1,
                            _MAX_RETRIES,
                        )
                        await asyncio.sleep(wait)
                        continue
                    response.raise_for_status()
                    break
                data = response.json()
        except httpx.HTTPStatusError as exc:
            raise ModelUnavailable(f"OpenRouter returned HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise ModelUnavailable(f"OpenRouter request failed: {exc}") from exc
        except ValueError as exc:
            raise ModelUnavailable("OpenRouter returned a non-JSON body") from exc

        try:
            choice = data["choices"][0]["message"]
            finish_reason = data["choices"][0].get("finish_reason")
        except (KeyError, IndexError, TypeError) as exc:
            raise ModelUnavailable(f"Malformed OpenRouter response: {data!r:.200}") from exc

        content = choice.get("content") or ""
        _LOGGER.info(
            "LLM response: finish_reason=%r content=%r tool_calls=%d",
            finish_reason,
            content[:200],
            len(choice.get("tool_calls") or []),
        )

        parsed_tool_calls: list[ToolCall] = []
        for tool_call in choice.get("tool_calls") or []:
            function_data = tool_call.get("function", {})
            parsed_tool_calls.append(
                ToolCall(
                    id=tool_call.get("id") or f"call_{uuid.uuid4().hex[:12]}",
                    name=function_data.get("name", ""),
                    arguments=_decode_arguments(function_data.get("arguments") or "{}"),
                )
            )

        return LLMResponse(content=content, tool_calls=parsed_tool_calls, raw=data)


def to_wire_message(message: ChatMessage) -> dict[str, Any]:
    """Render a stored message in the OpenAI chat-completions shape."""

    wire: dict[str, Any] = {"role": message.role.value, "content": message.content}
    if message.tool_calls:
        wire["tool_calls"] = [
            {
                "id": call.id,
                "type": "function",
                "function": {"name": call.name, "arguments": _encode_arguments(call.arguments)},
            }
            for call in message.tool_calls
        ]
    if message.tool_call_id is not None:
        wire["tool_call_id"] = message.tool_call_id
    return wire


def _decode_arguments(raw: Any) -> dict[str, Any] | str:
    """Decoded arguments, or the raw text when it is not a JSON object.

    The tool registry rejects calls that carry raw text.
    """
    if isinstance(raw, dict):
        return raw
    try:
        parsed = json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        _LOGGER.warning("Model sent malformed tool arguments: %r", str(raw)[:200])
        return str(raw)
    return parsed if isinstance(parsed, dict) else str(raw)


def _encode_arguments(arguments: dict[str, Any] | str) -> str:
    return arguments if isinstance(arguments, str) else json.dumps(arguments)
