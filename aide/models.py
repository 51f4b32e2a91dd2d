"""Core domain models used across layers."""

from __future__ import annotations

import base64
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Plain text, or OpenAI-style content blocks for multimodal input.
Content = Union[str, list[dict[str, Any]]]


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class Frequency(str, Enum):
    ONCE = "once"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class ScheduleKind(str, Enum):
    """``generated`` content is a prompt for the model, ``static`` is sent verbatim."""

    GENERATED = "generated"
    STATIC = "static"


@dataclass(slots=True)
class ToolCall:
    """Tool invocation requested by the model."""

    id: str
    name: str
    # Raw text when the model sent arguments that are not a JSON object.
    arguments: dict[str, Any] | str = field(default_factory=dict)


@dataclass(slots=True)
class ChatMessage:
    """One entry of a thread's append-only message log."""

    role: Role
    content: Content = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: str | None = None
    id: int | None = None

    @property
    def text(self) -> str:
        """Textual part of the content, joining text blocks."""

        if isinstance(self.content, str):
            return self.content
        return "\n".join(
            str(block.get("text", "")) for block in self.content if block.get("type") == "text"
        ).strip()


@dataclass(slots=True)
class LLMResponse:
    """Result from an LLM generation request."""

    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    raw: dict[str, Any] | None = None


@dataclass(slots=True)
class InboundMessage:
    """Message normalized by adapters for runtime usage."""

    thread_id: str
    owner_id: str
    chat_id: str
    text: str
    timestamp: datetime
    message_id: str | None = None
    image: bytes | None = None
    image_mime_type: str = "image/jpeg"

    def content(self) -> Content:
        """Text for plain messages, text + image blocks when a photo is attached."""

        if self.image is None:
            return self.text
        encoded = base64.b64encode(self.image).decode("ascii")
        return [
            {"type": "text", "text": self.text or "What is in this image?"},
            {
                "type": "image_url",
                "image_url": {"url": f"data:{self.image_mime_type};base64,{encoded}"},
            },
        ]


@dataclass(slots=True)
class ConversationState:
    """Everything persisted for one thread."""

    thread_id: str
    owner_id: str
    messages: list[ChatMessage] = field(default_factory=list)
    summary: str = ""


@dataclass(slots=True)
class ScheduleEntry:
    """Represents a persisted schedule row."""

    id: int
    owner_id: str
    kind: ScheduleKind
    frequency: Frequency
    time_of_day: str
    content: str
    active: bool
    created_at: datetime
    day_of_week: int | None = None
    day_of_month: int | None = None
    scheduled_date: date | None = None
    active_from: datetime | None = None
    last_fired_at: datetime | None = None


_TIME_OF_DAY_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def _normalize_time_of_day(value: Any) -> Any:
    # "9:05" -> "09:05"; anything else is left for the pattern check
    if isinstance(value, str):
        value = value.strip()
        hours, sep, minutes = value.partition(":")
        if sep and hours.isdigit() and len(hours) == 1:
            value = f"0{hours}:{minutes}"
    return value


class ScheduleCreate(BaseModel):
    """Validated input for a new schedule entry.

    Only the field selected by ``frequency`` is kept: ``day_of_week`` for
    weekly, ``day_of_month`` for monthly, ``scheduled_date`` for once.
    """

    model_config = ConfigDict(extra="forbid")

    frequency: Frequency
    time_of_day: str
    content: str = Field(min_length=1)
    kind: ScheduleKind = ScheduleKind.STATIC
    day_of_week: int | None = Field(default=None, ge=0, le=6)
    day_of_month: int | None = Field(default=None, ge=1, le=31)
    scheduled_date: date | None = None

    @field_validator("time_of_day", mode="before")
    @classmethod
    def _pad_time(cls, value: Any) -> Any:
        return _normalize_time_of_day(value)

    @field_validator("time_of_day")
    @classmethod
    def _check_time(cls, value: str) -> str:
        if not _TIME_OF_DAY_RE.match(value):
            raise ValueError("time_of_day must be HH:MM (24h)")
        return value

    @model_validator(mode="after")
    def _select_day_field(self) -> ScheduleCreate:
        if self.frequency is Frequency.WEEKLY and self.day_of_week is None:
            raise ValueError("weekly schedules need day_of_week (0=Sunday..6=Saturday)")
        if self.frequency is Frequency.MONTHLY and self.day_of_month is None:
            raise ValueError("monthly schedules need day_of_month (1-31)")
        if self.frequency is Frequency.ONCE and self.scheduled_date is None:
            raise ValueError("one-time schedules need scheduled_date (YYYY-MM-DD)")
        if self.frequency is not Frequency.WEEKLY:
            self.day_of_week = None
        if self.frequency is not Frequency.MONTHLY:
            self.day_of_month = None
        if self.frequency is not Frequency.ONCE:
            self.scheduled_date = None
        return self


class ScheduleUpdate(BaseModel):
    """Partial update; only fields explicitly provided are applied."""

    model_config = ConfigDict(extra="forbid")

    frequency: Frequency | None = None
    time_of_day: str | None = None
    content: str | None = Field(default=None, min_length=1)
    kind: ScheduleKind | None = None
    day_of_week: int | None = Field(default=None, ge=0, le=6)
    day_of_month: int | None = Field(default=None, ge=1, le=31)
    scheduled_date: date | None = None

    @field_validator("time_of_day", mode="before")
    @classmethod
    def _pad_time(cls, value: Any) -> Any:
        return _normalize_time_of_day(value)

    @field_validator("time_of_day")
    @classmethod
    def _check_time(cls, value: str | None) -> str | None:
        if value is not None and not _TIME_OF_DAY_RE.match(value):
            raise ValueError("time_of_day must be HH:MM (24h)")
        return value

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)
