"""Domain exceptions."""

from __future__ import annotations


class AideError(Exception):
    """Base class for errors that end a turn with the fallback reply."""


class ModelUnavailable(AideError):
    """The language-model backend could not be reached or timed out."""


class ToolLoopExceeded(AideError):
    """The model kept requesting tools past the configured round-trip cap."""

    def __init__(self, max_rounds: int) -> None:
        super().__init__(f"Tool loop exceeded {max_rounds} rounds")
        self.max_rounds = max_rounds


class ToolError(AideError):
    """A tool call failed; recovered into a tool-result message."""


class UnknownTool(ToolError):
    """The model asked for a capability that is not registered."""


class InvalidToolArguments(ToolError):
    """Tool arguments did not validate against the capability schema."""


class ToolExecutionError(ToolError):
    """The tool handler raised or timed out."""


class DeliveryFailure(AideError):
    """The transport refused or failed to deliver a message."""


class CalendarNotAuthorized(AideError):
    """No stored Google tokens for the owner."""


class CalendarError(AideError):
    """Google Calendar or OAuth endpoint returned an error."""
