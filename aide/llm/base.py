"""LLM provider interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from aide.models import ChatMessage, LLMResponse


class LLMProvider(ABC):
    """Abstract model provider used by the agent runtime."""

    @abstractmethod
    async def generate(
        self,
        messages: list[ChatMessage],
        tools: list[dict[str, Any]] | None = None,
    ) -> LLMResponse:
        """Generate a model response.

        Raises:
            ModelUnavailable: the backend could not be reached.
        """
