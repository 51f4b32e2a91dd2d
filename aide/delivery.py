"""Outbound delivery interface."""

from __future__ import annotations

from abc import ABC, abstractmethod


class DeliveryAdapter(ABC):
    """Sends text to a user-addressable chat."""

    @abstractmethod
    async def send_message(self, chat_id: str, text: str) -> None:
        """Deliver ``text``, splitting it as the transport requires.

        Raises:
            DeliveryFailure: the transport did not accept the message.
        """

    async def send_chat_action(self, chat_id: str, action: str = "typing") -> None:
        """Best-effort presence hint; transports without one ignore it."""
