"""Telegram Bot API adapter built on aiogram."""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.exceptions import TelegramAPIError, TelegramBadRequest
from aiogram.types import Message as TelegramMessage

from aide.delivery import DeliveryAdapter
from aide.errors import DeliveryFailure
from aide.formatting import TELEGRAM_MAX_MESSAGE_LENGTH, chunk_message, strip_html, to_telegram_html
from aide.models import InboundMessage

LOGGER = logging.getLogger(__name__)


class TelegramAdapter(DeliveryAdapter):
    """Long-polls updates through aiogram and sends replies as Telegram HTML."""

    def __init__(
        self,
        token: str,
        poll_timeout_seconds: int = 30,
        allowed_user_ids: frozenset[str] = frozenset(),
    ) -> None:
        self._bot = Bot(token=token, default=DefaultBotProperties(parse_mode=ParseMode.HTML))
        self._dp = Dispatcher()
        self._dp.message.register(self._on_message)
        self._poll_timeout_seconds = poll_timeout_seconds
        self._allowed_user_ids = allowed_user_ids
        self._inbox: asyncio.Queue[InboundMessage] = asyncio.Queue()

    async def poll_messages(self) -> AsyncIterator[InboundMessage]:
        """Run aiogram polling and yield normalized messages from allowed users.

        Polling stops when the iterator is closed. If polling itself dies (for
        example on an invalid token) its exception is raised here.
        """
        polling = asyncio.create_task(
            self._dp.start_polling(
                self._bot,
                polling_timeout=self._poll_timeout_seconds,
                allowed_updates=["message"],
                handle_signals=False,
                close_bot_session=False,
            ),
            name="telegram-polling",
        )
        try:
            while True:
                getter = asyncio.ensure_future(self._inbox.get())
                await asyncio.wait({getter, polling}, return_when=asyncio.FIRST_COMPLETED)
                if not getter.done():
                    getter.cancel()
                    polling.result()
                    return
                yield getter.result()
        finally:
            polling.cancel()
            await asyncio.gather(polling, return_exceptions=True)

    async def _on_message(self, message: TelegramMessage) -> None:
        owner_id = _owner_id(message)
        if self._allowed_user_ids and owner_id not in self._allowed_user_ids:
            LOGGER.warning("Dropping message from unauthorized user %s", owner_id)
            return
        try:
            inbound = await self._to_inbound(message)
        except (TelegramAPIError, ValueError) as exc:
            LOGGER.warning("Skipping unreadable Telegram message %s: %s", message.message_id, exc)
            return
        if inbound is not None:
            self._inbox.put_nowait(inbound)

    async def send_message(self, chat_id: str, text: str) -> None:
        """Send ``text`` as HTML chunks, falling back to plain text per chunk."""

        try:
            for chunk in chunk_message(to_telegram_html(text), TELEGRAM_MAX_MESSAGE_LENGTH):
                await self._send_chunk(chat_id, chunk)
        except TelegramAPIError as exc:
            raise DeliveryFailure(f"Telegram sendMessage failed: {exc}") from exc

    async def _send_chunk(self, chat_id: str, chunk: str) -> None:
        try:
            await self._bot.send_message(chat_id=chat_id, text=chunk)
        except TelegramBadRequest as exc:
            if "can't parse" not in str(exc).lower():
                raise
            LOGGER.warning("Telegram rejected HTML (%s), resending as plain text", exc)
            await self._bot.send_message(chat_id=chat_id, text=strip_html(chunk), parse_mode=None)

    async def send_chat_action(self, chat_id: str, action: str = "typing") -> None:
        try:
            await self._bot.send_chat_action(chat_id=chat_id, action=action)
        except TelegramAPIError as exc:
            LOGGER.debug("sendChatAction failed for %s: %s", chat_id, exc)

    async def close(self) -> None:
        await self._bot.session.close()

    async def _to_inbound(self, message: TelegramMessage) -> InboundMessage | None:
        text = (message.text or message.caption or "").strip()
        if not text and not message.photo:
            return None

        image = None
        if message.photo:
            # Telegram lists sizes smallest first.
            file = await self._bot.get_file(message.photo[-1].file_id)
            if not file.file_path:
                raise ValueError("photo has no downloadable file path")
            image = (await self._bot.download_file(file.file_path)).read()

        chat_id = str(message.chat.id)
        return InboundMessage(
            thread_id=chat_id,
            owner_id=_owner_id(message),
            chat_id=chat_id,
            text=text,
            timestamp=message.date,
            message_id=str(message.message_id),
            image=image,
        )


def _owner_id(message: TelegramMessage) -> str:
    sender = message.from_user
    return str(sender.id if sender is not None else message.chat.id)
