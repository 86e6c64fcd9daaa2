"""Telegram implementation of the Messenger protocol."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from telegram.error import BadRequest, ChatMigrated, Forbidden, TelegramError

from chime.errors import ChannelUnavailable, DeliveryError, Expired, PermissionDenied
from chime.notifications.messenger import MessageRef

if TYPE_CHECKING:
    import telegram

logger = logging.getLogger(__name__)


def _translate(exc: TelegramError) -> DeliveryError:
    """Map a python-telegram-bot error onto the delivery error taxonomy."""
    text = str(exc)
    lowered = text.lower()
    if isinstance(exc, Forbidden):
        return PermissionDenied(text)
    if isinstance(exc, ChatMigrated):
        return ChannelUnavailable(text)
    if isinstance(exc, BadRequest):
        if "message to edit not found" in lowered or "message to delete not found" in lowered:
            return Expired(text)
        if "message can't be" in lowered or "not enough rights" in lowered:
            return PermissionDenied(text)
    return ChannelUnavailable(text)


class TelegramMessenger:
    """Sends, edits and deletes reminder messages via the Telegram Bot API."""

    def __init__(self, bot: telegram.Bot) -> None:
        self._bot = bot

    @property
    def name(self) -> str:
        return "telegram"

    async def send_message(self, channel: str, content: str) -> MessageRef:
        try:
            message = await self._bot.send_message(chat_id=int(channel), text=content)
        except TelegramError as exc:
            logger.warning("TelegramMessenger.send_message failed for chat %s: %s", channel, exc)
            raise _translate(exc) from exc
        return MessageRef(channel=channel, message_id=str(message.message_id))

    async def edit_message(self, ref: MessageRef, content: str) -> None:
        try:
            await self._bot.edit_message_text(
                chat_id=int(ref.channel),
                message_id=int(ref.message_id),
                text=content,
            )
        except BadRequest as exc:
            if "message is not modified" in str(exc).lower():
                return
            raise _translate(exc) from exc
        except TelegramError as exc:
            raise _translate(exc) from exc

    async def delete_message(self, ref: MessageRef) -> None:
        try:
            await self._bot.delete_message(
                chat_id=int(ref.channel), message_id=int(ref.message_id)
            )
        except TelegramError as exc:
            raise _translate(exc) from exc
