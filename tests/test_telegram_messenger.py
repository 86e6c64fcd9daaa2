"""Tests for TelegramMessenger — Bot API calls and error mapping."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from telegram.error import BadRequest, ChatMigrated, Forbidden, NetworkError, TimedOut

from chime.errors import ChannelUnavailable, Expired, PermissionDenied
from chime.notifications.messenger import MessageRef, Messenger
from chime.notifications.telegram_messenger import TelegramMessenger

REF = MessageRef(channel="-100123", message_id="55")


@pytest.fixture
def bot() -> MagicMock:
    mock = MagicMock()
    mock.send_message = AsyncMock(return_value=MagicMock(message_id=55))
    mock.edit_message_text = AsyncMock()
    mock.delete_message = AsyncMock()
    return mock


@pytest.fixture
def messenger(bot) -> TelegramMessenger:
    return TelegramMessenger(bot)


def test_satisfies_protocol(messenger) -> None:
    assert isinstance(messenger, Messenger)
    assert messenger.name == "telegram"


# -- send / edit / delete ------------------------------------------------------


async def test_send_message(messenger, bot) -> None:
    ref = await messenger.send_message("-100123", "hello")

    assert ref == REF
    bot.send_message.assert_awaited_once_with(chat_id=-100123, text="hello")


async def test_edit_message(messenger, bot) -> None:
    await messenger.edit_message(REF, "updated")

    bot.edit_message_text.assert_awaited_once_with(chat_id=-100123, message_id=55, text="updated")


async def test_edit_not_modified_is_ignored(messenger, bot) -> None:
    bot.edit_message_text.side_effect = BadRequest(
        "Message is not modified: specified new message content is the same"
    )

    await messenger.edit_message(REF, "same")


async def test_delete_message(messenger, bot) -> None:
    await messenger.delete_message(REF)

    bot.delete_message.assert_awaited_once_with(chat_id=-100123, message_id=55)


# -- error mapping -------------------------------------------------------------


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (Forbidden("Forbidden: bot was kicked from the group chat"), PermissionDenied),
        (BadRequest("Chat not found"), ChannelUnavailable),
        (ChatMigrated(-100999), ChannelUnavailable),
        (NetworkError("connection reset"), ChannelUnavailable),
        (TimedOut(), ChannelUnavailable),
    ],
)
async def test_send_errors(messenger, bot, error, expected) -> None:
    bot.send_message.side_effect = error

    with pytest.raises(expected) as exc_info:
        await messenger.send_message("-100123", "hello")

    assert exc_info.value.__cause__ is error


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (BadRequest("Message to edit not found"), Expired),
        (BadRequest("Message can't be edited"), PermissionDenied),
        (BadRequest("Not enough rights to send text messages to the chat"), PermissionDenied),
        (Forbidden("bot is not a member of the channel chat"), PermissionDenied),
    ],
)
async def test_edit_errors(messenger, bot, error, expected) -> None:
    bot.edit_message_text.side_effect = error

    with pytest.raises(expected):
        await messenger.edit_message(REF, "updated")


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (BadRequest("Message to delete not found"), Expired),
        (BadRequest("Message can't be deleted"), PermissionDenied),
    ],
)
async def test_delete_errors(messenger, bot, error, expected) -> None:
    bot.delete_message.side_effect = error

    with pytest.raises(expected):
        await messenger.delete_message(REF)
