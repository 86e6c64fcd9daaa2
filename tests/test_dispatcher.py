"""Tests for NotificationDispatcher and reminder rendering."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from chime.errors import ChannelUnavailable, DispatchError, PermissionDenied, StorageError
from chime.notifications.dispatcher import NotificationDispatcher, render_reminder
from chime.notifications.messenger import MessageRef
from chime.scheduler.models import Task, TaskKey, Weekly


def _make_task(name: str = "workout") -> Task:
    return Task(
        owner_id="42",
        name=name,
        schedule=Weekly(weekday=3),
        hour=9,
        minute=0,
        timezone="Europe/Paris",
    )


@pytest.fixture
def messenger() -> MagicMock:
    mock = MagicMock()
    mock.name = "mock"
    mock.send_message = AsyncMock(return_value=MessageRef(channel="100", message_id="7"))
    mock.edit_message = AsyncMock()
    mock.delete_message = AsyncMock()
    return mock


@pytest.fixture
def ticker() -> MagicMock:
    return MagicMock()


@pytest.fixture
async def dispatcher(store, messenger, ticker) -> NotificationDispatcher:
    await store.set_user_channel("42", "100")
    return NotificationDispatcher(store, messenger, ticker)


# -- render_reminder -----------------------------------------------------------


def test_render_reminder_with_countdown() -> None:
    text = render_reminder(_make_task(), "6d 23h")

    assert text.splitlines() == [
        '🔔 Time for "workout"!',
        "📅 Every Wed at 09:00 (Europe/Paris)",
        "⏰ Next reminder in: 6d 23h",
    ]


def test_render_reminder_without_countdown() -> None:
    assert len(render_reminder(_make_task(), None).splitlines()) == 2


# -- dispatch ------------------------------------------------------------------


async def test_dispatch_sends_and_starts_countdown(dispatcher, messenger, ticker) -> None:
    following = datetime.now(UTC) + timedelta(days=7, minutes=30)

    ref = await dispatcher.dispatch(_make_task(), following)

    assert ref == MessageRef(channel="100", message_id="7")
    channel, content = messenger.send_message.await_args.args
    assert channel == "100"
    assert content.startswith('🔔 Time for "workout"!')
    assert "Next reminder in: 7d " in content

    ticker.start.assert_called_once()
    key, target, render, on_due = ticker.start.call_args.args
    assert key == "100/7"
    assert target == following

    await render("1h")
    messenger.edit_message.assert_awaited_once()
    assert messenger.edit_message.await_args.args[0] == ref
    assert "Next reminder in: 1h" in messenger.edit_message.await_args.args[1]

    await on_due()
    messenger.delete_message.assert_awaited_once_with(ref)


async def test_dispatch_without_next_occurrence(dispatcher, ticker) -> None:
    ref = await dispatcher.dispatch(_make_task(), None)

    assert ref is not None
    ticker.start.assert_not_called()


async def test_countdown_uses_injected_clock(store, messenger, ticker, clock) -> None:
    await store.set_user_channel("42", "100")
    dispatcher = NotificationDispatcher(store, messenger, ticker, clock=clock)

    await dispatcher.dispatch(_make_task(), clock.now + timedelta(days=7))

    content = messenger.send_message.await_args.args[1]
    assert content.splitlines()[-1] == "⏰ Next reminder in: 7d"


async def test_dispatch_without_channel(store, messenger, ticker) -> None:
    dispatcher = NotificationDispatcher(store, messenger, ticker)

    assert await dispatcher.dispatch(_make_task(), None) is None
    messenger.send_message.assert_not_awaited()


@pytest.mark.parametrize("error", [PermissionDenied("kicked"), ChannelUnavailable("no chat")])
async def test_delivery_failure_becomes_dispatch_error(dispatcher, messenger, ticker, error) -> None:
    messenger.send_message.side_effect = error

    with pytest.raises(DispatchError) as exc_info:
        await dispatcher.dispatch(_make_task(), datetime.now(UTC) + timedelta(days=1))

    assert exc_info.value.__cause__ is error
    ticker.start.assert_not_called()


async def test_store_failure_becomes_dispatch_error(store, messenger, ticker, monkeypatch) -> None:
    monkeypatch.setattr(store, "get_user_channel", AsyncMock(side_effect=StorageError("locked")))
    dispatcher = NotificationDispatcher(store, messenger, ticker)

    with pytest.raises(DispatchError):
        await dispatcher.dispatch(_make_task(), None)


# -- countdown bookkeeping -----------------------------------------------------


async def test_new_fire_stops_previous_countdown(dispatcher, messenger, ticker) -> None:
    following = datetime.now(UTC) + timedelta(days=7)
    await dispatcher.dispatch(_make_task(), following)
    messenger.send_message.return_value = MessageRef(channel="100", message_id="8")

    await dispatcher.dispatch(_make_task(), following)

    ticker.stop.assert_called_once_with("100/7")
    assert ticker.start.call_args.args[0] == "100/8"


async def test_other_tasks_keep_their_countdown(dispatcher, messenger, ticker) -> None:
    following = datetime.now(UTC) + timedelta(days=7)
    await dispatcher.dispatch(_make_task("a"), following)
    messenger.send_message.return_value = MessageRef(channel="100", message_id="8")

    await dispatcher.dispatch(_make_task("b"), following)

    ticker.stop.assert_not_called()


async def test_release(dispatcher, ticker) -> None:
    await dispatcher.dispatch(_make_task(), datetime.now(UTC) + timedelta(days=7))

    dispatcher.release(TaskKey("42", "workout"))
    dispatcher.release(TaskKey("42", "workout"))

    ticker.stop.assert_called_once_with("100/7")
