"""NotificationDispatcher — delivers a fired reminder and starts its countdown."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from chime.errors import DeliveryError, DispatchError, StorageError
from chime.notifications.countdown import format_countdown

if TYPE_CHECKING:
    from collections.abc import Callable

    from chime.notifications.countdown import CountdownTicker
    from chime.notifications.messenger import MessageRef, Messenger
    from chime.scheduler.models import Task, TaskKey
    from chime.scheduler.store import ScheduleStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def render_reminder(task: Task, countdown: str | None) -> str:
    """Build the reminder text for ``task``."""
    lines = [
        f'🔔 Time for "{task.name}"!',
        f"📅 {task.describe()} ({task.timezone})",
    ]
    if countdown:
        lines.append(f"⏰ Next reminder in: {countdown}")
    return "\n".join(lines)


class NotificationDispatcher:
    """Sends reminders through a Messenger and keeps their countdowns alive.

    Only the most recent reminder of a task carries a live countdown: a new
    fire for the same task stops the previous one.

    Args:
        store: ScheduleStore used to look up the user's reminder channel.
        messenger: Chat platform adapter.
        ticker: CountdownTicker owning the refresh tasks.
        clock: Returns the current aware datetime (injectable for tests).
    """

    def __init__(
        self,
        store: ScheduleStore,
        messenger: Messenger,
        ticker: CountdownTicker,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._messenger = messenger
        self._ticker = ticker
        self._clock = clock or _utcnow
        self._latest: dict[TaskKey, str] = {}

    async def dispatch(self, task: Task, next_occurrence: datetime | None) -> MessageRef | None:
        """Send the reminder for ``task``.

        Returns the sent message, or None when the user has no reminder
        channel configured.

        Raises:
            DispatchError: the channel lookup or the send failed.
        """
        try:
            channel = await self._store.get_user_channel(task.owner_id)
        except StorageError as exc:
            msg = f"Could not look up reminder channel for user {task.owner_id}"
            raise DispatchError(msg) from exc
        if not channel:
            logger.warning("No reminder channel for user %s, skipping '%s'", task.owner_id, task.name)
            return None

        countdown = None
        if next_occurrence is not None:
            countdown = format_countdown(next_occurrence, self._clock())
        try:
            ref = await self._messenger.send_message(channel, render_reminder(task, countdown))
        except DeliveryError as exc:
            msg = f"{type(exc).__name__} sending '{task.name}' to {channel}: {exc}"
            raise DispatchError(msg) from exc
        logger.info("Sent reminder '%s' to %s (%s)", task.name, channel, ref.key)

        self.release(task.key)
        if next_occurrence is not None:
            self._start_countdown(task, ref, next_occurrence)
        return ref

    def release(self, key: TaskKey) -> None:
        """Stop the live countdown of a task, if any."""
        message_key = self._latest.pop(key, None)
        if message_key is not None:
            self._ticker.stop(message_key)

    def _start_countdown(self, task: Task, ref: MessageRef, target: datetime) -> None:
        messenger = self._messenger

        async def render(countdown: str) -> None:
            await messenger.edit_message(ref, render_reminder(task, countdown))

        async def on_due() -> None:
            await messenger.delete_message(ref)

        self._ticker.start(ref.key, target, render, on_due)
        self._latest[task.key] = ref.key
