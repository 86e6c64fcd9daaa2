"""CountdownTicker — keeps "next reminder in ..." messages up to date.

Each ticker is an asyncio task owned by the CountdownTicker instance and keyed
by the message it edits. Starting a ticker for a key that already has one
replaces it; a ticker ends on its own once the target instant passes or the
message can no longer be edited.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from chime.config import settings

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

DUE_TEXT = "Reminder due now!"


def format_countdown(target: datetime, now: datetime) -> str:
    """Render the time left until ``target`` as e.g. ``"2d 3h 15m 4s"``.

    Zero-valued units are left out.
    """
    remaining = int((target - now).total_seconds())
    if remaining <= 0:
        return DUE_TEXT

    days, rest = divmod(remaining, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, seconds = divmod(rest, 60)
    parts = [
        f"{value}{unit}"
        for value, unit in ((days, "d"), (hours, "h"), (minutes, "m"), (seconds, "s"))
        if value > 0
    ]
    return " ".join(parts)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class CountdownTicker:
    """Owns the periodic refresh tasks of countdown displays.

    Args:
        interval_seconds: Seconds between refreshes (default from settings).
        clock: Returns the current aware datetime (injectable for tests).
    """

    def __init__(
        self,
        *,
        interval_seconds: float | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._interval = interval_seconds or settings.countdown_interval_seconds
        self._clock = clock or _utcnow
        self._tasks: dict[str, asyncio.Task] = {}

    def __len__(self) -> int:
        return len(self._tasks)

    def active(self, key: str) -> bool:
        return key in self._tasks

    def start(
        self,
        key: str,
        target: datetime,
        render: Callable[[str], Awaitable[None]],
        on_due: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        """Begin refreshing the display ``key`` until ``target``.

        ``render`` receives the formatted countdown on every tick. ``on_due``
        runs once when the target is reached, right before the ticker stops.
        """
        self.stop(key)
        self._tasks[key] = asyncio.create_task(
            self._run(key, target, render, on_due), name=f"countdown:{key}"
        )
        logger.debug("Countdown %s started (target=%s)", key, target.isoformat())

    def stop(self, key: str) -> bool:
        """Cancel the ticker for ``key``. Returns False if there was none."""
        task = self._tasks.pop(key, None)
        if task is None:
            return False
        task.cancel()
        logger.debug("Countdown %s stopped", key)
        return True

    async def stop_all(self) -> None:
        """Cancel every ticker and wait for them to finish."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _run(
        self,
        key: str,
        target: datetime,
        render: Callable[[str], Awaitable[None]],
        on_due: Callable[[], Awaitable[None]] | None,
    ) -> None:
        try:
            while True:
                await asyncio.sleep(self._interval)
                now = self._clock()
                if now >= target:
                    if on_due is not None:
                        try:
                            await on_due()
                        except Exception:
                            logger.warning("Countdown %s: final action failed", key, exc_info=True)
                    logger.debug("Countdown %s reached its target", key)
                    return
                try:
                    await render(format_countdown(target, now))
                except Exception:
                    logger.info("Countdown %s: display gone, stopping", key, exc_info=True)
                    return
        finally:
            if self._tasks.get(key) is asyncio.current_task():
                del self._tasks[key]
