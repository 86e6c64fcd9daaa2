"""Shared test fixtures."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from chime.scheduler.store import ScheduleStore

# Far enough in the future that a started scheduler never fires during tests.
FUTURE = datetime(2031, 1, 6, 7, 0, tzinfo=UTC)


class FakeClock:
    """Mutable clock: call it for the current time, ``advance`` to move it."""

    def __init__(self, start: datetime = FUTURE) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def store(tmp_path: Path) -> ScheduleStore:
    """ScheduleStore backed by a temp database."""
    return ScheduleStore(db_path=tmp_path / "test.db")


@pytest.fixture
def dispatcher() -> MagicMock:
    """Stand-in NotificationDispatcher."""
    mock = MagicMock()
    mock.dispatch = AsyncMock(return_value=None)
    mock.release = MagicMock()
    return mock


@pytest.fixture(autouse=True)
def _reset_store_singleton():
    ScheduleStore._reset()
    yield
    ScheduleStore._reset()
