"""ScheduleStore — aiosqlite persistence for tasks and user preferences."""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import aiosqlite

from chime.config import settings
from chime.errors import ChimeError, StorageError
from chime.scheduler.models import Task, UserPreferences

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

logger = logging.getLogger(__name__)

_CREATE_TASKS = """
CREATE TABLE IF NOT EXISTS tasks (
    owner_id TEXT NOT NULL,
    name TEXT NOT NULL,
    schedule TEXT NOT NULL,
    hour INTEGER NOT NULL,
    minute INTEGER NOT NULL,
    timezone TEXT NOT NULL,
    next_occurrence TEXT,
    created_at TEXT NOT NULL,
    PRIMARY KEY (owner_id, name)
)
"""

_CREATE_USERS = """
CREATE TABLE IF NOT EXISTS users (
    owner_id TEXT PRIMARY KEY,
    timezone TEXT,
    channel TEXT,
    pending_task TEXT
)
"""

_TASK_COLUMNS = "owner_id, name, schedule, hour, minute, timezone, next_occurrence, created_at"


class ScheduleStore:
    """Persists one task record per (owner, task name) plus per-user settings.

    Singleton accessed via ``ScheduleStore.instance()``.  Pass an explicit *db_path*
    for test isolation (e.g. ``tmp_path / "test.db"``).

    Every driver failure is re-raised as StorageError.
    """

    _instance: ScheduleStore | None = None

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path or settings.database_path
        self._initialised = False

    @classmethod
    def instance(cls) -> ScheduleStore:
        """Return the shared ScheduleStore instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    # -- Internal helpers ------------------------------------------------------

    async def _connect(self) -> aiosqlite.Connection:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        db = await aiosqlite.connect(str(self._db_path))
        if not self._initialised:
            await db.execute(_CREATE_TASKS)
            await db.execute(_CREATE_USERS)
            await db.commit()
            self._initialised = True
        return db

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[aiosqlite.Connection]:
        try:
            db = await self._connect()
        except (aiosqlite.Error, OSError) as exc:
            msg = f"Cannot open schedule database {self._db_path}: {exc}"
            raise StorageError(msg) from exc
        try:
            yield db
        except aiosqlite.Error as exc:
            raise StorageError(str(exc)) from exc
        finally:
            await db.close()

    async def _ensure_user(self, db: aiosqlite.Connection, owner_id: str) -> None:
        await db.execute("INSERT OR IGNORE INTO users (owner_id) VALUES (?)", (owner_id,))

    # -- Tasks -----------------------------------------------------------------

    async def get(self, owner_id: str, task_name: str) -> Task | None:
        """Fetch one task, or None if absent."""
        async with self._session() as db:
            cursor = await db.execute(
                f"SELECT {_TASK_COLUMNS} FROM tasks WHERE owner_id = ? AND name = ?",
                (owner_id, task_name),
            )
            row = await cursor.fetchone()
        return Task.from_row(row) if row else None

    async def list_tasks(self, owner_id: str) -> list[Task]:
        """Return one owner's readable tasks ordered by creation time."""
        async with self._session() as db:
            cursor = await db.execute(
                f"SELECT {_TASK_COLUMNS} FROM tasks WHERE owner_id = ? ORDER BY created_at",
                (owner_id,),
            )
            rows = await cursor.fetchall()
        return [task for task in map(self._decode, rows) if task is not None]

    async def get_all_tasks(self) -> dict[str, dict[str, Task]]:
        """Return every readable task grouped as ``{owner_id: {task_name: Task}}``.

        Rows that fail to decode are logged and skipped so one corrupt record
        never hides the others.
        """
        async with self._session() as db:
            cursor = await db.execute(
                f"SELECT {_TASK_COLUMNS} FROM tasks ORDER BY owner_id, created_at"
            )
            rows = await cursor.fetchall()
        result: dict[str, dict[str, Task]] = {}
        for row in rows:
            task = self._decode(row)
            if task is not None:
                result.setdefault(task.owner_id, {})[task.name] = task
        return result

    async def put(self, task: Task) -> Task:
        """Insert or replace the record for ``task.key``."""
        async with self._session() as db:
            await db.execute(
                f"INSERT OR REPLACE INTO tasks ({_TASK_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                task.to_row(),
            )
            await db.commit()
        logger.info("Saved task '%s' for user %s", task.name, task.owner_id)
        return task

    async def delete(self, owner_id: str, task_name: str) -> bool:
        """Delete a task. Returns True if a row was removed."""
        async with self._session() as db:
            cursor = await db.execute(
                "DELETE FROM tasks WHERE owner_id = ? AND name = ?", (owner_id, task_name)
            )
            await db.commit()
            deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Deleted task '%s' for user %s", task_name, owner_id)
        return deleted

    async def update_next_occurrence(
        self, owner_id: str, task_name: str, timestamp: str | None
    ) -> None:
        """Set or clear the cached next_occurrence of a task."""
        async with self._session() as db:
            await db.execute(
                "UPDATE tasks SET next_occurrence = ? WHERE owner_id = ? AND name = ?",
                (timestamp, owner_id, task_name),
            )
            await db.commit()

    @staticmethod
    def _decode(row: tuple) -> Task | None:
        try:
            return Task.from_row(row)
        except (ChimeError, TypeError, ValueError):
            logger.warning(
                "Skipping unreadable task record '%s' for user %s", row[1], row[0], exc_info=True
            )
            return None

    # -- User preferences ------------------------------------------------------

    async def get_preferences(self, owner_id: str) -> UserPreferences:
        """Return the user's preferences (empty ones if never stored)."""
        async with self._session() as db:
            cursor = await db.execute(
                "SELECT timezone, channel, pending_task FROM users WHERE owner_id = ?",
                (owner_id,),
            )
            row = await cursor.fetchone()
        if row is None:
            return UserPreferences(owner_id=owner_id)
        pending = None
        if row[2]:
            try:
                pending = json.loads(row[2])
            except ValueError:
                logger.warning("Discarding unreadable pending task for user %s", owner_id)
        return UserPreferences(
            owner_id=owner_id, timezone=row[0], channel=row[1], pending_task=pending
        )

    async def get_user_timezone(self, owner_id: str) -> str | None:
        return (await self.get_preferences(owner_id)).timezone

    async def get_user_channel(self, owner_id: str) -> str | None:
        return (await self.get_preferences(owner_id)).channel

    async def _set_user_field(self, owner_id: str, column: str, value: Any) -> None:
        async with self._session() as db:
            await self._ensure_user(db, owner_id)
            await db.execute(
                f"UPDATE users SET {column} = ? WHERE owner_id = ?", (value, owner_id)
            )
            await db.commit()

    async def set_user_timezone(self, owner_id: str, timezone: str) -> None:
        await self._set_user_field(owner_id, "timezone", timezone)
        logger.info("Timezone for user %s set to %s", owner_id, timezone)

    async def set_user_channel(self, owner_id: str, channel: str) -> None:
        await self._set_user_field(owner_id, "channel", channel)
        logger.info("Reminder channel for user %s set to %s", owner_id, channel)

    async def set_pending_task(self, owner_id: str, request: dict[str, Any]) -> None:
        """Park a task-creation request until the user picks a timezone."""
        await self._set_user_field(owner_id, "pending_task", json.dumps(request))

    async def pop_pending_task(self, owner_id: str) -> dict[str, Any] | None:
        """Return and clear the parked task-creation request, if any."""
        pending = (await self.get_preferences(owner_id)).pending_task
        if pending is not None:
            await self._set_user_field(owner_id, "pending_task", None)
        return pending
