"""JobRegistry — owns the live reminder timers, one per (owner, task)."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

from chime.errors import (
    ChimeError,
    DispatchError,
    MissingTimezoneError,
    PersistenceError,
    StorageError,
)
from chime.scheduler import recurrence
from chime.scheduler.models import ScheduleSpec, Task, TaskKey

if TYPE_CHECKING:
    from collections.abc import Callable

    from chime.notifications.dispatcher import NotificationDispatcher
    from chime.scheduler.store import ScheduleStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class Job:
    """A live timer armed for the next occurrence of one task."""

    key: TaskKey
    job_id: str
    next_occurrence: datetime
    task: Task


class JobRegistry:
    """Maps tasks to APScheduler date jobs and keeps them recurring.

    Each task has at most one armed job. When it fires, the notification is
    dispatched and the following occurrence is computed from the persisted
    record, never from the in-memory copy.

    Operations on one key that touch both the store and the timers (schedule,
    cancel, restore, re-arm after a fire) run one at a time under a per-key
    lock, in call order, so the stored record and the live job always come
    from the same operation.

    Args:
        store: ScheduleStore holding the authoritative task records.
        dispatcher: NotificationDispatcher invoked on each fire (None → fires
            are only logged).
        clock: Returns the current aware datetime (injectable for tests).
        scheduler: Pre-built AsyncIOScheduler; a fresh one by default.
    """

    def __init__(
        self,
        store: ScheduleStore,
        dispatcher: NotificationDispatcher | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
        scheduler: AsyncIOScheduler | None = None,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._clock = clock or _utcnow
        self._scheduler = scheduler or AsyncIOScheduler(
            timezone=UTC,
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                # Late timers still fire, once, as soon as the loop resumes.
                "misfire_grace_time": None,
            },
        )
        self._jobs: dict[TaskKey, Job] = {}
        self._locks: dict[TaskKey, asyncio.Lock] = {}
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    # -- Lifecycle -------------------------------------------------------------

    def start(self) -> None:
        """Start the underlying scheduler. Jobs armed before start are kept."""
        if not self._running:
            self._scheduler.start()
            self._running = True
            logger.info("Job registry started with %d armed job(s)", len(self._jobs))

    def stop(self) -> None:
        """Shut down the scheduler and forget every live job."""
        if self._running:
            self._scheduler.shutdown(wait=False)
            self._running = False
        self._jobs.clear()
        logger.info("Job registry stopped")

    # -- Queries ---------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._jobs)

    def has_job(self, key: TaskKey) -> bool:
        return key in self._jobs

    def get_job(self, owner_id: str, task_name: str) -> Job | None:
        return self._jobs.get(TaskKey(owner_id, task_name))

    def live_keys(self) -> set[TaskKey]:
        return set(self._jobs)

    # -- Task management -------------------------------------------------------

    async def schedule(
        self,
        owner_id: str,
        task_name: str,
        spec: ScheduleSpec,
        hour: int,
        minute: int,
    ) -> datetime:
        """Persist a task and arm its first occurrence, replacing any old job.

        Returns the next occurrence so the caller can display it.

        Raises:
            InvalidScheduleError: malformed spec or time, or unknown timezone.
            MissingTimezoneError: the owner never set a timezone.
            PersistenceError: the record could not be saved; nothing was armed.
        """
        recurrence.validate(spec, hour, minute)
        key = TaskKey(owner_id, task_name)
        async with self._lock(key):
            existing = await self._read(owner_id, task_name)
            created_at = existing.created_at if existing else ""
            return await self._persist_and_arm(key, spec, hour, minute, created_at)

    async def restore(self, owner_id: str, task_name: str) -> bool:
        """Arm a stored task that has no live job, from its current record.

        Returns False when the key already has a job or the record is gone.
        Raises the same errors as ``schedule``.
        """
        key = TaskKey(owner_id, task_name)
        async with self._lock(key):
            if key in self._jobs:
                return False
            record = await self._read(owner_id, task_name)
            if record is None:
                return False
            await self._persist_and_arm(
                key, record.schedule, record.hour, record.minute, record.created_at
            )
            return True

    async def cancel(self, owner_id: str, task_name: str) -> bool:
        """Stop a task's timer and delete its record. Safe to repeat.

        Returns True if a live job or a stored record existed.
        """
        key = TaskKey(owner_id, task_name)
        async with self._lock(key):
            had_job = self._disarm(key)
            if self._dispatcher is not None:
                self._dispatcher.release(key)
            try:
                deleted = await self._store.delete(owner_id, task_name)
            except StorageError as exc:
                msg = f"Could not delete task '{task_name}' for user {owner_id}: {exc}"
                raise PersistenceError(msg) from exc
        if had_job or deleted:
            logger.info("Cancelled '%s' for user %s", task_name, owner_id)
        return had_job or deleted

    # -- Internal --------------------------------------------------------------

    def _lock(self, key: TaskKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def _read(self, owner_id: str, task_name: str) -> Task | None:
        try:
            return await self._store.get(owner_id, task_name)
        except StorageError as exc:
            msg = f"Could not read task '{task_name}' for user {owner_id}: {exc}"
            raise PersistenceError(msg) from exc

    async def _persist_and_arm(
        self,
        key: TaskKey,
        spec: ScheduleSpec,
        hour: int,
        minute: int,
        created_at: str,
    ) -> datetime:
        """Save the record, then arm it. Caller holds the key's lock."""
        owner_id, task_name = key
        try:
            timezone = await self._store.get_user_timezone(owner_id)
        except StorageError as exc:
            msg = f"Could not read timezone for user {owner_id}: {exc}"
            raise PersistenceError(msg) from exc
        if not timezone:
            raise MissingTimezoneError(owner_id)

        next_at = recurrence.next_occurrence(spec, hour, minute, timezone, self._clock())
        task = Task(
            owner_id=owner_id,
            name=task_name,
            schedule=spec,
            hour=hour,
            minute=minute,
            timezone=timezone,
            next_occurrence=next_at.isoformat(),
            created_at=created_at,
        )
        try:
            await self._store.put(task)
        except StorageError as exc:
            msg = f"Could not save task '{task_name}' for user {owner_id}: {exc}"
            raise PersistenceError(msg) from exc

        self._arm(task, next_at)
        logger.info(
            "Scheduled '%s' for user %s: %s, next at %s",
            task_name,
            owner_id,
            task.describe(),
            next_at.isoformat(),
        )
        return next_at

    def _arm(self, task: Task, next_at: datetime) -> Job:
        """Replace the key's job with one firing at ``next_at``. Synchronous."""
        self._disarm(task.key)
        job_id = uuid.uuid4().hex
        self._scheduler.add_job(
            self._on_fire,
            trigger=DateTrigger(run_date=next_at, timezone=UTC),
            id=job_id,
            name=f"{task.owner_id}/{task.name}",
            args=[task.owner_id, task.name],
        )
        job = Job(key=task.key, job_id=job_id, next_occurrence=next_at, task=task)
        self._jobs[task.key] = job
        return job

    def _disarm(self, key: TaskKey) -> bool:
        job = self._jobs.pop(key, None)
        if job is None:
            return False
        try:
            self._scheduler.remove_job(job.job_id)
        except JobLookupError:
            # Date jobs are dropped by APScheduler once they have run.
            logger.debug("Job %s for %s already gone from scheduler", job.job_id, key)
        return True

    async def _on_fire(self, owner_id: str, task_name: str) -> None:
        """Timer callback: deliver the reminder, then arm the next occurrence."""
        key = TaskKey(owner_id, task_name)
        job = self._jobs.get(key)
        if job is None:
            logger.debug("Fire for %s ignored, no live job", key)
            return

        task = job.task
        logger.info("Firing '%s' for user %s (due %s)", task_name, owner_id, job.next_occurrence)
        await self._deliver(task)

        async with self._lock(key):
            if self._jobs.get(key) is not job:
                logger.debug("Job for %s replaced while firing, not re-arming", key)
                return
            try:
                record = await self._store.get(owner_id, task_name)
            except ChimeError:
                # Leave the key unarmed; the next reconciliation sweep repairs it.
                logger.exception(
                    "Could not re-read '%s' for user %s after firing", task_name, owner_id
                )
                del self._jobs[key]
                return
            if record is None:
                del self._jobs[key]
                logger.info("'%s' for user %s was cancelled, not re-arming", task_name, owner_id)
                return

            try:
                next_at = recurrence.next_occurrence(
                    record.schedule, record.hour, record.minute, record.timezone, self._clock()
                )
            except ChimeError:
                logger.exception(
                    "Stored schedule for '%s' (user %s) is invalid", task_name, owner_id
                )
                del self._jobs[key]
                return

            record.next_occurrence = next_at.isoformat()
            self._arm(record, next_at)
            logger.info(
                "Re-armed '%s' for user %s at %s", task_name, owner_id, next_at.isoformat()
            )
            try:
                await self._store.update_next_occurrence(
                    owner_id, task_name, record.next_occurrence
                )
            except StorageError:
                logger.warning("Could not cache next occurrence for '%s'", task_name, exc_info=True)

    async def _deliver(self, task: Task) -> None:
        """Dispatch one reminder. Failures are logged, never raised."""
        if self._dispatcher is None:
            logger.info("No dispatcher configured; '%s' fired silently", task.name)
            return
        try:
            following = recurrence.next_occurrence(
                task.schedule, task.hour, task.minute, task.timezone, self._clock()
            )
        except ChimeError:
            following = None
        try:
            await self._dispatcher.dispatch(task, following)
        except DispatchError as exc:
            logger.warning("Reminder '%s' for user %s not delivered: %s", task.name, task.owner_id, exc)
        except Exception:
            logger.exception("Reminder '%s' for user %s failed", task.name, task.owner_id)
