"""ReconciliationSweeper — re-arms persisted tasks that have no live job."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

from chime.config import settings
from chime.errors import ChimeError, StorageError

if TYPE_CHECKING:
    from chime.scheduler.registry import JobRegistry
    from chime.scheduler.store import ScheduleStore

logger = logging.getLogger(__name__)


class ReconciliationSweeper:
    """Repairs the registry from the store, at startup and periodically.

    The sweep is additive: it arms tasks that are stored but not live and
    never touches keys that already have a job, nor removes anything.

    Args:
        store: ScheduleStore with the authoritative records.
        registry: JobRegistry to repair.
        interval_seconds: Seconds between sweeps (default from settings).
    """

    def __init__(
        self,
        store: ScheduleStore,
        registry: JobRegistry,
        *,
        interval_seconds: float | None = None,
    ) -> None:
        self._store = store
        self._registry = registry
        self._interval = interval_seconds or settings.reconcile_interval_seconds
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> int:
        """Arm every stored task missing from the registry.

        Returns the number of tasks armed in this pass.
        """
        try:
            all_tasks = await self._store.get_all_tasks()
        except StorageError:
            logger.exception("Reconciliation skipped: could not read stored tasks")
            return 0

        armed = 0
        for owner_id, tasks in all_tasks.items():
            for task_name, task in tasks.items():
                if self._registry.has_job(task.key):
                    continue
                try:
                    # Re-reads the record under the key lock; the snapshot may be stale.
                    restored = await self._registry.restore(owner_id, task_name)
                except ChimeError as exc:
                    logger.warning(
                        "Could not restore '%s' for user %s: %s", task_name, owner_id, exc
                    )
                    continue
                except Exception:
                    logger.exception("Unexpected error restoring '%s' for user %s", task_name, owner_id)
                    continue
                if not restored:
                    continue
                armed += 1
                logger.info("Restored missing reminder '%s' for user %s", task_name, owner_id)

        if armed:
            logger.info("Reconciliation armed %d task(s)", armed)
        return armed

    async def start(self) -> None:
        """Run one sweep now, then keep sweeping in the background."""
        await self.run_once()
        if not self.running:
            self._task = asyncio.create_task(self._loop(), name="reconciliation-sweeper")
            logger.info("Reconciliation loop started (interval=%ss)", self._interval)

    async def stop(self) -> None:
        """Cancel the background loop."""
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
            logger.info("Reconciliation loop stopped")

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.run_once()
            except Exception:
                logger.exception("Reconciliation pass failed")
