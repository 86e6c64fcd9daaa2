"""Recurring reminder scheduling — models, recurrence, persistence, timers."""

from chime.scheduler.models import Custom, Daily, Monthly, ScheduleSpec, Task, TaskKey, Weekly
from chime.scheduler.recurrence import next_occurrence
from chime.scheduler.registry import JobRegistry
from chime.scheduler.store import ScheduleStore
from chime.scheduler.sweeper import ReconciliationSweeper

__all__ = [
    "Custom",
    "Daily",
    "JobRegistry",
    "Monthly",
    "ReconciliationSweeper",
    "ScheduleSpec",
    "ScheduleStore",
    "Task",
    "TaskKey",
    "Weekly",
    "next_occurrence",
]
