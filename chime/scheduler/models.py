"""Schedule specs, Task records and user preferences."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, NamedTuple

from chime.errors import InvalidScheduleError

DAY_LABELS = ("Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat")


def ordinal(day: int) -> str:
    """Return ``day`` with its English ordinal suffix (1st, 2nd, 11th, 23rd)."""
    if 10 <= day % 100 <= 20:
        return f"{day}th"
    suffix = {1: "st", 2: "nd", 3: "rd"}.get(day % 10, "th")
    return f"{day}{suffix}"


def _check_weekday(value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 6:
        msg = f"Weekday must be an integer 0-6 (0 = Sunday), got {value!r}"
        raise InvalidScheduleError(msg)


# -- Schedule specs --------------------------------------------------------------


@dataclass(frozen=True)
class Daily:
    """Fires every day."""

    def validate(self) -> None:
        return None

    def to_dict(self) -> dict[str, Any]:
        return {"type": "daily"}

    def describe(self) -> str:
        return "Every day"


@dataclass(frozen=True)
class Weekly:
    """Fires once a week on ``weekday`` (0 = Sunday)."""

    weekday: int

    def validate(self) -> None:
        _check_weekday(self.weekday)

    def to_dict(self) -> dict[str, Any]:
        return {"type": "weekly", "weekday": self.weekday}

    def describe(self) -> str:
        return f"Every {DAY_LABELS[self.weekday]}"


@dataclass(frozen=True)
class Monthly:
    """Fires once a month on ``day_of_month``, clamped to the month's length."""

    day_of_month: int

    def validate(self) -> None:
        day = self.day_of_month
        if isinstance(day, bool) or not isinstance(day, int) or not 1 <= day <= 31:
            msg = f"Day of month must be an integer 1-31, got {day!r}"
            raise InvalidScheduleError(msg)

    def to_dict(self) -> dict[str, Any]:
        return {"type": "monthly", "day_of_month": self.day_of_month}

    def describe(self) -> str:
        return f"Monthly on day {ordinal(self.day_of_month)}"


@dataclass(frozen=True)
class Custom:
    """Fires on every weekday in ``weekdays``."""

    weekdays: frozenset[int]

    def __post_init__(self) -> None:
        if not isinstance(self.weekdays, frozenset):
            object.__setattr__(self, "weekdays", frozenset(self.weekdays))

    def validate(self) -> None:
        if not self.weekdays:
            msg = "Custom schedule needs at least one weekday"
            raise InvalidScheduleError(msg)
        for day in self.weekdays:
            _check_weekday(day)

    def to_dict(self) -> dict[str, Any]:
        return {"type": "custom", "weekdays": sorted(self.weekdays)}

    def describe(self) -> str:
        # Week shown Monday first, Sunday last.
        ordered = sorted(self.weekdays, key=lambda d: (d + 6) % 7)
        return "Custom: " + ", ".join(DAY_LABELS[d] for d in ordered)


ScheduleSpec = Daily | Weekly | Monthly | Custom


def schedule_from_dict(data: dict[str, Any]) -> ScheduleSpec:
    """Rebuild a ScheduleSpec from its ``to_dict()`` form and validate it."""
    kind = data.get("type") if isinstance(data, dict) else None
    try:
        if kind == "daily":
            spec: ScheduleSpec = Daily()
        elif kind == "weekly":
            spec = Weekly(weekday=data["weekday"])
        elif kind == "monthly":
            spec = Monthly(day_of_month=data["day_of_month"])
        elif kind == "custom":
            spec = Custom(weekdays=frozenset(data["weekdays"]))
        else:
            msg = f"Unknown schedule type: {kind!r}"
            raise InvalidScheduleError(msg)
    except (KeyError, TypeError) as exc:
        msg = f"Malformed {kind} schedule: {data!r}"
        raise InvalidScheduleError(msg) from exc
    spec.validate()
    return spec


# -- Task ------------------------------------------------------------------------


class TaskKey(NamedTuple):
    """Identity of a task: one owner, one task name."""

    owner_id: str
    task_name: str


@dataclass
class Task:
    """A persisted recurring reminder.

    Attributes:
        owner_id: The user who owns the task.
        name: Task name, unique per owner.
        schedule: Recurrence pattern.
        hour: Local hour of day (0-23).
        minute: Local minute (0-59).
        timezone: IANA zone the time of day is expressed in.
        next_occurrence: ISO 8601 instant of the next armed fire. Advisory only,
            always recomputable from the other fields.
        created_at: ISO 8601 timestamp.
    """

    owner_id: str
    name: str
    schedule: ScheduleSpec
    hour: int
    minute: int
    timezone: str
    next_occurrence: str | None = None
    created_at: str = ""

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = datetime.now(UTC).isoformat()

    @property
    def key(self) -> TaskKey:
        return TaskKey(self.owner_id, self.name)

    @property
    def time_of_day(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"

    def describe(self) -> str:
        """Human label such as ``"Every Wed at 09:00"``."""
        return f"{self.schedule.describe()} at {self.time_of_day}"

    # -- Serialization ---------------------------------------------------------

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``tasks`` column order."""
        return (
            self.owner_id,
            self.name,
            json.dumps(self.schedule.to_dict()),
            self.hour,
            self.minute,
            self.timezone,
            self.next_occurrence,
            self.created_at,
        )

    @classmethod
    def from_row(cls, row: tuple) -> Task:
        """Deserialize from a SQLite row tuple.

        Raises InvalidScheduleError when the stored schedule is unreadable.
        """
        try:
            schedule_data = json.loads(row[2])
        except (TypeError, ValueError) as exc:
            msg = f"Stored schedule is not valid JSON: {row[2]!r}"
            raise InvalidScheduleError(msg) from exc
        return cls(
            owner_id=row[0],
            name=row[1],
            schedule=schedule_from_dict(schedule_data),
            hour=int(row[3]),
            minute=int(row[4]),
            timezone=row[5],
            next_occurrence=row[6],
            created_at=row[7],
        )


@dataclass
class UserPreferences:
    """Per-user settings kept next to the tasks.

    ``pending_task`` holds a task-creation request parked while the user is
    asked for a timezone; it is cleared once consumed.
    """

    owner_id: str
    timezone: str | None = None
    channel: str | None = None
    pending_task: dict[str, Any] | None = field(default=None)
