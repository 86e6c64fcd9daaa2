"""Inbound command model.

Chat input is decoded exactly once, here, into one of the command
dataclasses below; handlers only ever see the typed result.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from chime.errors import ChimeError, CommandError
from chime.scheduler import recurrence
from chime.scheduler.models import (
    Custom,
    Daily,
    Monthly,
    ScheduleSpec,
    Weekly,
    schedule_from_dict,
)

ADD_TASK_USAGE = (
    "Usage:\n"
    "/addtask <name> daily <HH:MM>\n"
    "/addtask <name> weekly <day> <HH:MM>\n"
    "/addtask <name> monthly <1-31> <HH:MM>\n"
    "/addtask <name> custom <day,day,...> <HH:MM>"
)

_DAY_NAMES = {
    "sun": 0, "sunday": 0,
    "mon": 1, "monday": 1,
    "tue": 2, "tues": 2, "tuesday": 2,
    "wed": 3, "wednesday": 3,
    "thu": 4, "thur": 4, "thurs": 4, "thursday": 4,
    "fri": 5, "friday": 5,
    "sat": 6, "saturday": 6,
}  # fmt: skip


@dataclass(frozen=True)
class AddTask:
    task_name: str
    schedule: ScheduleSpec
    hour: int
    minute: int

    def to_dict(self) -> dict[str, Any]:
        """JSON form, used to park the request while a timezone is missing."""
        return {
            "task_name": self.task_name,
            "schedule": self.schedule.to_dict(),
            "hour": self.hour,
            "minute": self.minute,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AddTask:
        try:
            return cls(
                task_name=data["task_name"],
                schedule=schedule_from_dict(data["schedule"]),
                hour=int(data["hour"]),
                minute=int(data["minute"]),
            )
        except (KeyError, TypeError, ValueError, ChimeError) as exc:
            msg = "Stored task request is unreadable"
            raise CommandError(msg) from exc


@dataclass(frozen=True)
class CancelTask:
    task_name: str


@dataclass(frozen=True)
class SetTimezone:
    timezone: str


@dataclass(frozen=True)
class SetupChannel:
    pass


@dataclass(frozen=True)
class ListTasks:
    pass


@dataclass(frozen=True)
class ShowHelp:
    pass


Command = AddTask | CancelTask | SetTimezone | SetupChannel | ListTasks | ShowHelp


# -- Field parsers ---------------------------------------------------------------


def parse_day(token: str) -> int:
    """Parse a weekday name or digit (0 = Sunday)."""
    value = token.strip().lower()
    if value in _DAY_NAMES:
        return _DAY_NAMES[value]
    if value.isdigit() and 0 <= int(value) <= 6:
        return int(value)
    msg = f"Unknown day '{token}'. Use mon, tue, ... or 0-6 (0 = Sunday)."
    raise CommandError(msg)


def parse_time(token: str) -> tuple[int, int]:
    """Parse ``H``, ``HH``, ``H:MM`` or ``HH:MM`` into (hour, minute)."""
    hour_text, _, minute_text = token.strip().partition(":")
    if not hour_text.isdigit() or (minute_text and not minute_text.isdigit()):
        msg = f"Invalid time '{token}'. Use HH:MM, e.g. 09:30."
        raise CommandError(msg)
    hour, minute = int(hour_text), int(minute_text or 0)
    try:
        recurrence.validate_time(hour, minute)
    except ChimeError as exc:
        msg = f"Invalid time '{token}': {exc}"
        raise CommandError(msg) from exc
    return hour, minute


def _parse_schedule(kind: str, arg: str | None) -> ScheduleSpec:
    if kind == "daily":
        return Daily()
    if arg is None:
        raise CommandError(ADD_TASK_USAGE)
    if kind == "weekly":
        return Weekly(weekday=parse_day(arg))
    if kind == "monthly":
        if not arg.isdigit() or not 1 <= int(arg) <= 31:
            msg = f"Invalid day of month '{arg}'. Use 1-31."
            raise CommandError(msg)
        return Monthly(day_of_month=int(arg))
    days = [part for part in arg.split(",") if part.strip()]
    if not days:
        msg = "Pick at least one day."
        raise CommandError(msg)
    return Custom(weekdays=frozenset(parse_day(day) for day in days))


# -- Command decoders ------------------------------------------------------------


def parse_add_task(args: list[str]) -> AddTask:
    """Decode ``<name...> <kind> [<arg>] <time>``.

    The grammar is read from the right so task names may contain spaces.
    """
    if len(args) < 3:
        raise CommandError(ADD_TASK_USAGE)
    hour, minute = parse_time(args[-1])

    if args[-2].lower() == "daily":
        schedule, name_parts = _parse_schedule("daily", None), args[:-2]
    elif len(args) >= 4 and args[-3].lower() in ("weekly", "monthly", "custom"):
        schedule, name_parts = _parse_schedule(args[-3].lower(), args[-2]), args[:-3]
    else:
        raise CommandError(ADD_TASK_USAGE)

    task_name = " ".join(name_parts).strip()
    if not task_name:
        msg = "Give the task a name.\n\n" + ADD_TASK_USAGE
        raise CommandError(msg)
    return AddTask(task_name=task_name, schedule=schedule, hour=hour, minute=minute)


def parse_command(name: str, args: list[str]) -> Command:
    """Decode a slash command and its arguments into a Command."""
    name = name.lower().lstrip("/")
    if name == "addtask":
        return parse_add_task(args)
    if name == "canceltask":
        task_name = " ".join(args).strip()
        if not task_name:
            msg = "Usage: /canceltask <name>"
            raise CommandError(msg)
        return CancelTask(task_name=task_name)
    if name == "settimezone":
        if len(args) != 1:
            msg = "Usage: /settimezone <Area/City>, e.g. /settimezone Europe/Paris"
            raise CommandError(msg)
        return SetTimezone(timezone=args[0])
    if name == "setupchannel":
        return SetupChannel()
    if name == "mytasks":
        return ListTasks()
    if name in ("help", "start"):
        return ShowHelp()
    msg = f"Unknown command /{name}"
    raise CommandError(msg)
