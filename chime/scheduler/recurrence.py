"""Next-occurrence resolution for the four schedule shapes.

Pure functions: no state, no I/O. All wall-clock arithmetic happens on local
calendar dates in the target zone and is converted back to an instant only
at the end, so DST transitions shift the UTC offset instead of the local
time of day.
"""

from __future__ import annotations

import calendar
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from chime.errors import InvalidScheduleError
from chime.scheduler.models import Custom, Daily, Monthly, ScheduleSpec, Weekly


def validate_timezone(name: str) -> ZoneInfo:
    """Return the ZoneInfo for an IANA name or raise InvalidScheduleError."""
    if not name or not isinstance(name, str):
        msg = f"Unknown timezone: {name!r}"
        raise InvalidScheduleError(msg)
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        msg = f"Unknown timezone: {name!r}"
        raise InvalidScheduleError(msg) from exc


def validate_time(hour: int, minute: int) -> None:
    """Raise InvalidScheduleError unless ``hour:minute`` is a valid time of day."""
    for value, upper, label in ((hour, 23, "Hour"), (minute, 59, "Minute")):
        if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= upper:
            msg = f"{label} must be an integer 0-{upper}, got {value!r}"
            raise InvalidScheduleError(msg)


def validate(spec: ScheduleSpec, hour: int, minute: int) -> None:
    """Validate everything about a schedule except the timezone."""
    if not isinstance(spec, Daily | Weekly | Monthly | Custom):
        msg = f"Unsupported schedule: {spec!r}"
        raise InvalidScheduleError(msg)
    spec.validate()
    validate_time(hour, minute)


def local_weekday(day: date) -> int:
    """Weekday of ``day`` with 0 = Sunday."""
    return (day.weekday() + 1) % 7


def _at(day: date, hour: int, minute: int, tz: ZoneInfo) -> datetime:
    """The instant ``day hour:minute`` local time, normalised through UTC.

    Normalising resolves times that fall into a spring-forward gap to the
    equivalent instant after the transition.
    """
    local = datetime.combine(day, time(hour, minute), tzinfo=tz)
    return local.astimezone(UTC).astimezone(tz)


def _add_month(year: int, month: int) -> tuple[int, int]:
    if month == 12:
        return year + 1, 1
    return year, month + 1


def next_occurrence(
    spec: ScheduleSpec,
    hour: int,
    minute: int,
    timezone: str,
    now: datetime,
) -> datetime:
    """Return the first occurrence of ``spec`` strictly after ``now``.

    The result is timezone-aware and expressed in ``timezone``. A naive
    ``now`` is taken to be UTC.

    Raises:
        InvalidScheduleError: malformed spec, time of day, or unknown zone.
    """
    validate(spec, hour, minute)
    tz = validate_timezone(timezone)
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    now_utc = now.astimezone(UTC)
    today = now_utc.astimezone(tz).date()

    def after_now(candidate: datetime) -> bool:
        return candidate.astimezone(UTC) > now_utc

    result: datetime | None = None

    if isinstance(spec, Daily):
        result = _at(today, hour, minute, tz)
        if not after_now(result):
            result = _at(today + timedelta(days=1), hour, minute, tz)

    elif isinstance(spec, Weekly):
        day = today + timedelta(days=(spec.weekday - local_weekday(today)) % 7)
        result = _at(day, hour, minute, tz)
        if not after_now(result):
            result = _at(day + timedelta(days=7), hour, minute, tz)

    elif isinstance(spec, Monthly):
        year, month = today.year, today.month
        # The clamped day can only be in the past for the current month.
        for _ in range(2):
            last_day = calendar.monthrange(year, month)[1]
            candidate = _at(
                date(year, month, min(spec.day_of_month, last_day)), hour, minute, tz
            )
            if after_now(candidate):
                result = candidate
                break
            year, month = _add_month(year, month)

    elif isinstance(spec, Custom):
        for offset in range(8):
            day = today + timedelta(days=offset)
            if local_weekday(day) not in spec.weekdays:
                continue
            candidate = _at(day, hour, minute, tz)
            if after_now(candidate):
                result = candidate
                break

    if result is None or not after_now(result):
        msg = f"Resolver produced no occurrence after {now.isoformat()} for {spec!r}"
        raise RuntimeError(msg)
    return result
