"""Tests for schedule specs and the Task data model."""

import json

import pytest

from chime.errors import InvalidScheduleError
from chime.scheduler.models import (
    Custom,
    Daily,
    Monthly,
    Task,
    TaskKey,
    Weekly,
    ordinal,
    schedule_from_dict,
)


def _make_task(**kwargs) -> Task:
    defaults = {
        "owner_id": "42",
        "name": "workout",
        "schedule": Weekly(weekday=3),
        "hour": 9,
        "minute": 5,
        "timezone": "Europe/Paris",
    }
    defaults.update(kwargs)
    return Task(**defaults)


# -- Construction & defaults ---------------------------------------------------


def test_auto_created_at() -> None:
    task = _make_task()
    assert task.created_at != ""
    assert "T" in task.created_at  # ISO 8601


def test_explicit_created_at_not_overwritten() -> None:
    task = _make_task(created_at="2024-01-01T00:00:00")
    assert task.created_at == "2024-01-01T00:00:00"


def test_key_and_time_of_day() -> None:
    task = _make_task()
    assert task.key == TaskKey("42", "workout")
    assert task.time_of_day == "09:05"
    assert task.next_occurrence is None


def test_custom_accepts_any_iterable() -> None:
    spec = Custom(weekdays={1, 3})
    assert spec.weekdays == frozenset({1, 3})
    assert spec == Custom(weekdays=frozenset({3, 1}))


# -- Descriptions --------------------------------------------------------------


@pytest.mark.parametrize(
    ("day", "expected"),
    [(1, "1st"), (2, "2nd"), (3, "3rd"), (4, "4th"), (11, "11th"), (12, "12th"),
     (13, "13th"), (21, "21st"), (22, "22nd"), (23, "23rd"), (30, "30th"), (31, "31st")],
)  # fmt: skip
def test_ordinal(day: int, expected: str) -> None:
    assert ordinal(day) == expected


def test_describe_each_shape() -> None:
    assert Daily().describe() == "Every day"
    assert Weekly(weekday=0).describe() == "Every Sun"
    assert Monthly(day_of_month=22).describe() == "Monthly on day 22nd"
    assert Custom(weekdays=frozenset({0, 1, 5})).describe() == "Custom: Mon, Fri, Sun"


def test_task_describe() -> None:
    assert _make_task().describe() == "Every Wed at 09:05"


# -- Serialization -------------------------------------------------------------


@pytest.mark.parametrize(
    "spec",
    [Daily(), Weekly(weekday=6), Monthly(day_of_month=31), Custom(weekdays=frozenset({0, 2}))],
)
def test_schedule_dict_round_trip(spec) -> None:
    data = json.loads(json.dumps(spec.to_dict()))
    assert schedule_from_dict(data) == spec


def test_custom_to_dict_is_sorted() -> None:
    assert Custom(weekdays=frozenset({5, 1, 3})).to_dict() == {
        "type": "custom",
        "weekdays": [1, 3, 5],
    }


@pytest.mark.parametrize(
    "data",
    [
        {"type": "hourly"},
        {"type": "weekly"},
        {"type": "weekly", "weekday": 9},
        {"type": "monthly", "day_of_month": "31"},
        {"type": "custom", "weekdays": []},
        {"type": "custom", "weekdays": 3},
        "daily",
    ],
)
def test_schedule_from_dict_rejects_malformed(data) -> None:
    with pytest.raises(InvalidScheduleError):
        schedule_from_dict(data)


def test_to_row_and_from_row() -> None:
    task = _make_task(next_occurrence="2026-10-21T09:05:00+02:00", created_at="2026-10-19T00:00:00")
    row = task.to_row()
    assert json.loads(row[2]) == {"type": "weekly", "weekday": 3}

    restored = Task.from_row(row)
    assert restored == task


def test_from_row_with_bad_json() -> None:
    row = ("42", "broken", "{not json", 9, 0, "UTC", None, "2026-01-01T00:00:00")
    with pytest.raises(InvalidScheduleError):
        Task.from_row(row)
