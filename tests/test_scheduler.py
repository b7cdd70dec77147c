"""Reminder scheduling behaviour tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from animesync.models import NotificationItem, Reminder
from animesync.scheduler import (
    compute_next_occurrence,
    due_reminders,
    group_by_weekday,
    is_due,
    sanitize_weekdays,
    weekday_index,
)

# 2024-01-01 is a Monday.
MONDAY_10 = datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)


def make_reminder(**overrides) -> Reminder:
    data = {
        "id": "r1",
        "media_id": 1,
        "title": "Frieren",
        "start_date_time": MONDAY_10,
        "repeat_on_days": [1, 3, 5],
    }
    data.update(overrides)
    return Reminder(**data)


def test_weekday_index_uses_sunday_as_zero() -> None:
    assert weekday_index(datetime(2024, 1, 7)) == 0
    assert weekday_index(MONDAY_10) == 1
    assert weekday_index(datetime(2024, 1, 6)) == 6


def test_next_occurrence_later_in_same_week() -> None:
    now = datetime(2024, 1, 2, 9, 0, tzinfo=timezone.utc)

    result = compute_next_occurrence(make_reminder(), now)

    assert result == datetime(2024, 1, 3, 10, 0, tzinfo=timezone.utc)


def test_next_occurrence_wraps_to_following_week() -> None:
    now = datetime(2024, 1, 5, 11, 0, tzinfo=timezone.utc)

    result = compute_next_occurrence(make_reminder(), now)

    assert result == datetime(2024, 1, 8, 10, 0, tzinfo=timezone.utc)


def test_todays_slot_is_skipped_unless_requested() -> None:
    now = datetime(2024, 1, 8, 9, 0, tzinfo=timezone.utc)
    reminder = make_reminder()

    assert compute_next_occurrence(reminder, now) == datetime(
        2024, 1, 10, 10, 0, tzinfo=timezone.utc
    )
    assert compute_next_occurrence(reminder, now, include_today=True) == datetime(
        2024, 1, 8, 10, 0, tzinfo=timezone.utc
    )


def test_todays_passed_slot_is_not_returned_with_include_today() -> None:
    now = datetime(2024, 1, 8, 12, 0, tzinfo=timezone.utc)

    result = compute_next_occurrence(make_reminder(repeat_on_days=[1]), now, include_today=True)

    assert result == datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize("days_ahead", [-30, 0, 3, 400])
def test_one_time_reminder_returns_anchor(days_ahead: int) -> None:
    reminder = make_reminder(repeat_on_days=[])
    now = MONDAY_10 + timedelta(days=days_ahead, hours=5)

    assert compute_next_occurrence(reminder, now) == reminder.start_date_time


@pytest.mark.parametrize("offset_hours", range(0, 24 * 9, 7))
def test_recurring_result_is_never_before_now(offset_hours: int) -> None:
    reminder = make_reminder(repeat_on_days=[0, 4])
    now = MONDAY_10 + timedelta(hours=offset_hours, minutes=13)

    result = compute_next_occurrence(reminder, now)

    assert result >= now
    assert weekday_index(result) in (0, 4)
    assert (result.hour, result.minute) == (10, 0)


def test_next_occurrence_uses_local_time_of_day() -> None:
    tz = timezone(timedelta(hours=9))
    reminder = make_reminder(
        start_date_time=datetime(2024, 1, 1, 1, 0, tzinfo=timezone.utc),
        repeat_on_days=[1],
    )
    now = datetime(2024, 1, 2, 12, 0, tzinfo=tz)

    result = compute_next_occurrence(reminder, now)

    assert result == datetime(2024, 1, 8, 10, 0, tzinfo=tz)


def test_invalid_weekday_values_are_dropped() -> None:
    assert sanitize_weekdays([1, "3", 9, "x", True, 2.0, -1, 2.5, 3]) == [1, 2, 3]
    assert sanitize_weekdays("monday") == []
    assert sanitize_weekdays(None) == []


def test_reminder_model_sanitizes_weekdays() -> None:
    reminder = make_reminder(repeat_on_days=[5, 5, "1", 12])

    assert reminder.repeat_on_days == [1, 5]
    assert reminder.is_recurring


def test_reminder_with_only_invalid_weekdays_is_one_time() -> None:
    reminder = make_reminder(repeat_on_days=[8, "nope"])
    now = datetime(2024, 2, 1, tzinfo=timezone.utc)

    assert not reminder.is_recurring
    assert compute_next_occurrence(reminder, now) == MONDAY_10


def test_group_by_weekday_orders_by_time_of_day() -> None:
    evening = make_reminder(
        id="evening",
        start_date_time=datetime(2024, 1, 3, 20, 0, tzinfo=timezone.utc),
        repeat_on_days=[1, 3],
    )
    morning = make_reminder(
        id="morning",
        start_date_time=datetime(2024, 1, 8, 8, 0, tzinfo=timezone.utc),
        repeat_on_days=[],
    )

    grouped = group_by_weekday([evening, morning])

    assert sorted(grouped) == list(range(7))
    assert [r.id for r in grouped[1]] == ["morning", "evening"]
    assert [r.id for r in grouped[3]] == ["evening"]
    assert grouped[0] == []


def test_group_by_weekday_respects_time_zone() -> None:
    late = make_reminder(
        start_date_time=datetime(2024, 1, 1, 23, 30, tzinfo=timezone.utc),
        repeat_on_days=[],
    )

    grouped = group_by_weekday([late], timezone(timedelta(hours=2)))

    assert [r.id for r in grouped[2]] == ["r1"]
    assert grouped[1] == []


def test_is_due_for_recurring_and_one_time() -> None:
    recurring = make_reminder()
    one_time = make_reminder(id="once", repeat_on_days=[])

    assert is_due(recurring, datetime(2024, 1, 8, 10, 30, tzinfo=timezone.utc))
    assert not is_due(recurring, datetime(2024, 1, 8, 9, 59, tzinfo=timezone.utc))
    assert not is_due(recurring, datetime(2024, 1, 9, 11, 0, tzinfo=timezone.utc))
    assert is_due(one_time, MONDAY_10)
    assert not is_due(one_time, MONDAY_10 - timedelta(minutes=1))


def test_due_reminders_skips_notified_and_completed() -> None:
    now = datetime(2024, 1, 8, 12, 0, tzinfo=timezone.utc)
    notified = make_reminder(id="notified")
    finished = make_reminder(id="finished", media_id=2, auto_stop_on_completion=True)
    pending = make_reminder(id="pending", media_id=3)
    existing = NotificationItem(id="n1", category="reminder", subject_id="notified")

    due = due_reminders(
        [notified, finished, pending],
        [existing],
        now,
        completed_media_ids={2},
    )

    assert [r.id for r in due] == ["pending"]
