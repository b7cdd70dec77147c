"""Next-occurrence and weekday grouping for release reminders.

Weekday indices follow the JavaScript convention used by the stored data:
``0`` is Sunday and ``6`` is Saturday. All functions here are pure and never
raise on malformed weekday data; invalid values are dropped.
"""

from __future__ import annotations

import logging
from datetime import datetime, time, timedelta, tzinfo
from typing import TYPE_CHECKING, Any, Collection, Iterable, Sequence

from .errors import SchedulingError

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .models import NotificationItem, Reminder

logger = logging.getLogger(__name__)

WEEKDAYS = range(7)


def weekday_index(moment: datetime) -> int:
    """Return the Sunday-based weekday index of ``moment``."""

    return (moment.weekday() + 1) % 7


def _parse_weekday(value: Any) -> int:
    if isinstance(value, bool):
        raise SchedulingError(f"Boolean is not a weekday: {value!r}")
    if isinstance(value, float):
        if not value.is_integer():
            raise SchedulingError(f"Fractional weekday: {value!r}")
        value = int(value)
    elif isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError as exc:
            raise SchedulingError(f"Non-numeric weekday: {value!r}") from exc
    if not isinstance(value, int):
        raise SchedulingError(f"Unsupported weekday value: {value!r}")
    if value not in WEEKDAYS:
        raise SchedulingError(f"Weekday out of range: {value}")
    return value


def sanitize_weekdays(values: Any) -> list[int]:
    """Return unique, sorted weekday indices, dropping anything invalid."""

    if values is None:
        return []
    if not isinstance(values, (list, tuple, set, frozenset)):
        logger.debug("Ignoring non-sequence weekday data: %r", values)
        return []
    cleaned: set[int] = set()
    for raw in values:
        try:
            cleaned.add(_parse_weekday(raw))
        except SchedulingError as exc:
            logger.debug("Dropping weekday value: %s", exc)
    return sorted(cleaned)


def _align(anchor: datetime, now: datetime) -> datetime:
    """Express ``anchor`` in the same timezone convention as ``now``."""

    if now.tzinfo is None:
        return anchor.replace(tzinfo=None) if anchor.tzinfo else anchor
    if anchor.tzinfo is None:
        return anchor.replace(tzinfo=now.tzinfo)
    return anchor.astimezone(now.tzinfo)


def _slot(day: datetime, time_of_day: time) -> datetime:
    return day.replace(
        hour=time_of_day.hour,
        minute=time_of_day.minute,
        second=0,
        microsecond=0,
    )


def _next_weekday(now: datetime, weekday: int) -> datetime:
    """Return the first date strictly after ``now``'s date falling on ``weekday``."""

    delta = (weekday - weekday_index(now)) % 7
    return now + timedelta(days=delta or 7)


def compute_next_occurrence(
    reminder: "Reminder",
    now: datetime,
    *,
    include_today: bool = False,
) -> datetime:
    """Return when ``reminder`` fires next.

    One-time reminders return their anchor unchanged, even when it lies in
    the past. Recurring reminders return the earliest slot on a listed
    weekday that is not before ``now``. Today's slot is skipped unless
    ``include_today`` is set and the slot has not passed yet.
    """

    days = sanitize_weekdays(reminder.repeat_on_days)
    if not days:
        return reminder.start_date_time

    anchor = _align(reminder.start_date_time, now)
    time_of_day = anchor.time()

    candidates: list[datetime] = []
    if include_today and weekday_index(now) in days:
        today_slot = _slot(now, time_of_day)
        if today_slot >= now:
            candidates.append(today_slot)
    for day in days:
        candidate = _slot(_next_weekday(now, day), time_of_day)
        if candidate >= now:
            candidates.append(candidate)

    if candidates:
        return min(candidates)

    return _slot(_next_weekday(now, days[0]) + timedelta(days=7), time_of_day)


def _local(moment: datetime, tz: tzinfo | None) -> datetime:
    if tz is None:
        return moment
    if moment.tzinfo is None:
        return moment.replace(tzinfo=tz)
    return moment.astimezone(tz)


def group_by_weekday(
    reminders: Iterable["Reminder"],
    tz: tzinfo | None = None,
) -> dict[int, list["Reminder"]]:
    """Group reminders by weekday index, each day ordered by time of day."""

    grouped: dict[int, list["Reminder"]] = {day: [] for day in WEEKDAYS}
    for reminder in reminders:
        days = sanitize_weekdays(reminder.repeat_on_days)
        if days:
            for day in days:
                grouped[day].append(reminder)
        else:
            anchor = _local(reminder.start_date_time, tz)
            grouped[weekday_index(anchor)].append(reminder)

    def _order(reminder: "Reminder") -> tuple[time, float, str]:
        anchor = _local(reminder.start_date_time, tz)
        return anchor.time(), anchor.timestamp(), reminder.id

    for day in WEEKDAYS:
        grouped[day].sort(key=_order)
    return grouped


def is_due(reminder: "Reminder", now: datetime) -> bool:
    """Return whether the reminder's slot for ``now`` has been reached."""

    days = sanitize_weekdays(reminder.repeat_on_days)
    if not days:
        return _align(reminder.start_date_time, now) <= now
    if weekday_index(now) not in days:
        return False
    anchor = _align(reminder.start_date_time, now)
    return _slot(now, anchor.time()) <= now


def due_reminders(
    reminders: Sequence["Reminder"],
    notifications: Sequence["NotificationItem"],
    now: datetime,
    *,
    completed_media_ids: Collection[int] = (),
) -> list["Reminder"]:
    """Return reminders that should raise a reminder notification at ``now``.

    Reminders that already own a live reminder notification are skipped, as
    are reminders set to stop once their media is completed.
    """

    notified = {
        item.subject_id for item in notifications if item.category == "reminder"
    }
    due: list["Reminder"] = []
    for reminder in reminders:
        if reminder.id in notified:
            continue
        if reminder.auto_stop_on_completion and reminder.media_id in completed_media_ids:
            continue
        if is_due(reminder, now):
            due.append(reminder)
    return due
