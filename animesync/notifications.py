"""Pure helpers deriving and transforming notification lists.

None of these functions mutate their input; transformations return a new
list that shares unchanged items with the original.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Literal, Sequence

from .models import MediaRef, NotificationCategory, NotificationItem, Reminder

PriorityCategory = Literal["reminder", "news", "none"]

NEWS_CATEGORIES: frozenset[str] = frozenset({"news", "update"})


@dataclass(frozen=True, slots=True)
class NotificationSummary:
    """Unread counters used by the notification bell."""

    news_unseen: int
    reminder_unseen: int
    total: int
    priority_category: PriorityCategory

    def to_payload(self) -> dict[str, object]:
        return {
            "newsUnseen": self.news_unseen,
            "reminderUnseen": self.reminder_unseen,
            "total": self.total,
            "priorityCategory": self.priority_category,
        }


def count_unseen(
    notifications: Sequence[NotificationItem],
    predicate: Callable[[NotificationItem], bool] = lambda _: True,
) -> int:
    return sum(1 for item in notifications if not item.seen and predicate(item))


def aggregate(notifications: Sequence[NotificationItem]) -> NotificationSummary:
    """Summarise unseen notifications in a single pass.

    Updates count towards the news counter. Reminders always take priority
    over news when choosing the highlighted category.
    """

    news_unseen = 0
    reminder_unseen = 0
    for item in notifications:
        if item.seen:
            continue
        if item.category == "reminder":
            reminder_unseen += 1
        elif item.category in NEWS_CATEGORIES:
            news_unseen += 1

    priority: PriorityCategory = "none"
    if reminder_unseen > 0:
        priority = "reminder"
    elif news_unseen > 0:
        priority = "news"
    return NotificationSummary(
        news_unseen=news_unseen,
        reminder_unseen=reminder_unseen,
        total=news_unseen + reminder_unseen,
        priority_category=priority,
    )


def _seen_copy(item: NotificationItem, now: datetime) -> NotificationItem:
    return item.model_copy(update={"seen": True, "seen_at": now})


def mark_seen(
    notifications: Sequence[NotificationItem],
    notification_id: str,
    *,
    now: datetime,
) -> list[NotificationItem]:
    return [
        _seen_copy(item, now) if item.id == notification_id and not item.seen else item
        for item in notifications
    ]


def mark_all_seen_for_category(
    notifications: Sequence[NotificationItem],
    category: NotificationCategory,
    *,
    now: datetime,
) -> list[NotificationItem]:
    return [
        _seen_copy(item, now) if item.category == category and not item.seen else item
        for item in notifications
    ]


def mark_all_seen(
    notifications: Sequence[NotificationItem], *, now: datetime
) -> list[NotificationItem]:
    return [item if item.seen else _seen_copy(item, now) for item in notifications]


def clear_category(
    notifications: Sequence[NotificationItem],
    category: NotificationCategory | None = None,
) -> list[NotificationItem]:
    """Drop every notification of ``category``, or all of them when ``None``."""

    if category is None:
        return []
    return [item for item in notifications if item.category != category]


def add_notification(
    notifications: Sequence[NotificationItem], item: NotificationItem
) -> list[NotificationItem]:
    """Append ``item`` unless its subject already has a notification.

    An existing notification with the same (category, subject) key is
    replaced in place so the list never holds two for one subject.
    """

    result = list(notifications)
    for index, existing in enumerate(result):
        if existing.key == item.key:
            result[index] = item
            return result
    result.append(item)
    return result


def unique_notifications(
    notifications: Sequence[NotificationItem],
) -> list[NotificationItem]:
    """Keep the first notification for each (category, subject) key."""

    seen: set[tuple[str, str]] = set()
    result: list[NotificationItem] = []
    for item in notifications:
        if item.key in seen:
            continue
        seen.add(item.key)
        result.append(item)
    return result


def reminder_notification(reminder: Reminder, now: datetime) -> NotificationItem:
    return NotificationItem(
        id=str(uuid.uuid4()),
        category="reminder",
        subject_id=reminder.id,
        media_id=reminder.media_id,
        title=reminder.title,
        message=reminder.notes,
        created_at=now,
    )


def update_notification(media: MediaRef, new_units: int, now: datetime) -> NotificationItem:
    return NotificationItem(
        id=str(uuid.uuid4()),
        category="update",
        subject_id=str(media.id),
        media_id=media.id,
        title=media.title,
        message=f"New {media.unit_label} available: {new_units} new",
        created_at=now,
    )
