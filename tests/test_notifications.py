"""Notification aggregation and transformation tests."""

from __future__ import annotations

from datetime import datetime, timezone

from animesync import notifications
from animesync.models import MediaRef, NotificationItem, Reminder

NOW = datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)


def item(
    item_id: str,
    category: str = "news",
    *,
    seen: bool = False,
    subject: str | None = None,
) -> NotificationItem:
    return NotificationItem(
        id=item_id,
        category=category,
        subject_id=subject or item_id,
        seen=seen,
    )


def test_reminders_take_priority_over_news() -> None:
    items = [item("r1", "reminder")] + [item(f"n{index}") for index in range(5)]

    summary = notifications.aggregate(items)

    assert summary.reminder_unseen == 1
    assert summary.news_unseen == 5
    assert summary.total == 6
    assert summary.priority_category == "reminder"


def test_updates_count_as_news_and_seen_items_are_ignored() -> None:
    summary = notifications.aggregate(
        [item("u1", "update"), item("n1"), item("n2", seen=True), item("r1", "reminder", seen=True)]
    )

    assert summary.news_unseen == 2
    assert summary.reminder_unseen == 0
    assert summary.priority_category == "news"


def test_empty_summary_has_no_priority() -> None:
    summary = notifications.aggregate([])

    assert summary.total == 0
    assert summary.priority_category == "none"
    assert summary.to_payload() == {
        "newsUnseen": 0,
        "reminderUnseen": 0,
        "total": 0,
        "priorityCategory": "none",
    }


def test_mark_seen_only_touches_matching_item() -> None:
    original = [item("a"), item("b")]

    updated = notifications.mark_seen(original, "b", now=NOW)

    assert [entry.seen for entry in updated] == [False, True]
    assert updated[1].seen_at == NOW
    assert updated[0] is original[0]
    assert not original[1].seen


def test_mark_all_seen_for_category() -> None:
    updated = notifications.mark_all_seen_for_category(
        [item("a"), item("b", "reminder"), item("c", "update")], "reminder", now=NOW
    )

    assert [entry.seen for entry in updated] == [False, True, False]
    assert notifications.count_unseen(notifications.mark_all_seen(updated, now=NOW)) == 0


def test_clear_category() -> None:
    items = [item("a"), item("b", "reminder"), item("c", "update")]

    assert [entry.id for entry in notifications.clear_category(items, "news")] == ["b", "c"]
    assert notifications.clear_category(items) == []


def test_add_notification_replaces_same_subject() -> None:
    items = [item("a", "update", subject="42", seen=True), item("b")]

    updated = notifications.add_notification(items, item("c", "update", subject="42"))

    assert [entry.id for entry in updated] == ["c", "b"]
    assert notifications.add_notification(updated, item("d", "news"))[-1].id == "d"


def test_unique_notifications_keeps_first() -> None:
    items = [item("a", subject="s"), item("b", subject="s"), item("c", "reminder", subject="s")]

    assert [entry.id for entry in notifications.unique_notifications(items)] == ["a", "c"]


def test_update_notification_message() -> None:
    media = MediaRef(id=5, title="Dungeon Meshi", kind="anime", total=14)

    created = notifications.update_notification(media, 2, NOW)

    assert created.category == "update"
    assert created.subject_id == "5"
    assert created.message == "New episodes available: 2 new"
    manga = MediaRef(id=6, title="Berserk", kind="manga")
    assert "chapters" in notifications.update_notification(manga, 1, NOW).message


def test_reminder_notification_references_reminder() -> None:
    reminder = Reminder(
        id="rem-1",
        media_id=9,
        title="New episode",
        start_date_time=NOW,
        notes="Watch tonight",
    )

    created = notifications.reminder_notification(reminder, NOW)

    assert created.key == ("reminder", "rem-1")
    assert created.media_id == 9
    assert created.message == "Watch tonight"
