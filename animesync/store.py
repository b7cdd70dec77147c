"""The profile store: the single owner of the live profile snapshot."""

from __future__ import annotations

import asyncio
import itertools
import logging
import uuid
from datetime import datetime, timezone, tzinfo
from typing import Any, Callable, Hashable, Iterable, Mapping, Protocol, Sequence, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from . import lists as list_ops
from . import notifications as notification_ops
from .backup import ImportResult, dumps_backup, export_profile, import_profile
from .dedup import dedupe
from .errors import ConfigurationError, NotFoundError, StorageError, ValidationError
from .lists import NewsSection
from .models import (
    ACTIVE_STATUS,
    EpisodeLink,
    FollowedTitle,
    LayoutItem,
    MediaRef,
    NewsArticle,
    NotificationCategory,
    NotificationItem,
    Profile,
    Reminder,
    TrackedEntry,
)
from .notifications import NotificationSummary
from .scheduler import compute_next_occurrence, due_reminders, group_by_weekday
from .storage import OrderedWriter, StorageAdapter

logger = logging.getLogger(__name__)

T = TypeVar("T")
ModelT = TypeVar("ModelT", bound=BaseModel)

Mutation = Callable[[Profile, datetime], tuple[Profile, T]]


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall clock returning aware datetimes in a fixed time zone."""

    def __init__(self, tz: tzinfo | None = None) -> None:
        self._tz = tz or timezone.utc

    def now(self) -> datetime:
        return datetime.now(self._tz)


class MediaCatalog(Protocol):
    """Source of fresh media metadata."""

    async def fetch_media(self, media_id: int, kind: str = "anime") -> MediaRef | None:
        ...

    async def fetch_many(self, media_ids: Sequence[int], kind: str = "anime") -> list[MediaRef]:
        ...

    async def search(self, query: str, page: int = 1, kind: str = "anime") -> list[MediaRef]:
        ...

    async def list_page(self, path: str, page: int = 1) -> list[MediaRef]:
        ...


class RequestTracker:
    """Hands out one current token per subject.

    Starting a new request for a subject supersedes the previous one, so a
    late result can be recognised and discarded.
    """

    def __init__(self) -> None:
        self._counter = itertools.count(1)
        self._current: dict[Hashable, int] = {}

    def begin(self, subject: Hashable) -> int:
        token = next(self._counter)
        self._current[subject] = token
        return token

    def is_current(self, subject: Hashable, token: int) -> bool:
        return self._current.get(subject) == token

    def finish(self, subject: Hashable, token: int) -> None:
        if self.is_current(subject, token):
            del self._current[subject]


def _merge(model: ModelT, changes: Mapping[str, Any], *, keep: Iterable[str] = ()) -> ModelT:
    """Validate ``model`` with ``changes`` applied, accepting field names or aliases."""

    data = model.model_dump()
    for name, info in type(model).model_fields.items():
        if name in keep:
            continue
        for key in (name, info.alias):
            if key and key in changes:
                data[name] = changes[key]
    return type(model).model_validate(data)


def _validated(model: type[ModelT], value: ModelT | Mapping[str, Any]) -> ModelT:
    if isinstance(value, model):
        return value
    try:
        return model.model_validate(value)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid {model.__name__}: {exc}") from exc


def _media_subject(media_id: int) -> tuple[str, int]:
    return ("media", media_id)


def _with_notifications(profile: Profile, notifications: list[NotificationItem]) -> Profile:
    if notifications == profile.notifications:
        return profile
    return profile.model_copy(update={"notifications": notifications})


class ProfileStore:
    """Serialises mutations of one profile and persists every change.

    Each mutation runs against the snapshot current when it acquires the
    lock, swaps in a complete new snapshot, and is followed by exactly one
    write. Mutations that change nothing do not write.
    """

    def __init__(
        self,
        storage: StorageAdapter | None,
        *,
        clock: Clock | None = None,
        catalog: MediaCatalog | None = None,
        profile_id: str = "local",
        tz: tzinfo | None = None,
        hidden_genres: Iterable[str] | None = None,
    ) -> None:
        if storage is None:
            raise ConfigurationError("ProfileStore requires a storage adapter")
        self._storage = storage
        self._writer = OrderedWriter(storage)
        self._clock = clock or SystemClock(tz)
        self._catalog = catalog
        self._tz = tz
        self._hidden_genres = list(hidden_genres) if hidden_genres is not None else None
        self.profile_id = profile_id
        self.requests = RequestTracker()
        self.last_storage_error: StorageError | None = None
        self._profile = self._fresh_profile()
        self._lock = asyncio.Lock()
        self._revision = 0
        self._dirty = False

    def _fresh_profile(self) -> Profile:
        if self._hidden_genres is None:
            return Profile()
        return Profile(hidden_genres=self._hidden_genres)

    @property
    def profile(self) -> Profile:
        return self._profile

    @property
    def reminders(self) -> list[Reminder]:
        return list(self._profile.reminders)

    @property
    def notifications(self) -> list[NotificationItem]:
        return list(self._profile.notifications)

    @property
    def dirty(self) -> bool:
        return self._dirty

    def now(self) -> datetime:
        return self._clock.now()

    def entries(self, status: str) -> list[TrackedEntry]:
        return list_ops.entries_for(self._profile, status)

    def summary(self) -> NotificationSummary:
        return notification_ops.aggregate(self._profile.notifications)

    def schedule(self) -> dict[int, list[Reminder]]:
        return group_by_weekday(self._profile.reminders, self._tz)

    def next_occurrence(self, reminder_id: str) -> datetime | None:
        reminder = self._profile.find_reminder(reminder_id)
        if reminder is None:
            return None
        return compute_next_occurrence(reminder, self._clock.now())

    def export_backup(self) -> dict[str, Any]:
        return export_profile(self._profile)

    async def load(self) -> Profile:
        """Replace the in-memory snapshot with the persisted one."""

        try:
            blob = await self._storage.load(self.profile_id)
        except StorageError as exc:
            logger.warning("Could not load profile %s: %s", self.profile_id, exc)
            self.last_storage_error = exc
            blob = None

        profile = self._fresh_profile()
        if blob:
            result = import_profile(blob)
            if result.ok and result.profile is not None:
                profile = result.profile
                if result.recovered:
                    logger.warning(
                        "Stored profile %s needed recovery: %s",
                        self.profile_id,
                        "; ".join(result.issues),
                    )
            else:
                logger.warning(
                    "Stored profile %s is unreadable, starting fresh", self.profile_id
                )
        async with self._lock:
            self._profile = profile
        return profile

    async def flush(self) -> bool:
        """Retry persisting the current snapshot after a failed write."""

        async with self._lock:
            if not self._dirty:
                return False
            revision = self._revision
            blob = dumps_backup(self._profile, indent=None)
        await self._write(revision, blob)
        return not self._dirty

    async def _write(self, revision: int, blob: str) -> None:
        try:
            await self._writer.write(self.profile_id, revision, blob)
        except StorageError as exc:
            if revision > self._writer.last_applied(self.profile_id):
                logger.warning(
                    "Failed to persist profile %s (revision %s): %s",
                    self.profile_id,
                    revision,
                    exc,
                )
                self.last_storage_error = exc
                self._dirty = True
            return
        if self._writer.last_applied(self.profile_id) >= self._revision:
            self._dirty = False
            self.last_storage_error = None

    async def _commit(self, mutation: Mutation[T], *, default: T) -> T:
        async with self._lock:
            current = self._profile
            try:
                updated, result = mutation(current, self._clock.now())
            except NotFoundError as exc:
                logger.debug("Ignoring mutation of profile %s: %s", self.profile_id, exc)
                return default
            if updated is current:
                return result
            self._profile = updated
            self._revision += 1
            revision = self._revision
            blob = dumps_backup(updated, indent=None)
        await self._write(revision, blob)
        return result

    async def sign_in_locally(self, username: str) -> Profile:
        name = (username or "").strip()
        if not name:
            raise ValidationError("Username must not be empty")

        def mutate(profile: Profile, _: datetime) -> tuple[Profile, Profile]:
            if profile.auth_mode == "local" and profile.username == name:
                return profile, profile
            updated = profile.model_copy(update={"auth_mode": "local", "username": name})
            return updated, updated

        return await self._commit(mutate, default=self._profile)

    async def sign_out(self) -> Profile:
        def mutate(profile: Profile, _: datetime) -> tuple[Profile, Profile]:
            fresh = self._fresh_profile()
            return fresh, fresh

        return await self._commit(mutate, default=self._profile)

    async def add_or_update_entry(
        self,
        media: MediaRef | Mapping[str, Any],
        status: str,
        progress_delta: int = 0,
    ) -> TrackedEntry:
        ref = _validated(MediaRef, media)

        def mutate(profile: Profile, now: datetime) -> tuple[Profile, TrackedEntry]:
            return list_ops.add_or_update_entry(
                profile, ref, status, progress_delta, now=now
            )

        return await self._commit(mutate, default=None)  # type: ignore[arg-type]

    async def move_entry(self, media_id: int, from_status: str, to_status: str) -> bool:
        def mutate(profile: Profile, now: datetime) -> tuple[Profile, bool]:
            return (
                list_ops.move_entry(profile, media_id, from_status, to_status, now=now),
                True,
            )

        return await self._commit(mutate, default=False)

    async def remove_entry(self, media_id: int, status: str) -> bool:
        def mutate(profile: Profile, _: datetime) -> tuple[Profile, bool]:
            updated = list_ops.remove_entry(profile, media_id, status)
            return updated, updated is not profile

        return await self._commit(mutate, default=False)

    async def clear_status(self, status: str) -> int:
        def mutate(profile: Profile, _: datetime) -> tuple[Profile, int]:
            cleared = len(list_ops.entries_for(profile, status))
            return list_ops.clear_status(profile, status), cleared

        return await self._commit(mutate, default=0)

    async def add_reminder(self, reminder: Reminder | Mapping[str, Any]) -> Reminder:
        if isinstance(reminder, Mapping) and not reminder.get("id"):
            reminder = {**reminder, "id": str(uuid.uuid4())}
        candidate = _validated(Reminder, reminder)

        def mutate(profile: Profile, now: datetime) -> tuple[Profile, Reminder]:
            if profile.find_reminder(candidate.id) is not None:
                raise ValidationError(f"Reminder {candidate.id} already exists")
            created = candidate
            if created.created_at is None:
                created = created.model_copy(update={"created_at": now})
            return (
                profile.model_copy(update={"reminders": [*profile.reminders, created]}),
                created,
            )

        return await self._commit(mutate, default=candidate)

    async def update_reminder(
        self, reminder_id: str, changes: Mapping[str, Any]
    ) -> Reminder | None:
        def mutate(profile: Profile, _: datetime) -> tuple[Profile, Reminder]:
            existing = profile.find_reminder(reminder_id)
            if existing is None:
                raise NotFoundError(f"Reminder {reminder_id} does not exist")
            try:
                updated = _merge(existing, changes, keep=("id", "created_at"))
            except PydanticValidationError as exc:
                raise ValidationError(f"Invalid reminder update: {exc}") from exc
            if updated == existing:
                return profile, existing
            reminders = [
                updated if reminder.id == reminder_id else reminder
                for reminder in profile.reminders
            ]
            return profile.model_copy(update={"reminders": reminders}), updated

        return await self._commit(mutate, default=None)

    async def delete_reminder(self, reminder_id: str) -> bool:
        """Remove a reminder together with the notifications it raised."""

        def mutate(profile: Profile, _: datetime) -> tuple[Profile, bool]:
            if profile.find_reminder(reminder_id) is None:
                raise NotFoundError(f"Reminder {reminder_id} does not exist")
            reminders = [r for r in profile.reminders if r.id != reminder_id]
            notifications = [
                item
                for item in profile.notifications
                if item.key != ("reminder", reminder_id)
            ]
            return (
                profile.model_copy(
                    update={"reminders": reminders, "notifications": notifications}
                ),
                True,
            )

        return await self._commit(mutate, default=False)

    async def check_reminders(self) -> list[NotificationItem]:
        """Raise a notification for every reminder that is due now."""

        def mutate(profile: Profile, now: datetime) -> tuple[Profile, list[NotificationItem]]:
            completed = {entry.media_id for entry in list_ops.completed_entries(profile)}
            due = due_reminders(
                profile.reminders,
                profile.notifications,
                now,
                completed_media_ids=completed,
            )
            if not due:
                return profile, []
            created = [notification_ops.reminder_notification(r, now) for r in due]
            notifications = list(profile.notifications)
            for item in created:
                notifications = notification_ops.add_notification(notifications, item)
            logger.info("Raised %d reminder notifications", len(created))
            return profile.model_copy(update={"notifications": notifications}), created

        return await self._commit(mutate, default=[])

    async def add_notification(
        self, item: NotificationItem | Mapping[str, Any]
    ) -> NotificationItem:
        if isinstance(item, Mapping) and not item.get("id"):
            item = {**item, "id": str(uuid.uuid4())}
        notification = _validated(NotificationItem, item)

        def mutate(profile: Profile, _: datetime) -> tuple[Profile, NotificationItem]:
            notifications = notification_ops.add_notification(
                profile.notifications, notification
            )
            return _with_notifications(profile, notifications), notification

        return await self._commit(mutate, default=notification)

    async def mark_seen(self, notification_id: str) -> bool:
        def mutate(profile: Profile, now: datetime) -> tuple[Profile, bool]:
            updated = _with_notifications(
                profile,
                notification_ops.mark_seen(profile.notifications, notification_id, now=now),
            )
            return updated, updated is not profile

        return await self._commit(mutate, default=False)

    async def mark_all_seen(self) -> int:
        def mutate(profile: Profile, now: datetime) -> tuple[Profile, int]:
            count = notification_ops.count_unseen(profile.notifications)
            notifications = notification_ops.mark_all_seen(profile.notifications, now=now)
            return _with_notifications(profile, notifications), count

        return await self._commit(mutate, default=0)

    async def mark_all_seen_for_category(self, category: NotificationCategory) -> int:
        def mutate(profile: Profile, now: datetime) -> tuple[Profile, int]:
            count = notification_ops.count_unseen(
                profile.notifications, lambda item: item.category == category
            )
            notifications = notification_ops.mark_all_seen_for_category(
                profile.notifications, category, now=now
            )
            return _with_notifications(profile, notifications), count

        return await self._commit(mutate, default=0)

    async def clear_notifications(self, category: NotificationCategory | None = None) -> int:
        def mutate(profile: Profile, _: datetime) -> tuple[Profile, int]:
            remaining = notification_ops.clear_category(profile.notifications, category)
            removed = len(profile.notifications) - len(remaining)
            return _with_notifications(profile, remaining), removed

        return await self._commit(mutate, default=0)

    async def _toggle_news(
        self, section: NewsSection, article: NewsArticle | Mapping[str, Any]
    ) -> bool:
        parsed = _validated(NewsArticle, article)

        def mutate(profile: Profile, _: datetime) -> tuple[Profile, bool]:
            return list_ops.toggle_news(profile, section, parsed)

        return await self._commit(mutate, default=False)

    async def toggle_pinned_news(self, article: NewsArticle | Mapping[str, Any]) -> bool:
        return await self._toggle_news("pinned", article)

    async def toggle_favorite_news(self, article: NewsArticle | Mapping[str, Any]) -> bool:
        return await self._toggle_news("favorite", article)

    async def clear_news(self, section: NewsSection) -> None:
        def mutate(profile: Profile, _: datetime) -> tuple[Profile, None]:
            return list_ops.clear_news(profile, section), None

        await self._commit(mutate, default=None)

    async def toggle_followed_news(self, title: FollowedTitle | Mapping[str, Any]) -> bool:
        parsed = _validated(FollowedTitle, title)

        def mutate(profile: Profile, _: datetime) -> tuple[Profile, bool]:
            return list_ops.toggle_followed_title(profile, parsed)

        return await self._commit(mutate, default=False)

    async def set_episode_link(
        self, media_id: int, link: EpisodeLink | Mapping[str, Any] | None
    ) -> EpisodeLink | None:
        """Save or, with ``link=None``, forget the link template of a title."""

        parsed = _validated(EpisodeLink, link) if link is not None else None

        def mutate(profile: Profile, _: datetime) -> tuple[Profile, EpisodeLink | None]:
            return list_ops.set_episode_link(profile, media_id, parsed), parsed

        return await self._commit(mutate, default=parsed)

    async def set_excluded_items(self, root_id: int, mal_ids: Iterable[int]) -> list[int]:
        ids = list(mal_ids)

        def mutate(profile: Profile, _: datetime) -> tuple[Profile, list[int]]:
            updated = list_ops.set_excluded_items(profile, root_id, ids)
            return updated, list(updated.excluded_items.get(root_id, []))

        return await self._commit(mutate, default=[])

    async def update_layout(
        self, items: Iterable[LayoutItem | Mapping[str, Any]]
    ) -> list[LayoutItem]:
        layout = [_validated(LayoutItem, item) for item in items]

        def mutate(profile: Profile, _: datetime) -> tuple[Profile, list[LayoutItem]]:
            if layout == profile.layout:
                return profile, profile.layout
            updated = list_ops.update_layout(profile, layout)
            return updated, updated.layout

        return await self._commit(mutate, default=layout)

    async def set_hidden_genres(self, genres: object) -> list[str]:
        def mutate(profile: Profile, _: datetime) -> tuple[Profile, list[str]]:
            updated = list_ops.set_hidden_genres(profile, genres)
            if updated.hidden_genres == profile.hidden_genres:
                return profile, profile.hidden_genres
            return updated, updated.hidden_genres

        return await self._commit(mutate, default=[])

    async def import_backup(self, payload: bytes | str | Mapping[str, Any]) -> ImportResult:
        """Replace the whole profile with a decoded backup.

        An aborted import leaves the current profile untouched.
        """

        result = import_profile(payload)
        if not result.ok or result.profile is None:
            return result
        imported = result.profile

        def mutate(_: Profile, __: datetime) -> tuple[Profile, None]:
            return imported, None

        await self._commit(mutate, default=None)
        return result

    async def refresh_media(self, media_id: int) -> TrackedEntry | None:
        """Refresh the cached metadata of one tracked title from the catalog."""

        entry = list_ops.find_entry(self._profile, media_id)
        if self._catalog is None or entry is None:
            return None
        subject = _media_subject(media_id)
        token = self.requests.begin(subject)
        try:
            media = await self._catalog.fetch_media(media_id, entry.media.kind)
            if media is None or not self.requests.is_current(subject, token):
                return None
        finally:
            self.requests.finish(subject, token)

        def mutate(profile: Profile, now: datetime) -> tuple[Profile, TrackedEntry | None]:
            current = list_ops.find_entry(profile, media_id)
            if current is None:
                raise NotFoundError(f"Media {media_id} is no longer tracked")
            if current.media == media:
                return profile, current
            updated = list_ops.refresh_media(profile, media, now=now)
            return updated, list_ops.find_entry(updated, media_id)

        return await self._commit(mutate, default=None)

    async def check_for_updates(self) -> list[NotificationItem]:
        """Refresh active titles and notify about newly released units."""

        if self._catalog is None:
            return []
        active_statuses = set(ACTIVE_STATUS.values())
        targets: dict[str, list[int]] = {}
        for entry in self._profile.iter_entries():
            if entry.status in active_statuses:
                targets.setdefault(entry.media.kind, []).append(entry.media_id)
        if not targets:
            return []

        # One token per title; a later refresh of that title supersedes it.
        tokens = {
            media_id: self.requests.begin(_media_subject(media_id))
            for media_ids in targets.values()
            for media_id in media_ids
        }
        try:
            fetched: list[MediaRef] = []
            for kind, media_ids in targets.items():
                fetched.extend(dedupe(await self._catalog.fetch_many(media_ids, kind)))
            fresh = [
                media
                for media in fetched
                if media.id in tokens
                and self.requests.is_current(_media_subject(media.id), tokens[media.id])
            ]
        finally:
            for media_id, token in tokens.items():
                self.requests.finish(_media_subject(media_id), token)
        if len(fresh) < len(fetched):
            logger.info(
                "Discarding %d superseded update results", len(fetched) - len(fresh)
            )
        if not fresh:
            return []

        def mutate(profile: Profile, now: datetime) -> tuple[Profile, list[NotificationItem]]:
            created: list[NotificationItem] = []
            for media in fresh:
                entry = list_ops.find_entry(profile, media.id)
                if entry is None or entry.status not in active_statuses:
                    continue
                if entry.media == media:
                    continue
                previous = entry.media.total
                profile = list_ops.refresh_media(profile, media, now=now)
                if previous is not None and media.total is not None and media.total > previous:
                    item = notification_ops.update_notification(
                        media, media.total - previous, now
                    )
                    profile = profile.model_copy(
                        update={
                            "notifications": notification_ops.add_notification(
                                profile.notifications, item
                            )
                        }
                    )
                    created.append(item)
            return profile, created

        created = await self._commit(mutate, default=[])
        if created:
            logger.info("Found new releases for %d tracked titles", len(created))
        return created
