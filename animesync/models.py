"""Pydantic models describing the local profile."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Literal

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from .home_sections import HOME_SECTIONS, SENSITIVE_GENRES
from .scheduler import sanitize_weekdays

MediaKind = Literal["anime", "manga"]
ListStatus = Literal[
    "watching",
    "completed",
    "plan-to-watch",
    "reading",
    "read",
    "plan-to-read",
]
NotificationCategory = Literal["news", "update", "reminder"]
AuthMode = Literal["none", "local"]

ANIME_STATUSES: tuple[ListStatus, ...] = ("watching", "completed", "plan-to-watch")
MANGA_STATUSES: tuple[ListStatus, ...] = ("reading", "read", "plan-to-read")
LIST_STATUSES: tuple[ListStatus, ...] = ANIME_STATUSES + MANGA_STATUSES
NOTIFICATION_CATEGORIES: tuple[NotificationCategory, ...] = ("news", "update", "reminder")

ACTIVE_STATUS: dict[str, ListStatus] = {"anime": "watching", "manga": "reading"}
COMPLETION_STATUS: dict[str, ListStatus] = {"anime": "completed", "manga": "read"}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _ensure_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


Instant = Annotated[datetime, AfterValidator(_ensure_aware)]


def status_kind(status: str) -> MediaKind:
    """Return the media kind whose lists contain ``status``."""

    if status in ANIME_STATUSES:
        return "anime"
    if status in MANGA_STATUSES:
        return "manga"
    raise ValueError(f"Unknown list status {status!r}")


def _normalize_kind(value: object) -> object:
    if isinstance(value, str):
        return value.strip().lower()
    return value


class SnapshotModel(BaseModel):
    """Base model using camelCase JSON names and snake_case attributes."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


class MediaRef(SnapshotModel):
    """Identity and display metadata for a trackable title."""

    id: int = Field(ge=1)
    mal_id: int | None = None
    title: str = ""
    kind: MediaKind = "anime"
    total: int | None = None
    image_url: str | None = None

    @field_validator("kind", mode="before")
    @classmethod
    def _lower_kind(cls, value: object) -> object:
        return _normalize_kind(value)

    @field_validator("total", mode="before")
    @classmethod
    def _unknown_total(cls, value: object) -> object:
        """Zero or negative unit counts mean the total is not known yet."""

        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, (int, float)) and value <= 0:
            return None
        return value

    @property
    def unit_label(self) -> str:
        return "chapters" if self.kind == "manga" else "episodes"


class TrackedEntry(SnapshotModel):
    """A media reference together with list membership and progress."""

    media: MediaRef
    status: ListStatus
    progress: int = 0
    created_at: Instant = Field(default_factory=utcnow)
    updated_at: Instant = Field(default_factory=utcnow)

    @field_validator("progress", mode="before")
    @classmethod
    def _non_negative(cls, value: object) -> object:
        if isinstance(value, (int, float)) and not isinstance(value, bool) and value < 0:
            return 0
        return value

    @model_validator(mode="after")
    def _clamp_to_total(self) -> "TrackedEntry":
        total = self.media.total
        if total is not None and self.progress > total:
            self.progress = total
        return self

    @property
    def media_id(self) -> int:
        return self.media.id


class Reminder(SnapshotModel):
    """A release reminder, optionally repeating on weekdays."""

    id: str = Field(min_length=1)
    media_id: int
    media_type: MediaKind = "anime"
    title: str
    start_date_time: Instant
    repeat_on_days: list[int] = Field(default_factory=list)
    notes: str = ""
    media_title: str = ""
    media_image: str | None = None
    auto_stop_on_completion: bool = False
    created_at: Instant | None = None

    @field_validator("media_type", mode="before")
    @classmethod
    def _lower_media_type(cls, value: object) -> object:
        return _normalize_kind(value)

    @field_validator("repeat_on_days", mode="before")
    @classmethod
    def _clean_weekdays(cls, value: object) -> list[int]:
        return sanitize_weekdays(value)

    @property
    def is_recurring(self) -> bool:
        return bool(self.repeat_on_days)


class NotificationItem(SnapshotModel):
    """A dismissible unread signal shown to the user."""

    id: str = Field(min_length=1)
    category: NotificationCategory
    subject_id: str = Field(min_length=1)
    seen: bool = False
    media_id: int | None = None
    title: str = ""
    message: str = ""
    created_at: Instant = Field(default_factory=utcnow)
    seen_at: Instant | None = None

    @field_validator("subject_id", mode="before")
    @classmethod
    def _stringify_subject(cls, value: object) -> object:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @property
    def key(self) -> tuple[str, str]:
        return self.category, self.subject_id


class NewsArticle(SnapshotModel):
    """A news article pinned or favorited by the user."""

    mal_id: int
    title: str = ""
    url: str = ""
    date: Instant | None = None
    image_url: str | None = None
    excerpt: str = ""



class FollowedTitle(SnapshotModel):
    """An anime whose news feed the user follows."""

    id: int = Field(ge=1)
    title: str = ""
    image: str = ""


class EpisodeLink(SnapshotModel):
    """A streaming URL template where ``{}`` stands for the unit number."""

    template: str = Field(min_length=1)
    ongoing: bool = False


class LayoutItem(SnapshotModel):
    """One section of the home page layout."""

    id: str = Field(min_length=1)
    visible: bool = True
    custom_title: str | None = None
    title_key: str = ""
    kind: MediaKind = "anime"

    @field_validator("kind", mode="before")
    @classmethod
    def _lower_kind(cls, value: object) -> object:
        return _normalize_kind(value)


def empty_lists() -> dict[ListStatus, list[TrackedEntry]]:
    return {status: [] for status in LIST_STATUSES}


def default_layout() -> list[LayoutItem]:
    return [
        LayoutItem(
            id=definition.key,
            visible=definition.visible,
            title_key=definition.title_key,
            kind=definition.kind,
        )
        for definition in HOME_SECTIONS
    ]


class Profile(SnapshotModel):
    """The complete local user state."""

    auth_mode: AuthMode = "none"
    username: str = ""
    lists: dict[ListStatus, list[TrackedEntry]] = Field(default_factory=empty_lists)
    pinned_news: list[NewsArticle] = Field(default_factory=list)
    favorite_news: list[NewsArticle] = Field(default_factory=list)
    notifications: list[NotificationItem] = Field(default_factory=list)
    reminders: list[Reminder] = Field(default_factory=list)
    layout: list[LayoutItem] = Field(default_factory=default_layout)
    hidden_genres: list[str] = Field(default_factory=lambda: list(SENSITIVE_GENRES))
    followed_anime_for_news: list[FollowedTitle] = Field(default_factory=list)
    # root media id -> MAL ids hidden from its relations
    excluded_items: dict[int, list[int]] = Field(default_factory=dict)
    custom_episode_links: dict[int, EpisodeLink] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _all_buckets_present(self) -> "Profile":
        for status in LIST_STATUSES:
            self.lists.setdefault(status, [])
        return self

    def bucket(self, status: ListStatus) -> list[TrackedEntry]:
        return self.lists.get(status, [])

    def iter_entries(self):
        for status in LIST_STATUSES:
            yield from self.bucket(status)

    def find_reminder(self, reminder_id: str) -> Reminder | None:
        for reminder in self.reminders:
            if reminder.id == reminder_id:
                return reminder
        return None
