"""Mutations over the per-status tracked media buckets.

Every function takes a profile snapshot and returns a new one; the input is
never modified. A media id lives in at most one bucket. The ``completed`` and
``read`` buckets are stored explicitly; progress changes that cross the total
move entries in or out of them.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Literal

from .errors import NotFoundError, ValidationError
from .models import (
    ACTIVE_STATUS,
    COMPLETION_STATUS,
    LIST_STATUSES,
    EpisodeLink,
    FollowedTitle,
    LayoutItem,
    ListStatus,
    MediaRef,
    NewsArticle,
    Profile,
    TrackedEntry,
    status_kind,
)
from .utils import ensure_string_array

NewsSection = Literal["pinned", "favorite"]

Lists = dict[ListStatus, list[TrackedEntry]]


def classify_completion(entry: TrackedEntry) -> bool:
    """Return whether the entry's progress has reached a known total."""

    total = entry.media.total
    if total is None or total <= 0:
        return False
    return entry.progress >= total


def clamp_progress(progress: int, total: int | None) -> int:
    progress = max(0, progress)
    if total is not None and total > 0:
        progress = min(progress, total)
    return progress


def _check_status(status: str) -> ListStatus:
    if status not in LIST_STATUSES:
        raise ValidationError(f"Unknown list status {status!r}")
    return status  # type: ignore[return-value]


def _copy_lists(profile: Profile) -> Lists:
    return {status: list(profile.bucket(status)) for status in LIST_STATUSES}


def _locate(lists: Lists, media_id: int) -> tuple[TrackedEntry | None, ListStatus | None]:
    for status in LIST_STATUSES:
        for entry in lists[status]:
            if entry.media_id == media_id:
                return entry, status
    return None, None


def _detach(lists: Lists, media_id: int) -> None:
    for status in LIST_STATUSES:
        if any(entry.media_id == media_id for entry in lists[status]):
            lists[status] = [e for e in lists[status] if e.media_id != media_id]


def _place(lists: Lists, entry: TrackedEntry) -> None:
    """Put ``entry`` into its status bucket, keeping its position if already there."""

    bucket = lists[entry.status]
    for index, existing in enumerate(bucket):
        if existing.media_id == entry.media_id:
            bucket[index] = entry
            return
    _detach(lists, entry.media_id)
    lists[entry.status].append(entry)


def _reconcile(lists: Lists, entry: TrackedEntry, now: datetime) -> TrackedEntry:
    kind = entry.media.kind
    done = COMPLETION_STATUS[kind]
    target: ListStatus | None = None
    if classify_completion(entry):
        if entry.status != done:
            target = done
    elif entry.status == done and entry.media.total:
        target = ACTIVE_STATUS[kind]
    if target is None:
        return entry
    moved = entry.model_copy(update={"status": target, "updated_at": now})
    _place(lists, moved)
    return moved


def find_entry(profile: Profile, media_id: int) -> TrackedEntry | None:
    for entry in profile.iter_entries():
        if entry.media_id == media_id:
            return entry
    return None


def entries_for(profile: Profile, status: str) -> list[TrackedEntry]:
    return list(profile.bucket(_check_status(status)))


def completed_entries(profile: Profile) -> list[TrackedEntry]:
    """Entries of the completion buckets, anime first."""

    return [
        entry
        for status in (COMPLETION_STATUS["anime"], COMPLETION_STATUS["manga"])
        for entry in profile.bucket(status)
    ]


def add_or_update_entry(
    profile: Profile,
    media: MediaRef,
    status: str,
    progress_delta: int = 0,
    *,
    now: datetime,
) -> tuple[Profile, TrackedEntry]:
    """Create or update the entry for ``media`` in ``status``.

    An entry found in another bucket is relocated first, keeping its
    progress. The resulting progress is clamped to ``[0, total]``.
    """

    target = _check_status(status)
    if status_kind(target) != media.kind:
        raise ValidationError(f"{media.kind} titles cannot be listed as {target!r}")

    lists = _copy_lists(profile)
    existing, _ = _locate(lists, media.id)
    previous = existing.progress if existing is not None else 0
    progress = clamp_progress(previous + progress_delta, media.total)

    if existing is None:
        entry = TrackedEntry(
            media=media,
            status=target,
            progress=progress,
            created_at=now,
            updated_at=now,
        )
    else:
        entry = existing.model_copy(
            update={
                "media": media,
                "status": target,
                "progress": progress,
                "updated_at": now,
            }
        )
    _place(lists, entry)
    if progress != previous:
        entry = _reconcile(lists, entry, now)
    return profile.model_copy(update={"lists": lists}), entry


def move_entry(
    profile: Profile,
    media_id: int,
    from_status: str,
    to_status: str,
    *,
    now: datetime,
) -> Profile:
    """Relocate an entry between buckets, preserving its progress."""

    source = _check_status(from_status)
    target = _check_status(to_status)
    entry = next((e for e in profile.bucket(source) if e.media_id == media_id), None)
    if entry is None:
        raise NotFoundError(f"Media {media_id} is not in {source!r}")
    if status_kind(target) != entry.media.kind:
        raise ValidationError(f"{entry.media.kind} titles cannot be listed as {target!r}")
    if source == target:
        return profile

    lists = _copy_lists(profile)
    _place(lists, entry.model_copy(update={"status": target, "updated_at": now}))
    return profile.model_copy(update={"lists": lists})


def remove_entry(profile: Profile, media_id: int, status: str) -> Profile:
    """Drop an entry from one bucket; absent entries leave the profile as is."""

    target = _check_status(status)
    bucket = profile.bucket(target)
    if not any(entry.media_id == media_id for entry in bucket):
        return profile
    lists = _copy_lists(profile)
    lists[target] = [entry for entry in bucket if entry.media_id != media_id]
    return profile.model_copy(update={"lists": lists})


def clear_status(profile: Profile, status: str) -> Profile:
    target = _check_status(status)
    if not profile.bucket(target):
        return profile
    lists = _copy_lists(profile)
    lists[target] = []
    return profile.model_copy(update={"lists": lists})


def refresh_media(profile: Profile, media: MediaRef, *, now: datetime) -> Profile:
    """Replace the cached metadata of a tracked title."""

    lists = _copy_lists(profile)
    existing, _ = _locate(lists, media.id)
    if existing is None:
        return profile
    progress = clamp_progress(existing.progress, media.total)
    entry = existing.model_copy(
        update={"media": media, "progress": progress, "updated_at": now}
    )
    _place(lists, entry)
    if progress != existing.progress:
        _reconcile(lists, entry, now)
    return profile.model_copy(update={"lists": lists})


def normalize_lists(lists: dict[str, Iterable[TrackedEntry]]) -> tuple[Lists, list[str]]:
    """Re-establish single membership and bucket/status agreement.

    Returns the cleaned buckets and a description of each dropped or fixed
    entry. The first occurrence of a media id wins.
    """

    cleaned: Lists = {status: [] for status in LIST_STATUSES}
    issues: list[str] = []
    seen: set[int] = set()
    for status in LIST_STATUSES:
        for entry in lists.get(status, ()):
            if entry.media_id in seen:
                issues.append(f"lists.{status}: duplicate media {entry.media_id} dropped")
                continue
            if status_kind(status) != entry.media.kind:
                issues.append(f"lists.{status}: {entry.media.kind} media {entry.media_id} dropped")
                continue
            if entry.status != status:
                issues.append(f"lists.{status}: status of media {entry.media_id} corrected")
                entry = entry.model_copy(update={"status": status})
            seen.add(entry.media_id)
            cleaned[status].append(entry)
    return cleaned, issues


def _toggle_article(
    articles: list[NewsArticle], article: NewsArticle
) -> tuple[list[NewsArticle], bool]:
    if any(existing.mal_id == article.mal_id for existing in articles):
        return [existing for existing in articles if existing.mal_id != article.mal_id], False
    return [*articles, article], True


def toggle_news(
    profile: Profile, section: NewsSection, article: NewsArticle
) -> tuple[Profile, bool]:
    """Pin/unpin or favorite/unfavorite ``article``; returns the new state."""

    field = _news_field(section)
    articles, active = _toggle_article(getattr(profile, field), article)
    return profile.model_copy(update={field: articles}), active


def clear_news(profile: Profile, section: NewsSection) -> Profile:
    field = _news_field(section)
    if not getattr(profile, field):
        return profile
    return profile.model_copy(update={field: []})


def _news_field(section: str) -> str:
    if section == "pinned":
        return "pinned_news"
    if section == "favorite":
        return "favorite_news"
    raise ValidationError(f"Unknown news section {section!r}")


def toggle_followed_title(profile: Profile, title: FollowedTitle) -> tuple[Profile, bool]:
    """Follow or unfollow the news of ``title``; returns whether it is followed."""

    followed = profile.followed_anime_for_news
    if any(existing.id == title.id for existing in followed):
        remaining = [existing for existing in followed if existing.id != title.id]
        return profile.model_copy(update={"followed_anime_for_news": remaining}), False
    return (
        profile.model_copy(update={"followed_anime_for_news": [*followed, title]}),
        True,
    )


def set_episode_link(profile: Profile, media_id: int, link: EpisodeLink | None) -> Profile:
    """Store the link template for ``media_id``, or drop it when ``link`` is None."""

    links = dict(profile.custom_episode_links)
    if link is None:
        if media_id not in links:
            return profile
        del links[media_id]
    elif links.get(media_id) == link:
        return profile
    else:
        links[media_id] = link
    return profile.model_copy(update={"custom_episode_links": links})


def set_excluded_items(profile: Profile, root_id: int, mal_ids: Iterable[int]) -> Profile:
    cleaned: list[int] = []
    for mal_id in mal_ids:
        if mal_id not in cleaned:
            cleaned.append(mal_id)
    excluded = dict(profile.excluded_items)
    if excluded.get(root_id, []) == cleaned:
        return profile
    if cleaned:
        excluded[root_id] = cleaned
    else:
        excluded.pop(root_id, None)
    return profile.model_copy(update={"excluded_items": excluded})


def update_layout(profile: Profile, items: Iterable[LayoutItem]) -> Profile:
    layout = list(items)
    ids = [item.id for item in layout]
    if len(set(ids)) != len(ids):
        raise ValidationError("Layout section ids must be unique")
    return profile.model_copy(update={"layout": layout})


def set_hidden_genres(profile: Profile, genres: object) -> Profile:
    cleaned: list[str] = []
    for genre in ensure_string_array(genres):
        genre = genre.strip()
        if genre and genre not in cleaned:
            cleaned.append(genre)
    return profile.model_copy(update={"hidden_genres": cleaned})
