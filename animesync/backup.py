"""Versioned JSON export and tolerant import of the local profile."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Mapping, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .lists import normalize_lists
from .models import (
    LIST_STATUSES,
    EpisodeLink,
    FollowedTitle,
    LayoutItem,
    NewsArticle,
    NotificationItem,
    Profile,
    Reminder,
    TrackedEntry,
    default_layout,
)
from .notifications import unique_notifications
from .utils import coerce_int, ensure_string_array, parse_json_object

logger = logging.getLogger(__name__)

BACKUP_VERSION = 1

ModelT = TypeVar("ModelT", bound=BaseModel)


@dataclass(slots=True)
class ImportResult:
    """Outcome of decoding a backup document.

    ``ok`` is false only when the payload could not be read at all, in which
    case ``profile`` is ``None``. ``recovered`` marks documents that decoded
    after dropping or defaulting something listed in ``issues``.
    """

    ok: bool
    profile: Profile | None = None
    recovered: bool = False
    issues: list[str] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {"ok": self.ok, "recovered": self.recovered, "issues": list(self.issues)}


def _dump(models: Iterable[BaseModel]) -> list[dict[str, Any]]:
    return [model.model_dump(mode="json", by_alias=True) for model in models]


def export_profile(profile: Profile) -> dict[str, Any]:
    return {
        "version": BACKUP_VERSION,
        "profile": {"authMode": profile.auth_mode, "username": profile.username},
        "lists": {status: _dump(profile.bucket(status)) for status in LIST_STATUSES},
        "reminders": _dump(profile.reminders),
        "notifications": _dump(profile.notifications),
        "pinnedNews": _dump(profile.pinned_news),
        "favoriteNews": _dump(profile.favorite_news),
        "layout": _dump(profile.layout),
        "hiddenGenres": list(profile.hidden_genres),
        "followedAnimeForNews": _dump(profile.followed_anime_for_news),
        "excludedItems": {
            str(root_id): list(mal_ids) for root_id, mal_ids in profile.excluded_items.items()
        },
        "customEpisodeLinks": {
            str(media_id): link.model_dump(mode="json", by_alias=True)
            for media_id, link in profile.custom_episode_links.items()
        },
    }


def dumps_backup(profile: Profile, *, indent: int | None = 2) -> str:
    return json.dumps(export_profile(profile), indent=indent, ensure_ascii=False)


def backup_filename(now: datetime) -> str:
    return f"animesync_data_{now:%Y-%m-%d}.json"


def _array(value: Any, path: str, issues: list[str]) -> list[Any]:
    if value is None:
        issues.append(f"{path}: missing, defaulted to []")
        return []
    if not isinstance(value, list):
        issues.append(f"{path}: expected an array, got {type(value).__name__}")
        return []
    return value


def _decode_items(
    model: type[ModelT],
    items: list[Any],
    path: str,
    issues: list[str],
    defaults: Mapping[str, Any] | None = None,
) -> list[ModelT]:
    decoded: list[ModelT] = []
    for index, item in enumerate(items):
        if defaults and isinstance(item, Mapping):
            item = {**defaults, **item}
        try:
            decoded.append(model.model_validate(item))
        except PydanticValidationError as exc:
            issues.append(f"{path}[{index}]: dropped ({exc.error_count()} invalid fields)")
    return decoded


def _decode_header(value: Any, issues: list[str]) -> dict[str, Any]:
    header: dict[str, Any] = {"auth_mode": "none", "username": ""}
    if value is None:
        issues.append("profile: missing, signed out")
        return header
    if not isinstance(value, Mapping):
        issues.append("profile: expected an object")
        return header
    auth_mode = value.get("authMode", "none")
    if auth_mode in ("none", "local"):
        header["auth_mode"] = auth_mode
    else:
        issues.append(f"profile.authMode: unsupported value {auth_mode!r}")
    username = value.get("username", "")
    if isinstance(username, str):
        header["username"] = username
    else:
        issues.append("profile.username: expected a string")
    return header


def _decode_lists(value: Any, issues: list[str]) -> dict[str, list[TrackedEntry]]:
    if not isinstance(value, Mapping):
        issues.append("lists: expected an object, all lists emptied")
        value = {}
    decoded = {
        status: _decode_items(
            TrackedEntry,
            _array(value.get(status), f"lists.{status}", issues),
            f"lists.{status}",
            issues,
            defaults={"status": status},
        )
        for status in LIST_STATUSES
    }
    lists, list_issues = normalize_lists(decoded)
    issues.extend(list_issues)
    return lists


def _decode_layout(value: Any, issues: list[str]) -> list[LayoutItem]:
    if value is None:
        issues.append("layout: missing, default layout restored")
        return default_layout()
    items = _decode_items(LayoutItem, _array(value, "layout", issues), "layout", issues)
    seen: set[str] = set()
    layout: list[LayoutItem] = []
    for item in items:
        if item.id in seen:
            issues.append(f"layout: duplicate section {item.id!r} dropped")
            continue
        seen.add(item.id)
        layout.append(item)
    return layout


def _decode_notifications(value: Any, issues: list[str]) -> list[NotificationItem]:
    items = _decode_items(
        NotificationItem,
        _array(value, "notifications", issues),
        "notifications",
        issues,
    )
    unique = unique_notifications(items)
    if len(unique) != len(items):
        issues.append(f"notifications: {len(items) - len(unique)} duplicates dropped")
    return unique


def _decode_hidden_genres(value: Any, issues: list[str]) -> list[str]:
    raw = _array(value, "hiddenGenres", issues)
    genres = ensure_string_array(raw)
    if len(genres) != len(raw):
        issues.append(f"hiddenGenres: {len(raw) - len(genres)} non-string values dropped")
    return genres


def _optional_object(value: Any, path: str, issues: list[str]) -> Mapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        issues.append(f"{path}: expected an object, got {type(value).__name__}")
        return {}
    return value


def _media_id_key(key: Any) -> int | None:
    media_id = coerce_int(key)
    if media_id is None or media_id < 1:
        return None
    return media_id


def _decode_followed(value: Any, issues: list[str]) -> list[FollowedTitle]:
    if value is None:
        return []
    items = _decode_items(
        FollowedTitle,
        _array(value, "followedAnimeForNews", issues),
        "followedAnimeForNews",
        issues,
    )
    seen: set[int] = set()
    followed: list[FollowedTitle] = []
    for item in items:
        if item.id in seen:
            issues.append(f"followedAnimeForNews: duplicate title {item.id} dropped")
            continue
        seen.add(item.id)
        followed.append(item)
    return followed


def _decode_excluded_items(value: Any, issues: list[str]) -> dict[int, list[int]]:
    excluded: dict[int, list[int]] = {}
    for key, raw in _optional_object(value, "excludedItems", issues).items():
        root_id = _media_id_key(key)
        if root_id is None or not isinstance(raw, list):
            issues.append(f"excludedItems.{key}: dropped")
            continue
        mal_ids: list[int] = []
        for item in raw:
            if isinstance(item, int) and not isinstance(item, bool) and item not in mal_ids:
                mal_ids.append(item)
        if len(mal_ids) != len(raw):
            issues.append(f"excludedItems.{key}: {len(raw) - len(mal_ids)} values dropped")
        if mal_ids:
            excluded[root_id] = mal_ids
    return excluded


def _decode_episode_links(value: Any, issues: list[str]) -> dict[int, EpisodeLink]:
    links: dict[int, EpisodeLink] = {}
    for key, raw in _optional_object(value, "customEpisodeLinks", issues).items():
        media_id = _media_id_key(key)
        if media_id is None:
            issues.append(f"customEpisodeLinks.{key}: dropped")
            continue
        try:
            links[media_id] = EpisodeLink.model_validate(raw)
        except PydanticValidationError as exc:
            issues.append(
                f"customEpisodeLinks.{key}: dropped ({exc.error_count()} invalid fields)"
            )
    return links


def import_profile(payload: bytes | str | Mapping[str, Any]) -> ImportResult:
    """Decode a backup document into a fresh profile.

    Unreadable payloads abort with ``ok=False``. Anything else decodes, with
    malformed sections defaulted and invalid items dropped.
    The followed-news list and the excluded-item and episode-link maps may
    be absent without counting as a recovery.
    """

    if isinstance(payload, Mapping):
        document: Mapping[str, Any] = payload
    elif isinstance(payload, (bytes, bytearray, str)):
        try:
            document = parse_json_object(payload)
        except ValueError as exc:
            logger.warning("Rejected backup document: %s", exc)
            return ImportResult(ok=False, issues=[str(exc)])
    else:
        return ImportResult(
            ok=False, issues=[f"Unsupported backup payload type {type(payload).__name__}"]
        )

    issues: list[str] = []
    version = document.get("version")
    if version is None:
        issues.append("version: missing, assuming 1")
    elif version != BACKUP_VERSION:
        issues.append(f"version: unsupported value {version!r}, decoding as {BACKUP_VERSION}")

    header = _decode_header(document.get("profile"), issues)
    profile = Profile(
        **header,
        lists=_decode_lists(document.get("lists"), issues),
        reminders=_decode_items(
            Reminder, _array(document.get("reminders"), "reminders", issues), "reminders", issues
        ),
        notifications=_decode_notifications(document.get("notifications"), issues),
        pinned_news=_decode_items(
            NewsArticle,
            _array(document.get("pinnedNews"), "pinnedNews", issues),
            "pinnedNews",
            issues,
        ),
        favorite_news=_decode_items(
            NewsArticle,
            _array(document.get("favoriteNews"), "favoriteNews", issues),
            "favoriteNews",
            issues,
        ),
        layout=_decode_layout(document.get("layout"), issues),
        hidden_genres=_decode_hidden_genres(document.get("hiddenGenres"), issues),
        followed_anime_for_news=_decode_followed(
            document.get("followedAnimeForNews"), issues
        ),
        excluded_items=_decode_excluded_items(document.get("excludedItems"), issues),
        custom_episode_links=_decode_episode_links(
            document.get("customEpisodeLinks"), issues
        ),
    )
    if issues:
        logger.info("Backup imported with %d recovered issues", len(issues))
    return ImportResult(ok=True, profile=profile, recovered=bool(issues), issues=issues)
