"""Deduplication of media records gathered from paginated fetches."""

from __future__ import annotations

from typing import Any, Hashable, Iterable, Mapping, TypeVar

T = TypeVar("T")


def _field(record: Any, *names: str) -> Any:
    for name in names:
        if isinstance(record, Mapping):
            value = record.get(name)
        else:
            value = getattr(record, name, None)
        if value not in (None, "", 0):
            return value
    return None


def media_key(record: Any) -> Hashable | None:
    """Return the canonical id of a media record, falling back to the MAL id."""

    return _field(record, "id") or _field(record, "mal_id", "malId")


def recommendation_key(record: Any) -> Hashable | None:
    """Return the composite key of a paired community recommendation.

    Both referenced media ids and the contributing username are part of the
    key, so distinct users recommending the same pair are kept apart.
    """

    entries = _field(record, "entry", "entries")
    if not isinstance(entries, (list, tuple)) or len(entries) < 2:
        return None
    user = _field(record, "user")
    username = _field(user, "username") if user is not None else None
    return (media_key(entries[0]), media_key(entries[1]), username)


def _unique(records: Iterable[T] | None, key_fn) -> list[T]:
    if not records:
        return []
    seen: set[Hashable] = set()
    result: list[T] = []
    for record in records:
        if record is None:
            continue
        key = key_fn(record)
        if key is None:
            continue
        try:
            if key in seen:
                continue
        except TypeError:
            # unhashable id, e.g. a list or object from a malformed page
            continue
        seen.add(key)
        result.append(record)
    return result


def dedupe(media_list: Iterable[T] | None) -> list[T]:
    """Return media records unique by id, in first-seen order.

    Records without any usable id, including non-scalar ids, are dropped.
    """

    return _unique(media_list, media_key)


def dedupe_recommendations(records: Iterable[T] | None) -> list[T]:
    """Return recommendation records unique by media pair and user."""

    return _unique(records, recommendation_key)
