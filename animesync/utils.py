"""Utility helpers for the AnimeSync engine."""

from __future__ import annotations

import json
import re
import unicodedata
from typing import Any


def slugify(value: str) -> str:
    """Return a filename-friendly slug."""

    value = unicodedata.normalize("NFKD", value)
    value = value.encode("ascii", "ignore").decode("ascii")
    value = re.sub(r"[^a-zA-Z0-9]+", "-", value)
    value = value.strip("-")
    value = re.sub(r"-+", "-", value)
    return value.lower()


def parse_json_object(payload: bytes | str) -> dict[str, Any]:
    """Parse a JSON document whose top level must be an object."""

    if isinstance(payload, (bytes, bytearray)):
        try:
            text = bytes(payload).decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise ValueError("Payload is not valid UTF-8") from exc
    else:
        text = payload.lstrip("\ufeff")

    if not text.strip():
        raise ValueError("Payload is empty")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON payload: {exc.msg}") from exc
    except RecursionError as exc:
        raise ValueError("Payload is nested too deeply") from exc
    if not isinstance(data, dict):
        raise ValueError("Top-level JSON value must be an object")
    return data


def ensure_string_array(value: Any) -> list[str]:
    """Return only the string members of ``value`` when it is a list."""

    if not isinstance(value, (list, tuple)):
        return []
    return [item for item in value if isinstance(item, str)]


def coerce_int(value: Any, *, default: int | None = None) -> int | None:
    if isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default
