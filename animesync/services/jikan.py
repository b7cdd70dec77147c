"""Client for the public Jikan (MyAnimeList) REST API."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Sequence

import httpx

from ..config import Settings
from ..dedup import dedupe
from ..models import MediaRef
from ..utils import coerce_int, slugify

logger = logging.getLogger(__name__)


class JikanClient:
    """Thin wrapper around the Jikan v4 endpoints used for tracking."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client
        self._max_retries = 3
        self._semaphore = asyncio.Semaphore(3)

    async def _get(self, path: str, *, params: dict[str, Any] | None = None) -> Any:
        """Return the decoded ``data`` member of a Jikan response, or ``None``."""

        attempt = 0
        while True:
            try:
                async with self._semaphore:
                    response = await self._client.get(path, params=params)
            except httpx.HTTPError as exc:
                attempt += 1
                if attempt <= self._max_retries:
                    backoff = min(2 ** (attempt - 1), 5) + (0.1 * attempt)
                    logger.info(
                        "Transient error talking to Jikan (%s). Retrying %s in %.1fs",
                        exc.__class__.__name__,
                        path,
                        backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                logger.warning("Failed to fetch %s from Jikan: %s", path, exc)
                return None

            if response.status_code == 429 or 500 <= response.status_code < 600:
                attempt += 1
                if attempt <= self._max_retries:
                    backoff = min(2 ** (attempt - 1), 5) + (0.1 * attempt)
                    logger.info(
                        "Jikan returned %s for %s. Retrying in %.1fs",
                        response.status_code,
                        path,
                        backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                logger.warning(
                    "Failed to fetch %s from Jikan: HTTP %s", path, response.status_code
                )
                return None
            break

        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            logger.warning(
                "Jikan rejected %s with HTTP %s: %s",
                path,
                response.status_code,
                response.text,
            )
            return None

        try:
            payload = response.json()
        except ValueError:
            logger.warning("Unexpected non-JSON Jikan response for %s", path)
            return None
        if not isinstance(payload, dict):
            logger.warning("Unexpected Jikan response structure for %s", path)
            return None
        return payload.get("data")

    async def fetch_media(self, media_id: int, kind: str = "anime") -> MediaRef | None:
        data = await self._get(f"/{self._kind(kind)}/{int(media_id)}")
        if not isinstance(data, dict):
            return None
        return self.media_from_payload(data, kind)

    async def fetch_many(self, media_ids: Sequence[int], kind: str = "anime") -> list[MediaRef]:
        """Fetch several titles one request at a time, skipping failures."""

        results: list[MediaRef] = []
        for media_id in dict.fromkeys(media_ids):
            media = await self.fetch_media(media_id, kind)
            if media is not None:
                results.append(media)
        return results

    async def search(self, query: str, page: int = 1, kind: str = "anime") -> list[MediaRef]:
        """Search titles, listing exact title matches first."""

        normalized = (query or "").strip()
        if not normalized:
            return []
        resolved_kind = self._kind(kind)
        data = await self._get(
            f"/{resolved_kind}",
            params={
                "q": normalized,
                "page": max(1, int(page)),
                "limit": self._settings.catalog_page_limit,
            },
        )
        results = self._media_list(data, resolved_kind)
        target = slugify(normalized)
        exact = [media for media in results if slugify(media.title) == target]
        return exact + [media for media in results if media not in exact]

    async def list_page(self, path: str, page: int = 1) -> list[MediaRef]:
        """Return one page of a listing endpoint such as ``top/anime``."""

        cleaned = "/" + path.strip().strip("/")
        kind = "manga" if "manga" in cleaned.split("/") else "anime"
        data = await self._get(
            cleaned,
            params={"page": max(1, int(page)), "limit": self._settings.catalog_page_limit},
        )
        return self._media_list(data, kind)

    def _media_list(self, data: Any, kind: str) -> list[MediaRef]:
        if not isinstance(data, list):
            return []
        results: list[MediaRef] = []
        for item in data:
            if not isinstance(item, dict):
                continue
            media = self.media_from_payload(item, kind)
            if media is not None:
                results.append(media)
        return dedupe(results)

    @staticmethod
    def _kind(kind: str) -> str:
        return "manga" if str(kind).strip().lower() == "manga" else "anime"

    @classmethod
    def media_from_payload(cls, item: dict[str, Any], kind: str) -> MediaRef | None:
        """Map a Jikan ``data`` object onto a ``MediaRef``."""

        mal_id = coerce_int(item.get("mal_id"))
        if mal_id is None or mal_id < 1:
            return None
        resolved_kind = cls._kind(kind)
        unit_field = "chapters" if resolved_kind == "manga" else "episodes"
        title = item.get("title_english") or item.get("title") or ""
        return MediaRef(
            id=mal_id,
            mal_id=mal_id,
            title=str(title),
            kind=resolved_kind,
            total=coerce_int(item.get(unit_field)),
            image_url=cls._image_url(item.get("images")),
        )

    @staticmethod
    def _image_url(images: Any) -> str | None:
        if not isinstance(images, dict):
            return None
        for variant in ("webp", "jpg"):
            urls = images.get(variant)
            if not isinstance(urls, dict):
                continue
            for key in ("large_image_url", "image_url"):
                value = urls.get(key)
                if isinstance(value, str) and value.startswith("http"):
                    return value
        return None
