"""Entry point for the FastAPI-powered AnimeSync service."""

from __future__ import annotations

import json
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import datetime
from typing import Any, get_args

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .background import BackgroundChecks
from .backup import backup_filename
from .config import settings
from .database import Database
from .errors import NotFoundError, ValidationError
from .models import NotificationCategory, Reminder
from .services.jikan import JikanClient
from .storage import SqlStorage
from .store import ProfileStore

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI

NEWS_SECTIONS = ("pinned", "favorite")


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    jikan_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.jikan_api_url),
            timeout=httpx.Timeout(settings.catalog_timeout_seconds, connect=10.0),
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    store = ProfileStore(
        SqlStorage(database.session_factory),
        catalog=JikanClient(settings, jikan_http_client),
        profile_id=settings.profile_id,
        tz=settings.tzinfo,
        hidden_genres=settings.hidden_genres,
    )
    await store.load()
    checks = BackgroundChecks(store, settings)

    fastapi_app.state.profile_store = store
    fastapi_app.state.database = database
    if settings.background_checks:
        await checks.start()

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await checks.stop()
        await store.flush()
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Local-first anime and manga tracking with release reminders",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_profile_store(app: FastAPI) -> ProfileStore:
    store = getattr(app.state, "profile_store", None)
    if not isinstance(store, ProfileStore):
        raise RuntimeError("Profile store not initialised")
    return store


def _dump(model: Any) -> dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _storage_error(store: ProfileStore) -> str | None:
    error = store.last_storage_error
    return str(error) if error is not None else None


async def _json_body(request: Request) -> Any:
    body = await request.body()
    if not body.strip():
        return {}
    try:
        return json.loads(body)
    except (json.JSONDecodeError, RecursionError) as exc:
        raise HTTPException(status_code=400, detail="Invalid JSON body") from exc


async def _json_object(request: Request) -> dict[str, Any]:
    payload = await _json_body(request)
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid payload")
    return payload


def _category(value: Any) -> NotificationCategory | None:
    if value in (None, ""):
        return None
    if value not in get_args(NotificationCategory):
        raise HTTPException(status_code=400, detail=f"Unknown category {value!r}")
    return value


def _news_section(section: str) -> str:
    if section not in NEWS_SECTIONS:
        raise HTTPException(status_code=404, detail=f"Unknown news section {section!r}")
    return section


def _reminder_payload(store: ProfileStore, reminder: Reminder) -> dict[str, Any]:
    payload = _dump(reminder)
    payload["nextOccurrence"] = _iso(store.next_occurrence(reminder.id))
    return payload


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.exception_handler(ValidationError)
    async def validation_error_handler(_: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @fastapi_app.exception_handler(NotFoundError)
    async def not_found_handler(_: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/api/profile")
    async def profile_endpoint() -> dict[str, Any]:
        store = get_profile_store(fastapi_app)
        profile = store.profile
        return {
            "authMode": profile.auth_mode,
            "username": profile.username,
            "signedIn": profile.auth_mode == "local",
            "summary": store.summary().to_payload(),
            "hiddenGenres": list(profile.hidden_genres),
            "layout": [_dump(item) for item in profile.layout],
            "followedAnimeForNews": [
                _dump(item) for item in profile.followed_anime_for_news
            ],
            "storageError": _storage_error(store),
        }

    @fastapi_app.post("/api/profile/sign-in")
    async def sign_in_endpoint(request: Request) -> dict[str, Any]:
        store = get_profile_store(fastapi_app)
        payload = await _json_object(request)
        username = payload.get("username")
        if not isinstance(username, str):
            raise HTTPException(status_code=400, detail="username is required")
        profile = await store.sign_in_locally(username)
        return {
            "authMode": profile.auth_mode,
            "username": profile.username,
            "storageError": _storage_error(store),
        }

    @fastapi_app.post("/api/profile/sign-out")
    async def sign_out_endpoint() -> dict[str, Any]:
        store = get_profile_store(fastapi_app)
        profile = await store.sign_out()
        return {"authMode": profile.auth_mode, "storageError": _storage_error(store)}

    @fastapi_app.put("/api/preferences/hidden-genres")
    async def hidden_genres_endpoint(request: Request) -> dict[str, Any]:
        store = get_profile_store(fastapi_app)
        payload = await _json_body(request)
        if isinstance(payload, dict):
            payload = payload.get("hiddenGenres")
        genres = await store.set_hidden_genres(payload)
        return {"hiddenGenres": genres, "storageError": _storage_error(store)}

    @fastapi_app.get("/api/lists/{status}")
    async def list_endpoint(status: str) -> dict[str, Any]:
        store = get_profile_store(fastapi_app)
        entries = store.entries(status)
        return {"status": status, "entries": [_dump(entry) for entry in entries]}

    @fastapi_app.post("/api/lists/{status}")
    async def add_entry_endpoint(status: str, request: Request) -> dict[str, Any]:
        store = get_profile_store(fastapi_app)
        payload = await _json_object(request)
        media = payload.get("media")
        if not isinstance(media, dict):
            raise HTTPException(status_code=400, detail="media object is required")
        delta = payload.get("progressDelta", 0)
        if isinstance(delta, bool) or not isinstance(delta, int):
            raise HTTPException(status_code=400, detail="progressDelta must be an integer")
        entry = await store.add_or_update_entry(media, status, delta)
        return {"entry": _dump(entry), "storageError": _storage_error(store)}

    @fastapi_app.post("/api/lists/{status}/{media_id}/move")
    async def move_entry_endpoint(
        status: str, media_id: int, request: Request
    ) -> dict[str, Any]:
        store = get_profile_store(fastapi_app)
        payload = await _json_object(request)
        target = payload.get("to")
        if not isinstance(target, str):
            raise HTTPException(status_code=400, detail="target status is required")
        moved = await store.move_entry(media_id, status, target)
        if not moved:
            raise HTTPException(status_code=404, detail=f"Media {media_id} is not in {status}")
        return {"moved": True, "storageError": _storage_error(store)}

    @fastapi_app.delete("/api/lists/{status}/{media_id}")
    async def remove_entry_endpoint(status: str, media_id: int) -> dict[str, Any]:
        store = get_profile_store(fastapi_app)
        removed = await store.remove_entry(media_id, status)
        return {"removed": removed, "storageError": _storage_error(store)}

    @fastapi_app.delete("/api/lists/{status}")
    async def clear_status_endpoint(status: str) -> dict[str, Any]:
        store = get_profile_store(fastapi_app)
        cleared = await store.clear_status(status)
        return {"cleared": cleared, "storageError": _storage_error(store)}

    @fastapi_app.get("/api/reminders")
    async def reminders_endpoint() -> dict[str, Any]:
        store = get_profile_store(fastapi_app)
        return {
            "reminders": [
                _reminder_payload(store, reminder) for reminder in store.reminders
            ]
        }

    @fastapi_app.post("/api/reminders", status_code=201)
    async def create_reminder_endpoint(request: Request) -> dict[str, Any]:
        store = get_profile_store(fastapi_app)
        payload = await _json_object(request)
        reminder = await store.add_reminder(payload)
        return {
            "reminder": _reminder_payload(store, reminder),
            "storageError": _storage_error(store),
        }

    @fastapi_app.post("/api/reminders/check")
    async def check_reminders_endpoint() -> dict[str, Any]:
        store = get_profile_store(fastapi_app)
        created = await store.check_reminders()
        return {
            "created": [_dump(item) for item in created],
            "summary": store.summary().to_payload(),
        }

    @fastapi_app.patch("/api/reminders/{reminder_id}")
    async def update_reminder_endpoint(
        reminder_id: str, request: Request
    ) -> dict[str, Any]:
        store = get_profile_store(fastapi_app)
        payload = await _json_object(request)
        reminder = await store.update_reminder(reminder_id, payload)
        if reminder is None:
            raise HTTPException(status_code=404, detail="Reminder not found")
        return {
            "reminder": _reminder_payload(store, reminder),
            "storageError": _storage_error(store),
        }

    @fastapi_app.delete("/api/reminders/{reminder_id}")
    async def delete_reminder_endpoint(reminder_id: str) -> dict[str, Any]:
        store = get_profile_store(fastapi_app)
        if not await store.delete_reminder(reminder_id):
            raise HTTPException(status_code=404, detail="Reminder not found")
        return {"deleted": True, "storageError": _storage_error(store)}

    @fastapi_app.get("/api/schedule")
    async def schedule_endpoint() -> dict[str, Any]:
        store = get_profile_store(fastapi_app)
        return {
            "days": {
                str(day): [_reminder_payload(store, reminder) for reminder in reminders]
                for day, reminders in store.schedule().items()
            }
        }

    @fastapi_app.get("/api/notifications")
    async def notifications_endpoint() -> dict[str, Any]:
        store = get_profile_store(fastapi_app)
        return {
            "notifications": [_dump(item) for item in store.notifications],
            "summary": store.summary().to_payload(),
        }

    @fastapi_app.post("/api/notifications/seen")
    async def mark_all_seen_endpoint(request: Request) -> dict[str, Any]:
        store = get_profile_store(fastapi_app)
        payload = await _json_object(request)
        category = _category(payload.get("category"))
        if category is None:
            updated = await store.mark_all_seen()
        else:
            updated = await store.mark_all_seen_for_category(category)
        return {
            "updated": updated,
            "summary": store.summary().to_payload(),
            "storageError": _storage_error(store),
        }

    @fastapi_app.post("/api/notifications/{notification_id}/seen")
    async def mark_seen_endpoint(notification_id: str) -> dict[str, Any]:
        store = get_profile_store(fastapi_app)
        updated = await store.mark_seen(notification_id)
        return {
            "updated": updated,
            "summary": store.summary().to_payload(),
            "storageError": _storage_error(store),
        }

    @fastapi_app.delete("/api/notifications")
    async def clear_notifications_endpoint(category: str | None = None) -> dict[str, Any]:
        store = get_profile_store(fastapi_app)
        removed = await store.clear_notifications(_category(category))
        return {
            "removed": removed,
            "summary": store.summary().to_payload(),
            "storageError": _storage_error(store),
        }

    @fastapi_app.post("/api/news/{section}")
    async def toggle_news_endpoint(section: str, request: Request) -> dict[str, Any]:
        store = get_profile_store(fastapi_app)
        article = await _json_object(request)
        if _news_section(section) == "pinned":
            active = await store.toggle_pinned_news(article)
        else:
            active = await store.toggle_favorite_news(article)
        return {"active": active, "storageError": _storage_error(store)}

    @fastapi_app.delete("/api/news/{section}")
    async def clear_news_endpoint(section: str) -> dict[str, Any]:
        store = get_profile_store(fastapi_app)
        await store.clear_news(_news_section(section))  # type: ignore[arg-type]
        return {"cleared": True, "storageError": _storage_error(store)}

    @fastapi_app.post("/api/followed-news")
    async def toggle_followed_news_endpoint(request: Request) -> dict[str, Any]:
        store = get_profile_store(fastapi_app)
        following = await store.toggle_followed_news(await _json_object(request))
        return {"following": following, "storageError": _storage_error(store)}

    @fastapi_app.put("/api/episode-links/{media_id}")
    async def set_episode_link_endpoint(media_id: int, request: Request) -> dict[str, Any]:
        store = get_profile_store(fastapi_app)
        link = await store.set_episode_link(media_id, await _json_object(request))
        return {"link": _dump(link), "storageError": _storage_error(store)}

    @fastapi_app.delete("/api/episode-links/{media_id}")
    async def delete_episode_link_endpoint(media_id: int) -> dict[str, Any]:
        store = get_profile_store(fastapi_app)
        await store.set_episode_link(media_id, None)
        return {"link": None, "storageError": _storage_error(store)}

    @fastapi_app.put("/api/excluded-items/{media_id}")
    async def excluded_items_endpoint(media_id: int, request: Request) -> dict[str, Any]:
        store = get_profile_store(fastapi_app)
        payload = await _json_body(request)
        if isinstance(payload, dict):
            payload = payload.get("malIds")
        if not isinstance(payload, list) or not all(
            isinstance(item, int) and not isinstance(item, bool) for item in payload
        ):
            raise HTTPException(status_code=400, detail="malIds must be an array of integers")
        excluded = await store.set_excluded_items(media_id, payload)
        return {"malIds": excluded, "storageError": _storage_error(store)}

    @fastapi_app.put("/api/layout")
    async def layout_endpoint(request: Request) -> dict[str, Any]:
        store = get_profile_store(fastapi_app)
        payload = await _json_body(request)
        if isinstance(payload, dict):
            payload = payload.get("layout")
        if not isinstance(payload, list):
            raise HTTPException(status_code=400, detail="layout must be an array")
        layout = await store.update_layout(payload)
        return {
            "layout": [_dump(item) for item in layout],
            "storageError": _storage_error(store),
        }

    @fastapi_app.get("/api/backup")
    async def export_backup_endpoint() -> JSONResponse:
        store = get_profile_store(fastapi_app)
        filename = backup_filename(store.now())
        return JSONResponse(
            store.export_backup(),
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    @fastapi_app.post("/api/backup")
    async def import_backup_endpoint(request: Request) -> JSONResponse:
        store = get_profile_store(fastapi_app)
        result = await store.import_backup(await request.body())
        payload = result.to_payload()
        payload["storageError"] = _storage_error(store)
        return JSONResponse(payload, status_code=200 if result.ok else 400)


app = create_app()
