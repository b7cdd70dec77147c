"""HTTP route tests."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.testclient import TestClient

from animesync.main import register_routes
from animesync.storage import MemoryStorage
from animesync.store import ProfileStore


class FixedClock:
    def now(self) -> datetime:
        # Monday
        return datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def build_app() -> tuple[FastAPI, ProfileStore]:
    app = FastAPI()
    register_routes(app)
    store = ProfileStore(MemoryStorage(), clock=FixedClock())
    app.state.profile_store = store
    return app, store


MEDIA = {"id": 5114, "title": "Fullmetal Alchemist: Brotherhood", "kind": "anime", "total": 64}


def test_healthcheck() -> None:
    app, _ = build_app()

    with TestClient(app) as client:
        response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_sign_in_and_profile_summary() -> None:
    app, _ = build_app()

    with TestClient(app) as client:
        signed_in = client.post("/api/profile/sign-in", json={"username": "mika"})
        empty = client.post("/api/profile/sign-in", json={"username": "  "})
        profile = client.get("/api/profile").json()
        signed_out = client.post("/api/profile/sign-out")

    assert signed_in.status_code == 200
    assert signed_in.json()["authMode"] == "local"
    assert empty.status_code == 400
    assert profile["username"] == "mika"
    assert profile["summary"]["priorityCategory"] == "none"
    assert profile["storageError"] is None
    assert signed_out.json()["authMode"] == "none"


def test_list_routes() -> None:
    app, store = build_app()

    with TestClient(app) as client:
        added = client.post("/api/lists/watching", json={"media": MEDIA, "progressDelta": 3})
        listed = client.get("/api/lists/watching")
        wrong_kind = client.post("/api/lists/reading", json={"media": MEDIA})
        unknown = client.get("/api/lists/dropped")
        moved = client.post("/api/lists/watching/5114/move", json={"to": "plan-to-watch"})
        missing = client.post("/api/lists/watching/5114/move", json={"to": "completed"})
        removed = client.delete("/api/lists/plan-to-watch/5114")
        cleared = client.delete("/api/lists/completed")

    assert added.status_code == 200
    assert added.json()["entry"]["progress"] == 3
    assert [entry["media"]["id"] for entry in listed.json()["entries"]] == [5114]
    assert wrong_kind.status_code == 400
    assert unknown.status_code == 400
    assert moved.json()["moved"] is True
    assert missing.status_code == 404
    assert removed.json()["removed"] is True
    assert cleared.json()["cleared"] == 0
    assert store.entries("plan-to-watch") == []


def test_reminder_routes_and_schedule() -> None:
    app, _ = build_app()
    payload = {
        "mediaId": 5114,
        "title": "FMA rewatch",
        "startDateTime": "2024-01-01T10:00:00Z",
        "repeatOnDays": [1, 3, 5],
    }

    with TestClient(app) as client:
        created = client.post("/api/reminders", json=payload)
        reminder_id = created.json()["reminder"]["id"]
        patched = client.patch(f"/api/reminders/{reminder_id}", json={"notes": "with friends"})
        schedule = client.get("/api/schedule").json()
        checked = client.post("/api/reminders/check").json()
        missing = client.delete("/api/reminders/nope")
        deleted = client.delete(f"/api/reminders/{reminder_id}")
        invalid = client.post("/api/reminders", json={"title": "incomplete"})

    assert created.status_code == 201
    assert created.json()["reminder"]["nextOccurrence"] == "2024-01-03T10:00:00+00:00"
    assert patched.json()["reminder"]["notes"] == "with friends"
    assert [item["id"] for item in schedule["days"]["3"]] == [reminder_id]
    assert schedule["days"]["0"] == []
    assert len(checked["created"]) == 1
    assert checked["summary"]["priorityCategory"] == "reminder"
    assert missing.status_code == 404
    assert deleted.json()["deleted"] is True
    assert invalid.status_code == 400


def test_notification_routes() -> None:
    app, store = build_app()

    with TestClient(app) as client:
        client.post(
            "/api/reminders",
            json={"id": "r1", "mediaId": 1, "title": "Once", "startDateTime": "2023-12-31T09:00:00Z"},
        )
        client.post("/api/reminders/check")
        listed = client.get("/api/notifications").json()
        notification_id = listed["notifications"][0]["id"]
        seen = client.post(f"/api/notifications/{notification_id}/seen").json()
        bad_category = client.post("/api/notifications/seen", json={"category": "gossip"})
        all_seen = client.post("/api/notifications/seen", json={"category": "reminder"}).json()
        cleared = client.delete("/api/notifications", params={"category": "reminder"}).json()

    assert listed["summary"]["reminderUnseen"] == 1
    assert seen["updated"] is True
    assert seen["summary"]["total"] == 0
    assert bad_category.status_code == 400
    assert all_seen["updated"] == 0
    assert cleared["removed"] == 1
    assert store.notifications == []


def test_news_layout_and_genre_routes() -> None:
    app, store = build_app()

    with TestClient(app) as client:
        pinned = client.post("/api/news/pinned", json={"malId": 12, "title": "Announcement"})
        unknown = client.post("/api/news/archived", json={"malId": 12})
        cleared = client.delete("/api/news/pinned")
        duplicate = client.put("/api/layout", json={"layout": [{"id": "a"}, {"id": "a"}]})
        layout = client.put("/api/layout", json=[{"id": "trending", "visible": False}])
        genres = client.put("/api/preferences/hidden-genres", json={"hiddenGenres": ["Horror", 1]})

    assert pinned.json()["active"] is True
    assert unknown.status_code == 404
    assert cleared.status_code == 200
    assert store.profile.pinned_news == []
    assert duplicate.status_code == 400
    assert layout.json()["layout"][0]["visible"] is False
    assert genres.json()["hiddenGenres"] == ["Horror"]


def test_followed_news_link_and_exclusion_routes() -> None:
    app, store = build_app()

    with TestClient(app) as client:
        followed = client.post("/api/followed-news", json={"id": 21, "title": "One Piece"})
        link = client.put("/api/episode-links/21", json={"template": "https://example.test/{}"})
        bad_link = client.put("/api/episode-links/22", json={"template": ""})
        excluded = client.put("/api/excluded-items/21", json={"malIds": [3, 3, 4]})
        bad_excluded = client.put("/api/excluded-items/21", json={"malIds": ["x"]})
        profile = client.get("/api/profile").json()
        forgotten = client.delete("/api/episode-links/21")

    assert followed.json()["following"] is True
    assert link.json()["link"] == {"template": "https://example.test/{}", "ongoing": False}
    assert bad_link.status_code == 400
    assert excluded.json()["malIds"] == [3, 4]
    assert bad_excluded.status_code == 400
    assert profile["followedAnimeForNews"][0]["id"] == 21
    assert forgotten.json()["link"] is None
    assert store.profile.custom_episode_links == {}
    assert store.profile.excluded_items == {21: [3, 4]}


def test_deeply_nested_bodies_are_rejected() -> None:
    app, _ = build_app()
    nested = ("[" * 100_000 + "]" * 100_000).encode()

    with TestClient(app) as client:
        layout = client.put("/api/layout", content=nested)
        backup = client.post("/api/backup", content=b'{"lists": ' + nested + b"}")

    assert layout.status_code == 400
    assert backup.status_code == 400
    assert backup.json()["ok"] is False


def test_backup_routes() -> None:
    app, store = build_app()

    with TestClient(app) as client:
        client.post("/api/lists/watching", json={"media": MEDIA})
        exported = client.get("/api/backup")
        client.delete("/api/lists/watching/5114")
        malformed = client.post("/api/backup", content=b"{not json")
        restored = client.post("/api/backup", content=exported.content)

    assert exported.status_code == 200
    assert "animesync_data_2024-01-01.json" in exported.headers["content-disposition"]
    assert exported.json()["version"] == 1
    assert malformed.status_code == 400
    assert malformed.json()["ok"] is False
    assert restored.status_code == 200
    assert restored.json() == {"ok": True, "recovered": False, "issues": [], "storageError": None}
    assert [entry.media_id for entry in store.entries("watching")] == [5114]
