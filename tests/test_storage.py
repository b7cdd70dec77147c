"""Storage adapter and write ordering tests."""

from __future__ import annotations

import asyncio

import pytest

from animesync.database import Database
from animesync.db_models import ProfileRecord
from animesync.errors import StorageError
from animesync.storage import MemoryStorage, OrderedWriter, SqlStorage


def test_memory_storage_round_trip() -> None:
    storage = MemoryStorage()

    async def runner() -> str | None:
        assert await storage.load("local") is None
        await storage.save("local", '{"version": 1}', revision=1)
        return await storage.load("local")

    assert asyncio.run(runner()) == '{"version": 1}'
    assert storage.revisions == {"local": 1}


def test_ordered_writer_discards_stale_revision() -> None:
    storage = MemoryStorage()
    writer = OrderedWriter(storage)

    async def runner() -> list[bool]:
        return list(
            await asyncio.gather(
                writer.write("local", 2, "newer"),
                writer.write("local", 1, "older"),
            )
        )

    assert asyncio.run(runner()) == [True, False]
    assert storage.blobs["local"] == "newer"
    assert writer.last_applied("local") == 2


def test_ordered_writer_tracks_profiles_independently() -> None:
    storage = MemoryStorage()
    writer = OrderedWriter(storage)

    async def runner() -> None:
        assert await writer.write("a", 5, "a5")
        assert await writer.write("b", 1, "b1")
        assert not await writer.write("a", 5, "a5-again")

    asyncio.run(runner())
    assert storage.blobs == {"a": "a5", "b": "b1"}


def test_ordered_writer_serialises_slow_writes() -> None:
    class SlowStorage(MemoryStorage):
        def __init__(self) -> None:
            super().__init__()
            self.active = 0
            self.max_active = 0

        async def save(self, profile_id: str, blob: str, *, revision: int) -> None:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            await asyncio.sleep(0.01)
            await super().save(profile_id, blob, revision=revision)
            self.active -= 1

    storage = SlowStorage()
    writer = OrderedWriter(storage)

    async def runner() -> None:
        await asyncio.gather(*(writer.write("local", rev, f"r{rev}") for rev in range(1, 6)))

    asyncio.run(runner())
    assert storage.max_active == 1
    assert storage.blobs["local"] == "r5"


def test_sql_storage_persists_and_overwrites(tmp_path) -> None:
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'profiles.db'}")
    storage = SqlStorage(database.session_factory)

    async def runner() -> tuple[str | None, str | None, int]:
        await database.create_all()
        missing = await storage.load("local")
        await storage.save("local", "first", revision=1)
        await storage.save("local", "second", revision=2)
        loaded = await storage.load("local")
        async with database.session() as session:
            record = await session.get(ProfileRecord, "local")
            revision = record.revision
        await database.dispose()
        return missing, loaded, revision

    missing, loaded, revision = asyncio.run(runner())

    assert missing is None
    assert loaded == "second"
    assert revision == 2


def test_sql_storage_wraps_database_errors(tmp_path) -> None:
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}")
    storage = SqlStorage(database.session_factory)

    async def runner() -> None:
        try:
            with pytest.raises(StorageError):
                await storage.save("local", "blob", revision=1)
            with pytest.raises(StorageError):
                await storage.load("local")
        finally:
            await database.dispose()

    asyncio.run(runner())
