"""Storage adapters persisting serialized profile snapshots."""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .db_models import ProfileRecord
from .errors import StorageError

logger = logging.getLogger(__name__)


class StorageAdapter(Protocol):
    """Get/set access to the serialized profile blob."""

    async def load(self, profile_id: str) -> str | None:
        ...

    async def save(self, profile_id: str, blob: str, *, revision: int) -> None:
        ...


class MemoryStorage:
    """Keeps blobs in a dictionary; nothing survives the process."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self.blobs: dict[str, str] = dict(initial or {})
        self.revisions: dict[str, int] = {}

    async def load(self, profile_id: str) -> str | None:
        return self.blobs.get(profile_id)

    async def save(self, profile_id: str, blob: str, *, revision: int) -> None:
        self.blobs[profile_id] = blob
        self.revisions[profile_id] = revision


class SqlStorage:
    """Persists blobs in the ``profiles`` table through an async session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def load(self, profile_id: str) -> str | None:
        try:
            async with self._session_factory() as session:
                record = await session.get(ProfileRecord, profile_id)
                return record.payload if record is not None else None
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to load profile {profile_id}: {exc}") from exc

    async def save(self, profile_id: str, blob: str, *, revision: int) -> None:
        try:
            async with self._session_factory() as session:
                record = await session.get(ProfileRecord, profile_id)
                if record is None:
                    session.add(
                        ProfileRecord(id=profile_id, payload=blob, revision=revision)
                    )
                else:
                    record.payload = blob
                    record.revision = revision
                await session.commit()
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to persist profile {profile_id}: {exc}") from exc


class OrderedWriter:
    """Single write queue per profile.

    Writes for one profile run one at a time, and a write whose revision is
    not newer than the last applied one is discarded.
    """

    def __init__(self, storage: StorageAdapter) -> None:
        self._storage = storage
        self._locks: dict[str, asyncio.Lock] = {}
        self._applied: dict[str, int] = {}

    def last_applied(self, profile_id: str) -> int:
        return self._applied.get(profile_id, 0)

    async def write(self, profile_id: str, revision: int, blob: str) -> bool:
        """Persist ``blob``; returns ``False`` when it was superseded."""

        lock = self._locks.setdefault(profile_id, asyncio.Lock())
        async with lock:
            applied = self._applied.get(profile_id, 0)
            if revision <= applied:
                logger.debug(
                    "Skipping stale write for profile %s (revision %s <= %s)",
                    profile_id,
                    revision,
                    applied,
                )
                return False
            await self._storage.save(profile_id, blob, revision=revision)
            self._applied[profile_id] = revision
            return True
