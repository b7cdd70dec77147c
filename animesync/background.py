"""Periodic reminder and release checks run alongside the HTTP app."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import Awaitable, Callable

from .config import Settings
from .store import ProfileStore

logger = logging.getLogger(__name__)


class BackgroundChecks:
    """Runs ``check_reminders`` and ``check_for_updates`` on fixed intervals.

    Ticks are skipped while no profile is signed in locally.
    """

    def __init__(self, store: ProfileStore, settings: Settings) -> None:
        self._store = store
        self._settings = settings
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    async def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(
                self._loop(
                    "reminder check",
                    self._store.check_reminders,
                    self._settings.reminder_check_interval_seconds,
                )
            ),
            asyncio.create_task(
                self._loop(
                    "update check",
                    self._store.check_for_updates,
                    self._settings.update_check_interval_seconds,
                )
            ),
        ]

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task

    async def _loop(
        self,
        name: str,
        check: Callable[[], Awaitable[object]],
        interval: int,
    ) -> None:
        while True:
            if self._store.profile.auth_mode == "local":
                try:
                    await check()
                except Exception as exc:  # background safety net
                    logger.exception("Scheduled %s failed: %s", name, exc)
            else:
                logger.debug("Skipping %s: no profile is signed in", name)
            await asyncio.sleep(interval)
