"""Background check loop tests."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace

from animesync.background import BackgroundChecks
from animesync.config import Settings


class CountingStore:
    def __init__(self, auth_mode: str = "local") -> None:
        self.profile = SimpleNamespace(auth_mode=auth_mode)
        self.reminder_checks = 0
        self.update_checks = 0

    async def check_reminders(self) -> list:
        self.reminder_checks += 1
        return []

    async def check_for_updates(self) -> list:
        self.update_checks += 1
        raise RuntimeError("catalog offline")


def _run_briefly(checks: BackgroundChecks) -> None:
    async def runner() -> None:
        await checks.start()
        assert checks.running
        for _ in range(3):
            await asyncio.sleep(0)
        await checks.stop()

    asyncio.run(runner())


def test_background_checks_run_and_stop() -> None:
    store = CountingStore()
    checks = BackgroundChecks(store, Settings(_env_file=None))  # type: ignore[arg-type]

    _run_briefly(checks)

    assert store.reminder_checks == 1
    assert store.update_checks == 1
    assert not checks.running


def test_background_checks_wait_for_sign_in() -> None:
    store = CountingStore(auth_mode="none")
    checks = BackgroundChecks(store, Settings(_env_file=None))  # type: ignore[arg-type]

    _run_briefly(checks)

    assert store.reminder_checks == 0
    assert store.update_checks == 0
    assert not checks.running
