"""Shared fixtures for history manager tests."""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from chat_history.config import HistorySettings
from chat_history.factory import create_chat_manager

START = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeClock:
    """Clock that advances one second per reading unless frozen or rewound."""

    def __init__(self, start: datetime = START, step: timedelta = timedelta(seconds=1)) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sqlite_settings(tmp_path) -> HistorySettings:
    return HistorySettings(backend="sqlite", db_path=tmp_path / "history.db")


@pytest_asyncio.fixture(params=["memory", "sqlite"])
async def manager(request, tmp_path, clock):
    """A manager over each backend; every contract test runs against both."""
    settings = HistorySettings(backend=request.param, db_path=tmp_path / "history.db")
    manager = await create_chat_manager(settings, clock=clock)
    yield manager
    await manager.close()
