"""Shared test fixtures for worklog.

Every test gets its own SQLite file under tmp_path. Logfire is configured
to stay local and quiet.
"""

import asyncio

import logfire
import pendulum
import pytest
import pytest_asyncio

from worklog.broadcast import Broadcaster
from worklog.models import Entry
from worklog.registry import ClientRegistry
from worklog.store import Database, EntryStore
from worklog.users import UserDirectory

logfire.configure(send_to_logfire=False, console=False)


# -- Storage ------------------------------------------------------------------


@pytest.fixture
def db(tmp_path):
    database = Database(tmp_path / "worklog.db")
    database.init()
    return database


@pytest.fixture
def store(db):
    return EntryStore(db)


@pytest.fixture
def directory(db):
    return UserDirectory(db)


@pytest.fixture
def today():
    return pendulum.today().to_date_string()


# -- Fanout -------------------------------------------------------------------


@pytest.fixture
def registry():
    return ClientRegistry()


@pytest_asyncio.fixture
async def broadcaster(registry):
    """A running broadcaster; stopped after the test."""
    b = Broadcaster(registry)
    b.start()
    yield b
    await b.stop()


@pytest.fixture
def settle():
    """Wait until everything published so far has been fanned out."""

    async def _settle(b: Broadcaster, timeout: float = 1.0) -> None:
        async def _wait():
            while b.backlog_size or not b.intake.empty:
                await asyncio.sleep(0.001)
            await asyncio.sleep(0)

        await asyncio.wait_for(_wait(), timeout)

    return _settle


# -- Helpers ------------------------------------------------------------------


@pytest.fixture
def make_entry():
    """Helper: build an Entry without touching the store."""

    def _make(entry_id: int, message: str | None = None, **kwargs) -> Entry:
        return Entry(
            id=entry_id,
            message=message or f"entry {entry_id}",
            timestamp=kwargs.pop("timestamp", "2026-10-19T09:00:00+00:00"),
            **kwargs,
        )

    return _make
