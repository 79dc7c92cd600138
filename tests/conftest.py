"""
Shared fixtures: in-memory and SQLite-backed stores, mock HTTP transports,
and a fixed clock.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Callable

import httpx
import pytest

from guardian.app.alerts.channels.expo_push import ExpoPushGateway
from guardian.app.core.database import create_engine, create_session_factory, init_db
from guardian.app.hazards.memory_store import InMemoryHazardStore, InMemoryUserDirectory
from guardian.app.hazards.store import SqlHazardStore, SqlUserDirectory
from guardian.app.ingestion.http_client import FeedClient

NOW = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)

Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def store() -> InMemoryHazardStore:
    return InMemoryHazardStore()


class ConcurrencyTrackingStore(InMemoryHazardStore):
    """In-memory store that records the most upserts ever in flight at once."""

    def __init__(self) -> None:
        super().__init__()
        self.in_flight = 0
        self.peak = 0

    async def upsert_hazard(self, candidate, *, overwrite=True):
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await asyncio.sleep(0)
            return await super().upsert_hazard(candidate, overwrite=overwrite)
        finally:
            self.in_flight -= 1


@pytest.fixture
def tracking_store() -> ConcurrencyTrackingStore:
    return ConcurrencyTrackingStore()


@pytest.fixture
def directory() -> InMemoryUserDirectory:
    return InMemoryUserDirectory()


@pytest.fixture
async def sql_sessions():
    """Session factory over a fresh in-memory SQLite database."""
    engine = create_engine("sqlite+aiosqlite://", echo=False)
    await init_db(engine)
    yield create_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def sql_store(sql_sessions) -> SqlHazardStore:
    return SqlHazardStore(sql_sessions)


@pytest.fixture
def sql_directory(sql_sessions) -> SqlUserDirectory:
    return SqlUserDirectory(sql_sessions)


@pytest.fixture
def feed_client_factory():
    """Build a FeedClient whose requests are answered by `handler`, no backoff waits."""
    def _make(handler: Handler, *, max_retries: int = 2) -> FeedClient:
        client = FeedClient(
            httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            max_retries=max_retries,
            backoff_seconds=0,
        )
        return client

    return _make


@pytest.fixture
def gateway_factory():
    """Build an ExpoPushGateway over a mock transport."""

    def _make(handler: Handler, *, chunk_size: int = 100) -> ExpoPushGateway:
        return ExpoPushGateway(
            httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            url="https://push.test/send",
            chunk_size=chunk_size,
        )

    return _make
