"""Shared test fixtures.

Every test gets a fresh on-disk SQLite database built from the ORM metadata.
Redis is not initialized: notifications are skipped and rate limiting fails
open unless a test patches it in.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tests.helpers import CHALLENGES, FrozenClock
from xpl.config import get_settings
from xpl.database import close_db, create_all, get_session_factory, init_db
from xpl.progress.catalog import sync_challenge


@pytest_asyncio.fixture
async def database(tmp_path) -> AsyncGenerator[None, None]:
    """Fresh SQLite schema per test."""
    os.environ["XPL_DATABASE_URL"] = f"sqlite+aiosqlite:///{tmp_path / 'xpl_test.db'}"
    get_settings.cache_clear()
    await init_db(get_settings().database_url)
    await create_all()
    yield
    await close_db()
    os.environ.pop("XPL_DATABASE_URL", None)
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def db_session(database) -> AsyncGenerator[AsyncSession, None]:
    """Direct database session for setup and assertions."""
    async with get_session_factory()() as session:
        yield session


@pytest_asyncio.fixture
async def seeded(db_session: AsyncSession) -> dict[str, int]:
    """Seed the challenge catalog. Returns slug -> challenge id."""
    ids = {}
    for c in CHALLENGES:
        challenge = await sync_challenge(db_session, c["slug"], c["title"], c["difficulty"], c["objectives"])
        ids[c["slug"]] = challenge.id
    return ids


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def session_factory(database) -> async_sessionmaker[AsyncSession]:
    return get_session_factory()


@pytest_asyncio.fixture
async def client(database, seeded) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client over the ASGI app. Lifespan is not run; the database is already initialized."""
    from xpl.main import create_app

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
