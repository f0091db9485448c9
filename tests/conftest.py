"""Shared fixtures: a throwaway SQLite database per test.

Each test gets its own database file so that independent sessions (one per
simulated worker) can run concurrently against it. NullPool gives every
session a fresh connection; the busy timeout makes concurrent writers wait
for the file lock instead of failing.
"""

import itertools
from datetime import datetime, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from casefleet.models import Base, WorkItem

# Tuesday 2026-03-10, 12:00 in Buenos Aires (UTC-3)
NOW = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)

_numbers = itertools.count(1000)


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'casefleet.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_item(session_factory):
    """Insert a work item that is eligible for update unless overridden."""

    async def _make(**overrides) -> WorkItem:
        values = {
            "number": next(_numbers),
            "year": 2024,
            "fuero": "CIV",
            "source": "app",
            "verified": True,
            "is_valid": True,
            "needs_update": True,
            "last_update": None,
        }
        values.update(overrides)
        item = WorkItem(**values)
        async with session_factory() as db:
            db.add(item)
            await db.commit()
        return item

    return _make
