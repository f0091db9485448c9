"""Store primitives shared by the services.

Everything above this module relies only on: conditional single-row
updates, atomic increments, upsert-by-key and bounded append/trim. Upserts
use the dialect-specific insert() of the bound engine (PostgreSQL in
production, SQLite in tests).
"""

from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from casefleet.errors import StoreUnavailableError


def upsert(session: AsyncSession, model):
    """Return an INSERT supporting ON CONFLICT for the session's dialect."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"upsert is not supported on {dialect}")


async def append_bounded(
    session: AsyncSession,
    model,
    scope: dict[str, Any],
    values: dict[str, Any],
    cap: int,
) -> None:
    """Insert a row and evict the oldest rows of the same scope beyond ``cap``.

    ``model.id`` must be insertion ordered (SequenceId).
    """
    await session.execute(model.__table__.insert().values(**scope, **values))

    filters = [getattr(model, column) == value for column, value in scope.items()]
    newest = select(model.id).where(*filters).order_by(model.id.desc()).limit(cap)
    await session.execute(
        delete(model)
        .where(*filters)
        .where(model.id.not_in(newest))
        .execution_options(synchronize_session=False)
    )


@asynccontextmanager
async def unit_of_work(session_factory: async_sessionmaker):
    """Session scope that reports connection failures as StoreUnavailableError."""
    try:
        async with session_factory() as session:
            yield session
    except (OperationalError, InterfaceError) as exc:
        raise StoreUnavailableError(str(exc)) from exc
