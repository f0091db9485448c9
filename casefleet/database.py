from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

from casefleet.config import settings

engine = create_async_engine(settings.database_url, echo=settings.debug, pool_pre_ping=True)


async_session_factory = async_sessionmaker(
    engine,
    expire_on_commit=False,
    class_=AsyncSession,
)


async def get_db():
    """FastAPI dependency: yields AsyncSession per request."""
    async with async_session_factory() as session:
        yield session
