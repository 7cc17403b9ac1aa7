from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy import text

from app.core.config import Settings


def build_engine(settings: Settings) -> AsyncEngine:
    """
    Create the async engine for the configured database.

    - pool_pre_ping: verify connections are alive before use
    - pool_recycle: recycle connections after 1 hour to avoid DB-side timeouts
    """
    kwargs = {"echo": settings.SQLALCHEMY_ECHO, "pool_pre_ping": True}
    if not settings.DATABASE_URL.startswith("sqlite"):
        kwargs.update(
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_recycle=3600,
            pool_timeout=30,
        )
    return create_async_engine(settings.DATABASE_URL, **kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def check_db_connection(session_factory: async_sessionmaker[AsyncSession]) -> bool:
    """
    Verify database connectivity. Used by health checks.
    Returns True if connection is successful, False otherwise.
    """
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
