"""
Database session management.

WHY: Async database sessions are required for FastAPI's async/await pattern.
Using a context manager ensures proper connection cleanup and transaction management.
"""

from typing import Any, AsyncGenerator, Dict
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from formbuilder.core.config import settings


def _engine_options(url: str) -> Dict[str, Any]:
    """
    Pool options for the configured database.

    WHY: SQLite (used in tests and local development) has no connection
    pool to size; passing pool_size/max_overflow to it raises.
    """
    options: Dict[str, Any] = {"echo": settings.DEBUG}
    if not url.startswith("sqlite"):
        options.update(pool_pre_ping=True, pool_size=10, max_overflow=20)
    return options


# WHY: pool_pre_ping ensures stale connections are recycled, preventing
# "server has gone away" errors in long-running applications.
engine = create_async_engine(
    settings.async_database_url,
    **_engine_options(settings.async_database_url),
)

# WHY: expire_on_commit=False prevents lazy-loading issues after commit.
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency to get database session.

    WHY: Each request gets its own session; commit on success, rollback
    on any error raised by the handler.

    Yields:
        AsyncSession: Database session for the request
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
