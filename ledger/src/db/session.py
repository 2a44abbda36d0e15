"""
Async database engine and session factory.

Uses the SQLAlchemy 2.x async engine with the asyncpg driver. The engine is
created lazily on first use from DATABASE_URL and disposed on application
shutdown.

CHANGELOG:
- 2026-10-15: Add dispose_engine for lifespan shutdown (STORY-013)
- 2026-02-14: Initial creation (STORY-007)
"""

import os
from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

async_engine: AsyncEngine | None = None
async_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_database_url() -> str:
    """Read DATABASE_URL from the environment.

    Raises:
        RuntimeError: If DATABASE_URL is not set.
    """
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL environment variable is required")
    return url


def init_engine() -> None:
    """Create the module-level engine and session factory once."""
    global async_engine, async_session_factory  # noqa: PLW0603
    if async_engine is None:
        async_engine = create_async_engine(get_database_url(), pool_pre_ping=True)
        async_session_factory = async_sessionmaker(
            async_engine, class_=AsyncSession, expire_on_commit=False
        )


async def dispose_engine() -> None:
    """Close pooled connections; a later request recreates the engine."""
    global async_engine, async_session_factory  # noqa: PLW0603
    if async_engine is not None:
        await async_engine.dispose()
    async_engine = None
    async_session_factory = None


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session, initializing the engine if needed."""
    init_engine()
    assert async_session_factory is not None, "Session factory not initialized"
    async with async_session_factory() as session:
        yield session
