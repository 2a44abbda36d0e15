"""
FastAPI dependency injection providers.

CHANGELOG:
- 2026-02-14: Initial creation (STORY-007)
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

from ledger.src.db.session import get_async_session


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session for one request.

    Route handlers depend on this wrapper rather than the session module
    directly so tests can override it via ``app.dependency_overrides``.
    """
    async for session in get_async_session():
        yield session
