"""Database dependencies for FastAPI route handlers.

Two session getters share one session factory:

1. ``get_db_session()`` (this module): FastAPI dependency, session lifecycle
   tied to the HTTP request. Override it in tests with
   ``app.dependency_overrides[get_db_session]``.
2. ``get_async_session()`` (infra.database): plain async context manager for
   workers, the retention job and CLI commands.
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

from relay_service.infra.database import get_async_session


async def get_db_session() -> AsyncGenerator[AsyncSession]:
    """FastAPI dependency for database session.

    Example:
        @router.get("/users/{user_id}/entitlements")
        async def list_entitlements(session: AsyncSession = Depends(get_db_session)):
            ...
    """
    async with get_async_session() as session:
        yield session
