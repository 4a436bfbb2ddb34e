"""Database engine and session management.

PostgreSQL via the psycopg3 async driver in production; the SQLite fallback
(aiosqlite) when ``DB_ENABLED=false``.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from relay_service.core.settings import get_app_settings, get_db_settings

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from sqlalchemy.ext.asyncio import AsyncEngine

    from relay_service.core.settings.postgres import PostgresSettings

logger = logging.getLogger(__name__)

SLOW_QUERY_SECONDS = 1.0


def build_engine(db_settings: PostgresSettings, *, echo: bool = False) -> AsyncEngine:
    """Create an async engine for the configured database.

    In-memory SQLite URLs share one connection so every session sees the
    same schema.
    """
    url = db_settings.get_sqlalchemy_url()
    kwargs: dict[str, Any] = db_settings.sqlalchemy_engine_kwargs()
    kwargs["echo"] = kwargs.get("echo", False) or echo
    if url.startswith("sqlite") and ":memory:" in url:
        kwargs["poolclass"] = StaticPool
        kwargs["connect_args"] = {"check_same_thread": False}
    new_engine = create_async_engine(url, **kwargs)
    _instrument(new_engine)
    return new_engine


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory used by requests, workers and the CLI.

    Objects stay usable after commit: the workers read leased rows after the
    claim transaction has committed.
    """
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def _instrument(target: AsyncEngine) -> None:
    @event.listens_for(target.sync_engine, "before_cursor_execute")
    def _before_cursor_execute(
        conn: Any, cursor: Any, statement: str, parameters: Any, context: Any, executemany: Any
    ) -> None:
        _ = conn, cursor, statement, parameters, executemany
        context._query_start_time = time.perf_counter()

    @event.listens_for(target.sync_engine, "after_cursor_execute")
    def _after_cursor_execute(
        conn: Any, cursor: Any, statement: str, parameters: Any, context: Any, executemany: Any
    ) -> None:
        _ = conn, cursor, parameters, executemany
        duration = time.perf_counter() - context._query_start_time
        if duration > SLOW_QUERY_SECONDS:
            logger.warning(
                "Slow query",
                extra={"duration_seconds": round(duration, 3), "statement": statement[:200]},
            )


db_settings = get_db_settings()
app_settings = get_app_settings()

engine = build_engine(db_settings, echo=app_settings.debug)
AsyncSessionLocal = build_session_factory(engine)


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession]:
    """Get async database session.

    Example:
        async with get_async_session() as session:
            result = await session.execute(select(Entitlement))
    """
    async with AsyncSessionLocal() as session:
        yield session


async def init_database() -> None:
    """Check connectivity at startup.

    On SQLite the schema is created from the models, since migrations are
    only maintained for PostgreSQL.

    Raises:
        sqlalchemy.exc.SQLAlchemyError: If the database is unreachable.
    """
    logger.info(
        "Initializing database connection",
        extra={"postgres": db_settings.is_configured},
    )
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))

    if not db_settings.is_configured:
        await create_schema(engine)

    logger.info("Database connection established")


async def create_schema(target: AsyncEngine) -> None:
    """Create every table known to the model registry (idempotent)."""
    from relay_service.core.models import Base

    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_database() -> None:
    """Dispose of the engine's connection pool at shutdown."""
    logger.info("Closing database connection")
    await engine.dispose()


__all__ = [
    "AsyncSessionLocal",
    "build_engine",
    "build_session_factory",
    "close_database",
    "create_schema",
    "engine",
    "get_async_session",
    "init_database",
]
