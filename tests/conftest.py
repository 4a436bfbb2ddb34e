"""Pytest configuration and shared fixtures.

Organization:
    - Environment: settings that keep tests off external infrastructure
    - Database Fixtures: file-backed SQLite engine, session factory, session
    - Domain Fixtures: commands, events and quiet worker settings

Workers open their own sessions, so database tests share one file-backed
SQLite database per test rather than a single in-memory connection.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator
from datetime import timedelta
from typing import TYPE_CHECKING

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

# Ensure tests run without external infrastructure
os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("DB_ENABLED", "false")
os.environ.setdefault("DB_SQLITE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("NATS_ENABLED", "false")
os.environ.setdefault("LOG_JSON_LOGS", "false")


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
async def db_engine(tmp_path) -> AsyncGenerator[AsyncEngine]:
    """Async engine on a fresh SQLite file with every table created.

    Example:
        async def test_with_db(db_engine):
            async with db_engine.begin() as conn:
                await conn.execute(text("SELECT 1"))
    """
    from relay_service.infra.database.session import create_schema

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'relay.db'}", echo=False)
    await create_schema(engine)

    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """The production session factory bound to the test engine."""
    from relay_service.infra.database.session import build_session_factory

    return build_session_factory(db_engine)


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Session for arranging and asserting on rows.

    Close it (or commit) before running code that writes in its own session:
    SQLite allows a single writer at a time.
    """
    async with session_factory() as session:
        try:
            yield session
        finally:
            await session.rollback()


# ============================================================================
# Domain Fixtures
# ============================================================================


@pytest.fixture
def grant_command():
    """A valid grant/revoke body."""
    from relay_service.features.entitlements.schemas import EntitlementCommand

    return EntitlementCommand(user_id="u-1", sku="sku-pro", reason="purchase", purchase_id="p-100")


@pytest.fixture
def fixed_backoff():
    """Backoff without jitter: 1s, 2s, 4s ... capped at 60s."""
    from relay_service.utils.backoff import BackoffPolicy

    return BackoffPolicy(
        base=timedelta(seconds=1),
        minimum=timedelta(seconds=1),
        maximum=timedelta(seconds=60),
        jitter_min=1.0,
        jitter_max=1.0,
    )
