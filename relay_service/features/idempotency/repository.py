"""Repository for idempotency records."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import delete, select

from relay_service.core.database.repository import BaseRepository
from relay_service.features.idempotency.models import IdempotencyRecord

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession


class IdempotencyRepository(BaseRepository[IdempotencyRecord]):
    """Data access for IdempotencyRecord."""

    def __init__(self) -> None:
        super().__init__(IdempotencyRecord)

    async def load(self, session: AsyncSession, key: str) -> IdempotencyRecord | None:
        """Read the row for ``key`` from the database, bypassing the identity map."""
        stmt = (
            select(IdempotencyRecord)
            .where(IdempotencyRecord.key == key)
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def delete_expired_key(self, session: AsyncSession, key: str, *, now: datetime) -> int:
        """Remove ``key`` only if it has expired; a live row is left alone."""
        stmt = (
            delete(IdempotencyRecord)
            .where(IdempotencyRecord.key == key, IdempotencyRecord.expires_at <= now)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount

    async def delete_expired(
        self,
        session: AsyncSession,
        *,
        now: datetime,
        limit: int | None = None,
    ) -> int:
        """Delete records whose ``expires_at`` has passed."""
        victims = select(IdempotencyRecord.key).where(IdempotencyRecord.expires_at <= now)
        if limit is not None:
            victims = victims.limit(limit)
        stmt = (
            delete(IdempotencyRecord)
            .where(IdempotencyRecord.key.in_(victims))
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount


_idempotency_repository: IdempotencyRepository | None = None


def get_idempotency_repository() -> IdempotencyRepository:
    """Get the shared IdempotencyRepository instance."""
    global _idempotency_repository
    if _idempotency_repository is None:
        _idempotency_repository = IdempotencyRepository()
    return _idempotency_repository
