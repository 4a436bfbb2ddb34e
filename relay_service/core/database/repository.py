"""Minimal generic repository for SQLAlchemy models.

Provides basic CRUD operations with explicit session passing.
For complex queries, use the session directly - this is a convenience, not a cage.

Example:
    class EntitlementRepository(BaseRepository[Entitlement]):
        async def list_for_user(self, session: AsyncSession, user_id: str) -> Sequence[Entitlement]:
            stmt = select(Entitlement).where(Entitlement.user_id == user_id)
            result = await session.execute(stmt)
            return result.scalars().all()
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from sqlalchemy import select

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession
    from sqlalchemy.orm import InstrumentedAttribute

T = TypeVar("T")


class BaseRepository(Generic[T]):
    """Minimal generic repository for CRUD operations.

    Provides:
        - get(session, id) -> T | None
        - get_by(session, attr, value) -> T | None
        - create(session, instance) -> T

    Session is always explicit - no hidden state. Repositories never commit;
    the caller owns the transaction boundary.
    """

    __slots__ = ("model", "_logger")

    def __init__(self, model: type[T]) -> None:
        """Initialize repository with model class.

        Args:
            model: SQLAlchemy model class
        """
        self.model = model
        self._logger = logging.getLogger(f"repository.{model.__name__}")

    async def get(self, session: AsyncSession, id: Any) -> T | None:  # noqa: A002
        """Get entity by primary key.

        Args:
            session: Database session
            id: Primary key value (a tuple for composite keys)

        Returns:
            Entity if found, None otherwise
        """
        instance = await session.get(self.model, id)
        if self._logger.isEnabledFor(logging.DEBUG):
            self._logger.debug(
                "db.get: %s(%s) -> %s",
                self.model.__name__,
                id,
                "found" if instance else "not found",
            )
        return instance

    async def get_by(
        self,
        session: AsyncSession,
        attr: InstrumentedAttribute[Any],
        value: Any,
    ) -> T | None:
        """Get entity by an attribute with a unique value."""
        stmt = select(self.model).where(attr == value)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(self, session: AsyncSession, instance: T) -> T:
        """Persist a new entity.

        Adds to session and flushes so generated values and constraint
        violations surface immediately.

        Args:
            session: Database session
            instance: Entity instance to persist

        Returns:
            Persisted entity with generated fields populated
        """
        session.add(instance)
        await session.flush()
        return instance
