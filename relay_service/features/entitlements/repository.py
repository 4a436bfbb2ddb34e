"""Repositories for entitlements and their audit trail."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import select

from relay_service.core.database.repository import BaseRepository
from relay_service.features.entitlements.models import Entitlement, EntitlementAudit

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession


class EntitlementRepository(BaseRepository[Entitlement]):
    """Repository for Entitlement rows.

    Inherits from BaseRepository:
        - get(session, (user_id, sku)) -> Entitlement | None
        - create(session, instance) -> Entitlement

    Feature-specific methods below.
    """

    def __init__(self) -> None:
        super().__init__(Entitlement)

    async def get_for_update(
        self,
        session: AsyncSession,
        user_id: str,
        sku: str,
    ) -> Entitlement | None:
        """Load one entitlement and lock its row until the transaction ends.

        Concurrent commands on the same (user_id, sku) serialize here on
        PostgreSQL, so each sees the other's committed version.
        """
        stmt = (
            select(Entitlement)
            .where(Entitlement.user_id == user_id, Entitlement.sku == sku)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_user(
        self,
        session: AsyncSession,
        user_id: str,
        *,
        limit: int = 100,
    ) -> Sequence[Entitlement]:
        """Entitlements of one user, most recently changed first."""
        stmt = (
            select(Entitlement)
            .where(Entitlement.user_id == user_id)
            .order_by(Entitlement.updated_at.desc(), Entitlement.sku)
            .limit(limit)
        )
        result = await session.execute(stmt)
        return result.scalars().all()


class EntitlementAuditRepository(BaseRepository[EntitlementAudit]):
    """Append-only access to the audit trail."""

    def __init__(self) -> None:
        super().__init__(EntitlementAudit)

    async def list_for_entitlement(
        self,
        session: AsyncSession,
        user_id: str,
        sku: str,
    ) -> Sequence[EntitlementAudit]:
        stmt = (
            select(EntitlementAudit)
            .where(EntitlementAudit.user_id == user_id, EntitlementAudit.sku == sku)
            .order_by(EntitlementAudit.occurred_at, EntitlementAudit.id)
        )
        result = await session.execute(stmt)
        return result.scalars().all()


_entitlement_repository: EntitlementRepository | None = None
_audit_repository: EntitlementAuditRepository | None = None


def get_entitlement_repository() -> EntitlementRepository:
    """Get the shared EntitlementRepository instance."""
    global _entitlement_repository
    if _entitlement_repository is None:
        _entitlement_repository = EntitlementRepository()
    return _entitlement_repository


def get_entitlement_audit_repository() -> EntitlementAuditRepository:
    """Get the shared EntitlementAuditRepository instance."""
    global _audit_repository
    if _audit_repository is None:
        _audit_repository = EntitlementAuditRepository()
    return _audit_repository


__all__ = [
    "EntitlementAuditRepository",
    "EntitlementRepository",
    "get_entitlement_audit_repository",
    "get_entitlement_repository",
]
