"""SQLAlchemy models for the entitlements feature."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import StrEnum

from sqlalchemy import Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from relay_service.core.database.base import Base, generate_uuid7
from relay_service.core.database.types import UTCDateTime, utcnow


class EntitlementStatus(StrEnum):
    ACTIVE = "ACTIVE"
    REVOKED = "REVOKED"


class Entitlement(Base):
    """A user's right to a SKU.

    ``version`` starts at 0 and increases by one on every transition, so
    consumers can discard stale events for the same aggregate.
    """

    __tablename__ = "entitlements"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    sku: Mapped[str] = mapped_column(String(128), primary_key=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    granted_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    source: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Reason given by the caller for the last transition",
    )
    source_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Purchase id behind the last transition",
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
    )

    __table_args__ = (Index("ix_entitlements_user_updated", "user_id", "updated_at"),)

    @property
    def is_active(self) -> bool:
        return self.status == EntitlementStatus.ACTIVE

    def __repr__(self) -> str:
        return (
            f"Entitlement(user_id={self.user_id!r}, sku={self.sku!r}, "
            f"status={self.status}, version={self.version})"
        )


class EntitlementAudit(Base):
    """One row per executed grant or revoke."""

    __tablename__ = "entitlement_audit"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid7)
    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    sku: Mapped[str] = mapped_column(String(128), nullable=False)
    action: Mapped[str] = mapped_column(String(16), nullable=False)
    source: Mapped[str] = mapped_column(String(255), nullable=False)
    source_id: Mapped[str] = mapped_column(String(255), nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(255), nullable=False)
    detail_json: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="The command as received, JSON-serialized",
    )

    __table_args__ = (Index("ix_entitlement_audit_user_sku", "user_id", "sku", "occurred_at"),)


__all__ = ["Entitlement", "EntitlementAudit", "EntitlementStatus"]
