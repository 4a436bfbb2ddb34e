"""IdempotencyRecord model: one row per client idempotency key."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from relay_service.core.database.base import Base
from relay_service.core.database.types import UTCDateTime, utcnow


class IdempotencyRecord(Base):
    """Stored outcome of a command, keyed by its idempotency key.

    ``response_code`` is NULL only while the reservation is held inside the
    command transaction; committed rows always carry the response. A row
    whose ``expires_at`` has passed is treated as absent.
    """

    __tablename__ = "idempotency_keys"

    key: Mapped[str] = mapped_column(
        String(255),
        primary_key=True,
        comment="Client-supplied idempotency key",
    )
    request_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="SHA-256 hex of the canonical request",
    )
    response_code: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
        comment="HTTP status returned for the request",
    )
    response_body: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="Exact response body returned for the request",
    )
    expires_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        comment="After this instant the key may be reused",
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
        comment="Timestamp of record creation",
    )

    __table_args__ = (Index("ix_idempotency_keys_expires_at", "expires_at"),)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def __repr__(self) -> str:
        return f"IdempotencyRecord(key={self.key!r}, response_code={self.response_code})"


__all__ = ["IdempotencyRecord"]
