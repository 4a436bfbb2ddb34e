"""OutboxEvent SQLAlchemy model for the transactional outbox pattern.

Rows are inserted in the same transaction as the entitlement change they
describe, so a committed change always has its event and an event never
exists without its change. The outbox publisher is the only component that
moves rows between statuses (plus the operator requeue command).
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import StrEnum

from sqlalchemy import Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from relay_service.core.database.base import Base, TimestampMixin, generate_uuid7
from relay_service.core.database.leasing import LeasedRowMixin, LeaseStates
from relay_service.core.database.types import UTCDateTime


class OutboxStatus(StrEnum):
    """Publish state of an outbox row."""

    PENDING = "PENDING"
    IN_FLIGHT = "IN_FLIGHT"
    PUBLISHED = "PUBLISHED"
    FAILED = "FAILED"


OUTBOX_STATES = LeaseStates(
    pending=OutboxStatus.PENDING,
    in_progress=OutboxStatus.IN_FLIGHT,
    done=OutboxStatus.PUBLISHED,
    failed=OutboxStatus.FAILED,
)


class OutboxEvent(Base, TimestampMixin, LeasedRowMixin):
    """Domain event staged for publishing.

    Attributes:
        event_id: UUID v7 primary key, also the broker dedup id (Nats-Msg-Id)
        event_type: Event name, e.g. "EntitlementGranted"
        aggregate_key: "{user_id}:{sku}", for per-aggregate ordering downstream
        payload: JSON text built from the post-mutation state
        published_at: When the broker acknowledged the event
    """

    __tablename__ = "outbox_events"

    event_id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=generate_uuid7,
        comment="Event id, used as the broker dedup id",
    )
    event_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Event type identifier",
    )
    aggregate_key: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Aggregate key (user_id:sku)",
    )
    payload: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="JSON-serialized event data",
    )
    published_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
        comment="When the event was acknowledged by the broker",
    )

    __table_args__ = (
        # Lease candidate scan: due PENDING rows and expired IN_FLIGHT leases
        Index("ix_outbox_events_claim", "status", "next_retry_at", "created_at"),
        Index("ix_outbox_events_lease", "status", "lease_until"),
        # Retention scan over PUBLISHED rows
        Index("ix_outbox_events_published_at", "published_at"),
        Index("ix_outbox_events_aggregate", "aggregate_key", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"OutboxEvent(event_id={self.event_id}, event_type={self.event_type!r}, "
            f"status={self.status}, attempts={self.attempt_count})"
        )


__all__ = ["OUTBOX_STATES", "OutboxEvent", "OutboxStatus"]
