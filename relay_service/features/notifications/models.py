"""SQLAlchemy models for the notifications feature.

``notifications`` is the delivery queue: one row per consumed entitlement
event, keyed for dedup by ``source_event_id``. The delivery worker leases
rows from it with the shared lease machinery.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import StrEnum

from sqlalchemy import BigInteger, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from relay_service.core.database.base import Base, TimestampMixin, UUIDv7PKMixin
from relay_service.core.database.leasing import LeasedRowMixin, LeaseStates
from relay_service.core.database.types import UTCDateTime, utcnow


class NotificationStatus(StrEnum):
    """Delivery state of a notification."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SENT = "SENT"
    FAILED = "FAILED"


NOTIFICATION_STATES = LeaseStates(
    pending=NotificationStatus.PENDING,
    in_progress=NotificationStatus.PROCESSING,
    done=NotificationStatus.SENT,
    failed=NotificationStatus.FAILED,
)


class Notification(Base, UUIDv7PKMixin, TimestampMixin, LeasedRowMixin):
    """Work item derived from one broker event.

    Attributes:
        source_event_id: event_id of the originating event; unique, so a
            redelivered message never creates a second row
        user_id: Recipient, also the routing key
        type: Event type that produced the notification
        occurred_at: When the originating change happened
        payload: The event as JSON text
        sent_at: When the sender accepted the notification
    """

    __tablename__ = "notifications"

    source_event_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    type: Mapped[str] = mapped_column(String(100), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    __table_args__ = (
        UniqueConstraint("source_event_id"),
        Index("ix_notifications_claim", "status", "next_retry_at", "created_at"),
        Index("ix_notifications_lease", "status", "lease_until"),
        Index("ix_notifications_user_created", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"Notification(id={self.id}, source_event_id={self.source_event_id}, "
            f"status={self.status}, attempts={self.attempt_count})"
        )


class NotificationDlq(Base, UUIDv7PKMixin):
    """Dead letter for a notification that reached FAILED."""

    __tablename__ = "notification_dlq"

    notification_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    source_event_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)

    __table_args__ = (UniqueConstraint("notification_id"),)


class ConsumerAdvisoryKind(StrEnum):
    """Why JetStream gave up on a message."""

    MAX_DELIVERIES = "MAX_DELIVERIES"
    TERMINATED = "TERMINATED"


class NotificationNatsDlq(Base, UUIDv7PKMixin):
    """Stream message the consumer never stored, taken from a JetStream advisory.

    Rows point at the message by stream sequence so an operator can fetch and
    replay it; the payload itself stays in the stream.

    Attributes:
        stream: Stream holding the lost message
        consumer: Durable consumer that gave up on it
        stream_seq: Sequence of the message in ``stream``
        kind: MAX_DELIVERIES (nacked until ``max_deliver``) or TERMINATED
        deliveries: Delivery count reported by the advisory
        reason: Termination reason, when the server reports one
    """

    __tablename__ = "notification_nats_dlq"

    stream: Mapped[str] = mapped_column(String(64), nullable=False)
    consumer: Mapped[str] = mapped_column(String(64), nullable=False)
    stream_seq: Mapped[int] = mapped_column(BigInteger, nullable=False)
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    deliveries: Mapped[int | None] = mapped_column(nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("stream", "stream_seq"),
        Index("ix_notification_nats_dlq_created_at", "created_at"),
    )


class NotificationReceipt(Base, UUIDv7PKMixin):
    """Dedup ledger of the local sender: one row per delivered notification."""

    __tablename__ = "notification_receipts"

    idempotency_key: Mapped[str] = mapped_column(String(255), nullable=False)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    delivered_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("idempotency_key"),
        Index("ix_notification_receipts_delivered_at", "delivered_at"),
    )


__all__ = [
    "NOTIFICATION_STATES",
    "ConsumerAdvisoryKind",
    "Notification",
    "NotificationDlq",
    "NotificationNatsDlq",
    "NotificationReceipt",
    "NotificationStatus",
]
