"""Repositories for the notification delivery queue and its side tables."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError

from relay_service.core.database.base import generate_uuid7
from relay_service.core.database.leasing import LeaseRepository
from relay_service.core.database.repository import BaseRepository
from relay_service.core.database.types import utcnow
from relay_service.features.notifications.models import (
    NOTIFICATION_STATES,
    Notification,
    NotificationDlq,
    NotificationNatsDlq,
    NotificationReceipt,
    NotificationStatus,
)

if TYPE_CHECKING:
    import uuid
    from collections.abc import Sequence
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession


class NotificationRepository(LeaseRepository[Notification]):
    """Delivery queue queries.

    Leasing and status transitions come from ``LeaseRepository``.
    """

    def __init__(self) -> None:
        super().__init__(Notification, states=NOTIFICATION_STATES, completed_at="sent_at")

    async def get_by_source_event(
        self,
        session: AsyncSession,
        source_event_id: uuid.UUID,
    ) -> Notification | None:
        return await self.get_by(session, Notification.source_event_id, source_event_id)

    async def insert_if_absent(
        self,
        session: AsyncSession,
        *,
        source_event_id: uuid.UUID,
        user_id: str,
        type: str,  # noqa: A002
        occurred_at: datetime,
        payload: str,
    ) -> bool:
        """Insert a PENDING notification unless one exists for the event.

        Flushes but does not commit. A concurrent insert of the same event
        loses on the unique constraint; the session is rolled back and the
        event is treated as already present.

        Returns:
            True if a new row was inserted
        """
        if await self.get_by_source_event(session, source_event_id) is not None:
            return False

        session.add(
            Notification(
                id=generate_uuid7(),
                source_event_id=source_event_id,
                user_id=user_id,
                type=type,
                occurred_at=occurred_at,
                payload=payload,
                status=NotificationStatus.PENDING,
                attempt_count=0,
            )
        )
        try:
            await session.flush()
        except IntegrityError:
            await session.rollback()
            self._logger.info(
                "Notification inserted concurrently",
                extra={"source_event_id": str(source_event_id)},
            )
            return False
        return True

    async def list_for_user(
        self,
        session: AsyncSession,
        user_id: str,
        *,
        limit: int = 100,
    ) -> Sequence[Notification]:
        """Notifications of one user, newest first."""
        stmt = (
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(limit)
        )
        result = await session.execute(stmt)
        return result.scalars().all()


class NotificationDlqRepository(BaseRepository[NotificationDlq]):
    def __init__(self) -> None:
        super().__init__(NotificationDlq)

    async def record(
        self,
        session: AsyncSession,
        notification: Notification,
        *,
        error_message: str | None,
    ) -> NotificationDlq:
        """Stage a dead letter in the caller's transaction (no commit).

        A notification requeued by an operator and failed again keeps its one
        DLQ row, refreshed with the latest error.
        """
        entry = await self.get_by(session, NotificationDlq.notification_id, notification.id)
        if entry is not None:
            entry.error_message = error_message
            entry.created_at = utcnow()
            await session.flush()
            return entry
        return await self.create(
            session,
            NotificationDlq(
                notification_id=notification.id,
                source_event_id=notification.source_event_id,
                payload=notification.payload,
                error_message=error_message,
            ),
        )

    async def list_recent(self, session: AsyncSession, *, limit: int = 100) -> Sequence[NotificationDlq]:
        stmt = select(NotificationDlq).order_by(NotificationDlq.created_at.desc()).limit(limit)
        result = await session.execute(stmt)
        return result.scalars().all()


class NotificationNatsDlqRepository(BaseRepository[NotificationNatsDlq]):
    """Stream sequences JetStream stopped delivering to the consumer."""

    def __init__(self) -> None:
        super().__init__(NotificationNatsDlq)

    async def record_if_absent(
        self,
        session: AsyncSession,
        *,
        stream: str,
        consumer: str,
        stream_seq: int,
        kind: str,
        deliveries: int | None = None,
        reason: str | None = None,
    ) -> bool:
        """Stage one row per ``(stream, stream_seq)``; flushes, never commits.

        A sequence can be reported twice (both advisories, or a redelivered
        advisory); the first report wins.

        Returns:
            True if a new row was inserted
        """
        existing = await session.execute(
            select(NotificationNatsDlq.id).where(
                NotificationNatsDlq.stream == stream,
                NotificationNatsDlq.stream_seq == stream_seq,
            )
        )
        if existing.first() is not None:
            return False

        session.add(
            NotificationNatsDlq(
                id=generate_uuid7(),
                stream=stream,
                consumer=consumer,
                stream_seq=stream_seq,
                kind=kind,
                deliveries=deliveries,
                reason=reason,
            )
        )
        try:
            await session.flush()
        except IntegrityError:
            await session.rollback()
            self._logger.info(
                "Advisory recorded concurrently",
                extra={"stream": stream, "stream_seq": stream_seq},
            )
            return False
        return True

    async def list_recent(self, session: AsyncSession, *, limit: int = 100) -> Sequence[NotificationNatsDlq]:
        stmt = (
            select(NotificationNatsDlq)
            .order_by(NotificationNatsDlq.created_at.desc(), NotificationNatsDlq.stream_seq.desc())
            .limit(limit)
        )
        result = await session.execute(stmt)
        return result.scalars().all()

    async def delete_older_than(
        self,
        session: AsyncSession,
        *,
        older_than: datetime,
        limit: int | None = None,
    ) -> int:
        victims = select(NotificationNatsDlq.id).where(NotificationNatsDlq.created_at <= older_than)
        if limit is not None:
            victims = victims.limit(limit)
        stmt = (
            delete(NotificationNatsDlq)
            .where(NotificationNatsDlq.id.in_(victims))
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount


class NotificationReceiptRepository(BaseRepository[NotificationReceipt]):
    def __init__(self) -> None:
        super().__init__(NotificationReceipt)

    async def exists(self, session: AsyncSession, idempotency_key: str) -> bool:
        receipt = await self.get_by(session, NotificationReceipt.idempotency_key, idempotency_key)
        return receipt is not None

    async def delete_settled(
        self,
        session: AsyncSession,
        *,
        older_than: datetime,
    ) -> int:
        """Delete receipts delivered before ``older_than``.

        Receipts of notifications still PENDING or PROCESSING are kept: the
        delivery worker may retry them and the receipt is what stops a second
        send. Such a notification was created before its receipt, so only
        active rows older than the horizon need checking.
        """
        stale_active = select(Notification.id).where(
            Notification.status.in_(NOTIFICATION_STATES.active),
            Notification.created_at <= older_than,
        )
        keep = [str(row_id) for row_id in (await session.execute(stale_active)).scalars()]

        stmt = delete(NotificationReceipt).where(NotificationReceipt.delivered_at <= older_than)
        if keep:
            stmt = stmt.where(NotificationReceipt.idempotency_key.not_in(keep))
        result = await session.execute(stmt)
        return result.rowcount


_notification_repository: NotificationRepository | None = None
_dlq_repository: NotificationDlqRepository | None = None
_nats_dlq_repository: NotificationNatsDlqRepository | None = None
_receipt_repository: NotificationReceiptRepository | None = None


def get_notification_repository() -> NotificationRepository:
    """Get the shared NotificationRepository instance."""
    global _notification_repository
    if _notification_repository is None:
        _notification_repository = NotificationRepository()
    return _notification_repository


def get_notification_dlq_repository() -> NotificationDlqRepository:
    global _dlq_repository
    if _dlq_repository is None:
        _dlq_repository = NotificationDlqRepository()
    return _dlq_repository


def get_notification_nats_dlq_repository() -> NotificationNatsDlqRepository:
    global _nats_dlq_repository
    if _nats_dlq_repository is None:
        _nats_dlq_repository = NotificationNatsDlqRepository()
    return _nats_dlq_repository


def get_notification_receipt_repository() -> NotificationReceiptRepository:
    global _receipt_repository
    if _receipt_repository is None:
        _receipt_repository = NotificationReceiptRepository()
    return _receipt_repository


__all__ = [
    "NotificationDlqRepository",
    "NotificationNatsDlqRepository",
    "NotificationReceiptRepository",
    "NotificationRepository",
    "get_notification_dlq_repository",
    "get_notification_nats_dlq_repository",
    "get_notification_receipt_repository",
    "get_notification_repository",
]
