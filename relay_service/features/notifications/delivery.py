"""Background notification delivery worker.

Same lease machinery as the outbox publisher, applied to ``notifications``
with PROCESSING / SENT. A notification that exhausts its attempts (or fails
terminally) is marked FAILED and copied to ``notification_dlq`` in one
transaction.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from relay_service.core.settings import get_delivery_settings
from relay_service.features.notifications.models import Notification
from relay_service.features.notifications.repository import (
    NotificationDlqRepository,
    get_notification_dlq_repository,
    get_notification_repository,
)
from relay_service.features.notifications.senders import build_sender
from relay_service.infra.workers.leased import LeasedBatchProcessor

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from relay_service.core.settings.delivery import DeliverySettings
    from relay_service.features.notifications.senders import NotificationSender
    from relay_service.utils.backoff import BackoffPolicy

logger = logging.getLogger(__name__)

# Global worker instance
_worker: DeliveryWorker | None = None


class DeliveryWorker(LeasedBatchProcessor[Notification]):
    """Sends leased notifications through a ``NotificationSender``."""

    queue_name = "notifications"

    def __init__(
        self,
        sender: NotificationSender | None = None,
        *,
        settings: DeliverySettings | None = None,
        dlq: NotificationDlqRepository | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        worker_id: str | None = None,
        backoff: BackoffPolicy | None = None,
    ) -> None:
        settings = settings or get_delivery_settings()
        super().__init__(
            repository=get_notification_repository(),
            settings=settings,
            session_factory=session_factory,
            worker_id=worker_id,
            backoff=backoff,
        )
        self.sender = sender or build_sender(settings, session_factory)
        self.dlq = dlq or get_notification_dlq_repository()

    async def handle(self, record: Notification) -> None:
        await self.sender.send(record, idempotency_key=str(record.id))

    async def park(self, record: Notification, *, attempts: int, error: str) -> bool:
        """Mark FAILED and write the dead letter atomically.

        Nothing is written when the lease was lost to another worker.
        """
        async with self.session_factory() as session:
            owned = await self.repository.mark_failed(
                session,
                record.id,
                owner=self.worker_id,
                attempt_count=attempts,
                error=error,
            )
            if not owned:
                await session.rollback()
                return False

            await self.dlq.record(session, record, error_message=error)
            await session.commit()

        logger.info(
            "Notification moved to DLQ",
            extra={"notification_id": str(record.id), "event_id": str(record.source_event_id)},
        )
        return True


async def start_delivery_worker(sender: NotificationSender | None = None) -> None:
    """Start the global delivery worker if enabled."""
    global _worker

    settings = get_delivery_settings()
    if not settings.enabled:
        logger.info("Delivery worker disabled by configuration")
        return

    _worker = DeliveryWorker(sender, settings=settings)
    await _worker.start()


async def stop_delivery_worker() -> None:
    """Stop the global delivery worker."""
    global _worker

    if _worker is not None:
        await _worker.stop()
        _worker = None


def get_delivery_worker() -> DeliveryWorker | None:
    """Get the global delivery worker instance."""
    return _worker


__all__ = [
    "DeliveryWorker",
    "get_delivery_worker",
    "start_delivery_worker",
    "stop_delivery_worker",
]
