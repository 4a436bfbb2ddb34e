"""Notification senders used by the delivery worker.

A sender receives ``idempotency_key = str(notification.id)`` and must treat a
second call with the same key as already done: after a lease takeover the
delivery worker may send the same notification twice.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

from sqlalchemy.exc import IntegrityError

from relay_service.core.exceptions import TransientDependencyError
from relay_service.features.notifications.models import NotificationReceipt
from relay_service.features.notifications.repository import (
    NotificationReceiptRepository,
    get_notification_receipt_repository,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from relay_service.core.settings.delivery import DeliverySettings
    from relay_service.features.notifications.models import Notification

logger = logging.getLogger(__name__)


class NotificationSender(Protocol):
    """Delivers one notification; raises on failure."""

    async def send(self, notification: Notification, *, idempotency_key: str) -> None: ...


class LocalNotificationSender:
    """Simulated delivery that records a receipt per idempotency key.

    The receipt table is the dedup ledger: a repeated key is logged and
    skipped instead of delivered twice.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        receipts: NotificationReceiptRepository | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._receipts = receipts or get_notification_receipt_repository()

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            from relay_service.infra.database.session import AsyncSessionLocal

            self._session_factory = AsyncSessionLocal
        return self._session_factory

    async def send(self, notification: Notification, *, idempotency_key: str) -> None:
        async with self.session_factory() as session:
            if await self._receipts.exists(session, idempotency_key):
                logger.info("Notification already delivered", extra={"idempotency_key": idempotency_key})
                return

            session.add(NotificationReceipt(idempotency_key=idempotency_key, user_id=notification.user_id))
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.info(
                    "Notification delivered concurrently",
                    extra={"idempotency_key": idempotency_key},
                )
                return

        logger.info(
            "Notification delivered",
            extra={
                "idempotency_key": idempotency_key,
                "user_id": notification.user_id,
                "type": notification.type,
                "event_id": str(notification.source_event_id),
            },
        )


class FailureInjectingNotificationSender:
    """Fails every send for users whose id starts with ``user_prefix``.

    For exercising the retry and dead-letter paths end to end.
    """

    def __init__(self, delegate: NotificationSender, user_prefix: str) -> None:
        self._delegate = delegate
        self._user_prefix = user_prefix

    def should_fail(self, user_id: str) -> bool:
        return bool(self._user_prefix) and user_id.startswith(self._user_prefix)

    async def send(self, notification: Notification, *, idempotency_key: str) -> None:
        if self.should_fail(notification.user_id):
            msg = f"injected delivery failure for user_id={notification.user_id}"
            raise TransientDependencyError(msg)
        await self._delegate.send(notification, idempotency_key=idempotency_key)


def build_sender(
    settings: DeliverySettings,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> NotificationSender:
    """Local sender, wrapped with failure injection when enabled."""
    sender: NotificationSender = LocalNotificationSender(session_factory)
    if settings.failure_injection_enabled:
        logger.warning(
            "Delivery failure injection enabled",
            extra={"user_prefix": settings.failure_user_prefix},
        )
        sender = FailureInjectingNotificationSender(sender, settings.failure_user_prefix)
    return sender


__all__ = [
    "FailureInjectingNotificationSender",
    "LocalNotificationSender",
    "NotificationSender",
    "build_sender",
]
