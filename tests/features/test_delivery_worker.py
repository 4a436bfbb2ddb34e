"""Tests for notification delivery, retries and the dead-letter queue."""

from __future__ import annotations

import json
import uuid
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select, update

from relay_service.core.database.base import generate_uuid7
from relay_service.core.database.types import utcnow
from relay_service.core.exceptions import TerminalFailure
from relay_service.core.settings.delivery import DeliverySettings
from relay_service.features.notifications.delivery import DeliveryWorker
from relay_service.features.notifications.handler import AckAction, NotificationEventHandler, process_message
from relay_service.features.notifications.models import (
    Notification,
    NotificationDlq,
    NotificationReceipt,
    NotificationStatus,
)
from relay_service.features.notifications.repository import NotificationRepository
from relay_service.features.notifications.senders import (
    FailureInjectingNotificationSender,
    LocalNotificationSender,
    build_sender,
)


def _settings(**overrides) -> DeliverySettings:
    values = {"batch_size": 10, "max_attempts": 3, "lease": timedelta(seconds=30)}
    values.update(overrides)
    return DeliverySettings(**values)


def _worker(sender, session_factory, fixed_backoff, **settings) -> DeliveryWorker:
    return DeliveryWorker(
        sender,
        settings=_settings(**settings),
        session_factory=session_factory,
        worker_id="test-worker",
        backoff=fixed_backoff,
    )


async def _enqueue(session_factory, user_id: str = "u-1") -> Notification:
    async with session_factory() as session:
        event_id = generate_uuid7()
        await NotificationRepository().insert_if_absent(
            session,
            source_event_id=event_id,
            user_id=user_id,
            type="EntitlementGranted",
            occurred_at=utcnow(),
            payload=f'{{"user_id":"{user_id}"}}',
        )
        await session.commit()
        return await NotificationRepository().get_by_source_event(session, event_id)


async def _reload(session_factory, notification_id: uuid.UUID) -> Notification:
    async with session_factory() as session:
        stmt = select(Notification).where(Notification.id == notification_id)
        return (await session.execute(stmt)).scalar_one()


async def _count(session_factory, model) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


async def _make_due(session_factory, notification_id: uuid.UUID) -> None:
    async with session_factory() as session:
        await session.execute(
            update(Notification).where(Notification.id == notification_id).values(next_retry_at=None)
        )
        await session.commit()


class FailingSender:
    def __init__(self, error: Exception) -> None:
        self.error = error
        self.calls = 0

    async def send(self, notification, *, idempotency_key: str) -> None:
        self.calls += 1
        raise self.error


@pytest.mark.asyncio
class TestDelivery:
    async def test_success_marks_sent_and_records_receipt(self, session_factory, fixed_backoff):
        notification = await _enqueue(session_factory)
        worker = _worker(LocalNotificationSender(session_factory), session_factory, fixed_backoff)

        assert await worker.run_once() == 1

        stored = await _reload(session_factory, notification.id)
        assert stored.status == NotificationStatus.SENT
        assert stored.sent_at is not None
        async with session_factory() as session:
            (receipt,) = (await session.execute(select(NotificationReceipt))).scalars().all()
        assert receipt.idempotency_key == str(notification.id)

    async def test_local_sender_is_idempotent(self, session_factory):
        notification = await _enqueue(session_factory)
        sender = LocalNotificationSender(session_factory)

        await sender.send(notification, idempotency_key=str(notification.id))
        await sender.send(notification, idempotency_key=str(notification.id))

        assert await _count(session_factory, NotificationReceipt) == 1

    async def test_failure_schedules_retry(self, session_factory, fixed_backoff):
        notification = await _enqueue(session_factory)

        await _worker(FailingSender(ConnectionError("smtp down")), session_factory, fixed_backoff).run_once()

        stored = await _reload(session_factory, notification.id)
        assert stored.status == NotificationStatus.PENDING
        assert stored.attempt_count == 1
        assert stored.last_error == "ConnectionError: smtp down"
        assert await _count(session_factory, NotificationDlq) == 0

    async def test_exhausted_attempts_move_to_dlq_once(self, session_factory, fixed_backoff):
        notification = await _enqueue(session_factory, user_id="fail-u-1")
        sender = FailureInjectingNotificationSender(LocalNotificationSender(session_factory), "fail-")
        worker = _worker(sender, session_factory, fixed_backoff, max_attempts=2)

        await worker.run_once()
        await _make_due(session_factory, notification.id)
        await worker.run_once()

        stored = await _reload(session_factory, notification.id)
        assert stored.status == NotificationStatus.FAILED
        assert stored.attempt_count == 2
        async with session_factory() as session:
            (entry,) = (await session.execute(select(NotificationDlq))).scalars().all()
        assert entry.notification_id == notification.id
        assert entry.source_event_id == notification.source_event_id
        assert entry.payload == notification.payload
        assert "injected delivery failure" in entry.error_message
        assert await _count(session_factory, NotificationReceipt) == 0

    async def test_terminal_failure_skips_retries(self, session_factory, fixed_backoff):
        notification = await _enqueue(session_factory)
        sender = FailingSender(TerminalFailure("recipient unknown"))

        await _worker(sender, session_factory, fixed_backoff).run_once()

        stored = await _reload(session_factory, notification.id)
        assert sender.calls == 1
        assert stored.status == NotificationStatus.FAILED
        assert stored.attempt_count == 1
        assert await _count(session_factory, NotificationDlq) == 1

    async def test_requeued_notification_failing_again_keeps_one_dlq_row(self, session_factory, fixed_backoff):
        notification = await _enqueue(session_factory)
        worker = _worker(FailingSender(TerminalFailure("first")), session_factory, fixed_backoff)
        await worker.run_once()

        async with session_factory() as session:
            assert await NotificationRepository().requeue_failed(session, [notification.id]) == 1
            await session.commit()

        worker.sender = FailingSender(TerminalFailure("second"))
        await worker.run_once()

        async with session_factory() as session:
            (entry,) = (await session.execute(select(NotificationDlq))).scalars().all()
        assert entry.error_message == "TerminalFailure: second"


@pytest.mark.asyncio
async def test_park_without_lease_writes_nothing(session_factory, fixed_backoff):
    notification = await _enqueue(session_factory)
    worker = _worker(FailingSender(TerminalFailure("x")), session_factory, fixed_backoff)

    # Never leased by this worker
    assert await worker.park(notification, attempts=1, error="boom") is False

    stored = await _reload(session_factory, notification.id)
    assert stored.status == NotificationStatus.PENDING
    assert await _count(session_factory, NotificationDlq) == 0


def test_build_sender_wraps_with_failure_injection():
    plain = build_sender(_settings())
    injecting = build_sender(_settings(failure_injection_enabled=True, failure_user_prefix="bad-"))

    assert isinstance(plain, LocalNotificationSender)
    assert isinstance(injecting, FailureInjectingNotificationSender)
    assert injecting.should_fail("bad-user") is True
    assert injecting.should_fail("good-user") is False


class _RedeliveredMessage:
    def __init__(self, body: bytes) -> None:
        self.body = body
        self.ack = AsyncMock()
        self.nack = AsyncMock()
        self.reject = AsyncMock()


@pytest.mark.asyncio
async def test_redelivered_event_notifies_user_once(session_factory, fixed_backoff):
    body = json.dumps(
        {
            "event_id": "0190a1b2-0000-7000-8000-000000000001",
            "event_type": "EntitlementGranted",
            "occurred_at": "2026-03-01T12:00:00Z",
            "user_id": "u-1",
            "sku": "sku-pro",
            "source": "purchase",
            "source_id": "p-100",
            "version": 0,
        }
    ).encode()
    handler = NotificationEventHandler()

    for _ in range(2):
        message = _RedeliveredMessage(body)
        assert await process_message(message, session_factory=session_factory, handler=handler) is AckAction.ACK
        message.ack.assert_awaited_once()

    worker = _worker(LocalNotificationSender(session_factory), session_factory, fixed_backoff)
    assert await worker.run_once() == 1
    assert await worker.run_once() == 0

    async with session_factory() as session:
        (notification,) = (await session.execute(select(Notification))).scalars().all()
        (receipt,) = (await session.execute(select(NotificationReceipt))).scalars().all()
    assert notification.status == NotificationStatus.SENT
    assert notification.user_id == "u-1"
    assert receipt.idempotency_key == str(notification.id)
