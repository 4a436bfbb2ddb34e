"""Tests for recording JetStream consumer advisories as NATS dead letters."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from relay_service.features.notifications.advisories import decode_advisory, process_advisory
from relay_service.features.notifications.handler import AckAction
from relay_service.features.notifications.models import ConsumerAdvisoryKind, NotificationNatsDlq
from relay_service.features.notifications.repository import NotificationNatsDlqRepository


def _advisory(**overrides) -> bytes:
    body = {
        "type": "io.nats.jetstream.advisory.v1.max_deliver",
        "id": "adv-1",
        "timestamp": "2026-03-01T12:00:00Z",
        "stream": "ENTITLEMENTS",
        "consumer": "notification-service",
        "stream_seq": 42,
        "deliveries": 10,
    }
    body.update(overrides)
    return json.dumps(body).encode()


class FakeMessage:
    def __init__(self, body: bytes) -> None:
        self.body = body
        self.ack = AsyncMock()
        self.nack = AsyncMock()
        self.reject = AsyncMock()


async def _dead_letters(session_factory) -> list[NotificationNatsDlq]:
    async with session_factory() as session:
        return list((await session.execute(select(NotificationNatsDlq))).scalars())


class TestDecodeAdvisory:
    def test_terminated_advisory_keeps_reason(self):
        advisory = decode_advisory(
            _advisory(type="io.nats.jetstream.advisory.v1.terminated", reason="invalid entitlement event: event_id")
        )

        assert advisory is not None
        assert advisory.stream_seq == 42
        assert advisory.reason == "invalid entitlement event: event_id"

    @pytest.mark.parametrize(
        "body",
        [
            b"not json",
            _advisory(stream_seq=0),
            _advisory(stream_seq="abc"),
            json.dumps({"stream": "ENTITLEMENTS", "consumer": "notification-service"}).encode(),
        ],
    )
    def test_unusable_advisory_is_none(self, body):
        assert decode_advisory(body) is None


@pytest.mark.asyncio
class TestProcessAdvisory:
    async def test_max_deliveries_recorded_and_acked(self, session_factory):
        message = FakeMessage(_advisory())

        action = await process_advisory(message, ConsumerAdvisoryKind.MAX_DELIVERIES, session_factory=session_factory)

        assert action is AckAction.ACK
        message.ack.assert_awaited_once()
        (row,) = await _dead_letters(session_factory)
        assert (row.stream, row.consumer, row.stream_seq) == ("ENTITLEMENTS", "notification-service", 42)
        assert row.kind == ConsumerAdvisoryKind.MAX_DELIVERIES
        assert row.deliveries == 10
        assert row.reason is None

    async def test_same_sequence_reported_twice_keeps_first(self, session_factory):
        await process_advisory(
            FakeMessage(_advisory()),
            ConsumerAdvisoryKind.MAX_DELIVERIES,
            session_factory=session_factory,
        )
        second = FakeMessage(_advisory(reason="late"))

        action = await process_advisory(second, ConsumerAdvisoryKind.TERMINATED, session_factory=session_factory)

        assert action is AckAction.ACK
        second.ack.assert_awaited_once()
        (row,) = await _dead_letters(session_factory)
        assert row.kind == ConsumerAdvisoryKind.MAX_DELIVERIES

    async def test_unusable_advisory_dropped_with_ack(self, session_factory):
        message = FakeMessage(b"{}")

        action = await process_advisory(message, ConsumerAdvisoryKind.TERMINATED, session_factory=session_factory)

        assert action is AckAction.ACK
        message.nack.assert_not_awaited()
        assert await _dead_letters(session_factory) == []

    async def test_database_failure_requests_redelivery(self, session_factory):
        repository = NotificationNatsDlqRepository()
        repository.record_if_absent = AsyncMock(side_effect=RuntimeError("database unavailable"))
        message = FakeMessage(_advisory())

        action = await process_advisory(
            message,
            ConsumerAdvisoryKind.MAX_DELIVERIES,
            session_factory=session_factory,
            repository=repository,
        )

        assert action is AckAction.NACK
        message.nack.assert_awaited_once()
        message.ack.assert_not_awaited()
