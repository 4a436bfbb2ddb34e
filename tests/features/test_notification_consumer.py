"""Tests for entitlement event decoding, dedup and ack decisions."""

from __future__ import annotations

import json
import uuid
from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select

from relay_service.features.notifications.handler import (
    AckAction,
    MalformedEventError,
    NotificationEventHandler,
    decode_event,
    process_message,
)
from relay_service.features.notifications.models import Notification, NotificationStatus

EVENT_ID = uuid.UUID("0190a1b2-0000-7000-8000-000000000001")


def _event_body(**overrides) -> dict:
    body = {
        "event_id": str(EVENT_ID),
        "event_type": "EntitlementGranted",
        "occurred_at": "2026-03-01T12:00:00Z",
        "user_id": "u-1",
        "sku": "sku-pro",
        "source": "purchase",
        "source_id": "p-100",
        "version": 0,
        "trace_id": "t-1",
    }
    body.update(overrides)
    return body


class FakeMessage:
    def __init__(self, body: bytes) -> None:
        self.body = body
        self.ack = AsyncMock()
        self.nack = AsyncMock()
        self.reject = AsyncMock()


async def _notification_count(session_factory) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(Notification))).scalar_one()


class TestDecodeEvent:
    def test_bytes(self):
        event = decode_event(json.dumps(_event_body()).encode())

        assert event.event_id == EVENT_ID
        assert event.occurred_at == datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
        assert event.aggregate_key == "u-1:sku-pro"

    def test_dict_and_unknown_fields_ignored(self):
        event = decode_event(_event_body(extra_field="ignored"))

        assert event.user_id == "u-1"

    def test_naive_timestamp_read_as_utc(self):
        event = decode_event(_event_body(occurred_at="2026-03-01T12:00:00"))

        assert event.occurred_at.tzinfo is UTC

    @pytest.mark.parametrize(
        ("body", "field"),
        [
            (_event_body(event_id="not-a-uuid"), "event_id"),
            (_event_body(occurred_at="yesterday"), "occurred_at"),
            ({k: v for k, v in _event_body().items() if k != "user_id"}, "user_id"),
        ],
    )
    def test_invalid_fields_named(self, body, field):
        with pytest.raises(MalformedEventError, match=field):
            decode_event(json.dumps(body))

    def test_not_json(self):
        with pytest.raises(MalformedEventError):
            decode_event(b"\x00garbage")


@pytest.mark.asyncio
class TestHandler:
    async def test_first_delivery_enqueues_pending(self, session_factory):
        handler = NotificationEventHandler()

        async with session_factory() as session:
            assert await handler.handle(session, decode_event(_event_body())) is True

        async with session_factory() as session:
            (row,) = (await session.execute(select(Notification))).scalars().all()
        assert row.source_event_id == EVENT_ID
        assert row.status == NotificationStatus.PENDING
        assert row.user_id == "u-1"
        assert row.type == "EntitlementGranted"
        assert json.loads(row.payload)["trace_id"] == "t-1"

    async def test_redelivery_is_ignored(self, session_factory):
        handler = NotificationEventHandler()
        event = decode_event(_event_body())

        async with session_factory() as session:
            await handler.handle(session, event)
        async with session_factory() as session:
            assert await handler.handle(session, event) is False

        assert await _notification_count(session_factory) == 1


@pytest.mark.asyncio
class TestProcessMessage:
    async def test_valid_message_acked(self, session_factory):
        message = FakeMessage(json.dumps(_event_body()).encode())

        action = await process_message(message, session_factory=session_factory, handler=NotificationEventHandler())

        assert action is AckAction.ACK
        message.ack.assert_awaited_once()
        message.nack.assert_not_awaited()
        assert await _notification_count(session_factory) == 1

    async def test_duplicate_message_still_acked(self, session_factory):
        handler = NotificationEventHandler()
        body = json.dumps(_event_body()).encode()

        await process_message(FakeMessage(body), session_factory=session_factory, handler=handler)
        second = FakeMessage(body)
        action = await process_message(second, session_factory=session_factory, handler=handler)

        assert action is AckAction.ACK
        second.ack.assert_awaited_once()
        assert await _notification_count(session_factory) == 1

    async def test_malformed_message_rejected(self, session_factory):
        message = FakeMessage(b'{"event_id": "nope"}')

        action = await process_message(message, session_factory=session_factory, handler=NotificationEventHandler())

        assert action is AckAction.REJECT
        message.reject.assert_awaited_once()
        message.ack.assert_not_awaited()
        assert await _notification_count(session_factory) == 0

    async def test_handler_failure_requests_redelivery(self, session_factory):
        handler = NotificationEventHandler()
        handler.handle = AsyncMock(side_effect=RuntimeError("database unavailable"))
        message = FakeMessage(json.dumps(_event_body()).encode())

        action = await process_message(message, session_factory=session_factory, handler=handler)

        assert action is AckAction.NACK
        message.nack.assert_awaited_once()
        message.ack.assert_not_awaited()

    async def test_failed_ack_does_not_raise(self, session_factory):
        message = FakeMessage(json.dumps(_event_body()).encode())
        message.ack.side_effect = ConnectionError("connection lost")

        action = await process_message(message, session_factory=session_factory, handler=NotificationEventHandler())

        assert action is AckAction.ACK
        assert await _notification_count(session_factory) == 1
