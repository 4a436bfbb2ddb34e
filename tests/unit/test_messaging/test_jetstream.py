"""Tests for stream bootstrap, the JetStream publisher and consumer config.

Needs the ``broker`` extra; skipped without it.
"""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

pytest.importorskip("nats")

from nats.js.errors import NotFoundError  # noqa: E402

from relay_service.core.exceptions import TransientDependencyError  # noqa: E402
from relay_service.core.settings.nats import NatsSettings  # noqa: E402
from relay_service.infra.messaging.publisher import (  # noqa: E402
    DEDUP_HEADER,
    JetStreamPublisher,
    OutboxMessage,
)
from relay_service.infra.messaging.streams import (  # noqa: E402
    build_advisory_stream_config,
    build_stream_config,
    ensure_stream,
    ensure_streams,
)


@pytest.fixture
def nats_settings() -> NatsSettings:
    return NatsSettings(
        enabled=True,
        stream="ENTITLEMENTS",
        subject_prefix="entitlements.events",
        duplicate_window=timedelta(hours=2),
    )


@pytest.fixture
def message() -> OutboxMessage:
    return OutboxMessage(
        event_id="0190a1b2-0000-7000-8000-000000000001",
        event_type="EntitlementGranted",
        aggregate_key="u-1:sku-pro",
        payload={"user_id": "u-1", "occurred_at": "2026-03-01T12:00:00Z", "trace_id": "t-1"},
    )


class TestStreamBootstrap:
    def test_stream_config(self, nats_settings):
        config = build_stream_config(nats_settings)

        assert config.name == "ENTITLEMENTS"
        assert config.subjects == ["entitlements.events.>"]
        assert config.duplicate_window == 7200.0

    @pytest.mark.asyncio
    async def test_existing_stream_is_updated(self, nats_settings):
        js = MagicMock()
        js.update_stream = AsyncMock(return_value="info")
        js.add_stream = AsyncMock()

        assert await ensure_stream(js, nats_settings) == "info"
        js.add_stream.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_stream_is_created(self, nats_settings):
        js = MagicMock()
        js.update_stream = AsyncMock(side_effect=NotFoundError())
        js.add_stream = AsyncMock(return_value="created")

        assert await ensure_stream(js, nats_settings) == "created"
        (config,), _ = js.add_stream.call_args
        assert config.duplicate_window == 7200.0

    def test_advisory_stream_config(self, nats_settings):
        config = build_advisory_stream_config(nats_settings)

        assert config.name == "ENTITLEMENTS_ADVISORIES"
        assert config.subjects == [
            "$JS.EVENT.ADVISORY.CONSUMER.MAX_DELIVERIES.ENTITLEMENTS.notification-service",
            "$JS.EVENT.ADVISORY.CONSUMER.MSG_TERMINATED.ENTITLEMENTS.notification-service",
        ]

    @pytest.mark.asyncio
    async def test_advisory_stream_ensured_with_event_stream(self, nats_settings):
        js = MagicMock()
        js.update_stream = AsyncMock(return_value="info")

        await ensure_streams(js, nats_settings)

        names = [call.args[0].name for call in js.update_stream.await_args_list]
        assert names == ["ENTITLEMENTS", "ENTITLEMENTS_ADVISORIES"]

    @pytest.mark.asyncio
    async def test_advisory_stream_skipped_when_disabled(self):
        settings = NatsSettings(enabled=True, stream="ENTITLEMENTS", advisory_enabled=False)
        js = MagicMock()
        js.update_stream = AsyncMock(return_value="info")

        await ensure_streams(js, settings)

        names = [call.args[0].name for call in js.update_stream.await_args_list]
        assert names == ["ENTITLEMENTS"]


class TestOutboxMessage:
    def test_headers_carry_dedup_id_and_context(self, message):
        headers = message.headers()

        assert headers[DEDUP_HEADER] == message.event_id
        assert headers["event_type"] == "EntitlementGranted"
        assert headers["aggregate_key"] == "u-1:sku-pro"
        assert headers["occurred_at"] == "2026-03-01T12:00:00Z"
        assert headers["trace_id"] == "t-1"

    def test_optional_headers_omitted(self):
        headers = OutboxMessage("e-1", "EntitlementRevoked", "u-1:sku-pro", {}).headers()

        assert set(headers) == {DEDUP_HEADER, "event_type", "aggregate_key"}


@pytest.mark.asyncio
class TestJetStreamPublisher:
    async def test_publishes_to_event_subject(self, nats_settings, message):
        broker = MagicMock()
        broker.publish = AsyncMock(return_value=MagicMock(duplicate=False, seq=7))

        await JetStreamPublisher(broker, nats_settings).publish(message, timeout=2.5)

        broker.publish.assert_awaited_once_with(
            message.payload,
            subject="entitlements.events.EntitlementGranted",
            headers=message.headers(),
            stream="ENTITLEMENTS",
            timeout=2.5,
        )

    async def test_duplicate_ack_is_success(self, nats_settings, message):
        broker = MagicMock()
        broker.publish = AsyncMock(return_value=MagicMock(duplicate=True, seq=7))

        await JetStreamPublisher(broker, nats_settings).publish(message, timeout=1.0)

    async def test_timeout_becomes_transient_error(self, nats_settings, message):
        broker = MagicMock()
        broker.publish = AsyncMock(side_effect=TimeoutError())

        with pytest.raises(TransientDependencyError, match="entitlements.events.EntitlementGranted"):
            await JetStreamPublisher(broker, nats_settings).publish(message, timeout=1.0)

    async def test_nats_error_becomes_transient_error(self, nats_settings, message):
        from nats.errors import NoRespondersError

        broker = MagicMock()
        broker.publish = AsyncMock(side_effect=NoRespondersError())

        with pytest.raises(TransientDependencyError):
            await JetStreamPublisher(broker, nats_settings).publish(message, timeout=1.0)


def test_consumer_config(nats_settings):
    pytest.importorskip("faststream")
    from nats.js.api import AckPolicy

    from relay_service.features.notifications.subscriber import build_consumer_config

    config = build_consumer_config(nats_settings)

    assert config.durable_name == "notification-service"
    assert config.ack_policy == AckPolicy.EXPLICIT
    assert config.ack_wait == 30.0
    assert config.max_deliver == 10
    assert config.filter_subject == "entitlements.events.>"


def test_advisory_consumers_registered_per_kind(nats_settings):
    pytest.importorskip("faststream")
    from relay_service.features.notifications.subscriber import register_advisory_subscribers

    broker = MagicMock()

    register_advisory_subscribers(broker, nats_settings, session_factory=MagicMock())

    registered = {call.args[0]: call.kwargs for call in broker.subscriber.call_args_list}
    max_deliveries = registered[nats_settings.max_deliveries_advisory_subject]
    terminated = registered[nats_settings.terminated_advisory_subject]
    assert max_deliveries["durable"] == "notification-advisories-max-deliveries"
    assert terminated["durable"] == "notification-advisories-terminated"
    assert max_deliveries["config"].filter_subject == nats_settings.max_deliveries_advisory_subject
    assert max_deliveries["stream"].name == "ENTITLEMENTS_ADVISORIES"
