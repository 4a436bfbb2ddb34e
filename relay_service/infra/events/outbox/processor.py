"""Background outbox publisher.

Leases PENDING rows (and IN_FLIGHT rows whose lease expired), publishes each
to JetStream with ``Nats-Msg-Id = event_id`` and marks it PUBLISHED.
Failures are retried with exponential backoff until ``max_attempts``, then
the row is parked in FAILED for an operator. A row re-published after a
crash is collapsed by the stream's duplicate window.

While the broker is disconnected the publisher keeps running but skips its
polls, so an outage does not use up attempts; it resumes on reconnect.
"""

from __future__ import annotations

import json
import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from relay_service.core.exceptions import TerminalFailure
from relay_service.core.settings import get_nats_settings, get_outbox_settings
from relay_service.infra.events.outbox.models import OutboxEvent
from relay_service.infra.events.outbox.repository import get_outbox_repository
from relay_service.infra.messaging.publisher import OutboxMessage
from relay_service.infra.workers.leased import LeasedBatchProcessor

if TYPE_CHECKING:
    from collections.abc import Callable

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from relay_service.core.settings.outbox import OutboxSettings
    from relay_service.infra.messaging.publisher import EventPublisher
    from relay_service.utils.backoff import BackoffPolicy

logger = logging.getLogger(__name__)

# Global publisher instance
_publisher: OutboxPublisher | None = None


def to_message(event: OutboxEvent) -> OutboxMessage:
    """Build the wire message for a row.

    Raises:
        TerminalFailure: If the stored payload is not a JSON object; retrying
            would never succeed.
    """
    try:
        payload = json.loads(event.payload)
    except (TypeError, ValueError) as exc:
        msg = f"unparseable outbox payload: {exc}"
        raise TerminalFailure(msg) from exc
    if not isinstance(payload, dict):
        msg = f"outbox payload must be a JSON object, got {type(payload).__name__}"
        raise TerminalFailure(msg)

    return OutboxMessage(
        event_id=str(event.event_id),
        event_type=event.event_type,
        aggregate_key=event.aggregate_key,
        payload=payload,
    )


class OutboxPublisher(LeasedBatchProcessor[OutboxEvent]):
    """Publishes leased outbox rows through an ``EventPublisher``.

    Each publish waits at most ``min(publish_timeout, lease)`` for the
    broker ack, so a slow broker cannot hold a row past its lease.
    """

    queue_name = "outbox"

    def __init__(
        self,
        publisher: EventPublisher,
        *,
        settings: OutboxSettings | None = None,
        publish_timeout: timedelta | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        worker_id: str | None = None,
        backoff: BackoffPolicy | None = None,
        ready: Callable[[], bool] | None = None,
    ) -> None:
        settings = settings or get_outbox_settings()
        super().__init__(
            repository=get_outbox_repository(),
            settings=settings,
            session_factory=session_factory,
            worker_id=worker_id,
            backoff=backoff,
        )
        self.publisher = publisher
        timeout = publish_timeout or settings.lease
        self.publish_timeout = min(timeout, settings.lease).total_seconds()
        self._ready = ready
        self._paused = False

    def ready(self) -> bool:
        if self._ready is None:
            return True
        ready = self._ready()
        if ready == self._paused:
            self._paused = not ready
            if ready:
                logger.info("Broker available, outbox publishing resumed")
            else:
                logger.warning("Broker unavailable, outbox publishing paused")
        return ready

    async def handle(self, record: OutboxEvent) -> None:
        message = to_message(record)
        await self.publisher.publish(message, timeout=self.publish_timeout)
        logger.debug(
            "Outbox event published",
            extra={
                "event_id": message.event_id,
                "event_type": message.event_type,
                "aggregate_key": message.aggregate_key,
                "attempt_count": record.attempt_count,
            },
        )


def build_outbox_publisher(
    publisher: EventPublisher | None = None,
    **kwargs: object,
) -> OutboxPublisher | None:
    """Create an OutboxPublisher wired to the JetStream broker.

    The publisher is created even while the broker is down; it polls only
    once ``is_broker_connected()`` is true.

    Returns:
        None if no publisher was given and NATS is not configured
    """
    if publisher is None:
        from relay_service.infra.messaging.broker import get_broker, is_broker_connected
        from relay_service.infra.messaging.publisher import JetStreamPublisher

        broker = get_broker()
        if broker is None:
            return None
        nats_settings = get_nats_settings()
        publisher = JetStreamPublisher(broker, nats_settings)
        kwargs.setdefault("publish_timeout", nats_settings.publish_timeout)
        kwargs.setdefault("ready", is_broker_connected)

    return OutboxPublisher(publisher, **kwargs)  # type: ignore[arg-type]


async def start_outbox_publisher(publisher: EventPublisher | None = None) -> None:
    """Start the global outbox publisher if enabled."""
    global _publisher

    settings = get_outbox_settings()
    if not settings.enabled:
        logger.info("Outbox publisher disabled by configuration")
        return

    _publisher = build_outbox_publisher(publisher)
    if _publisher is None:
        logger.info("NATS not configured, skipping outbox publisher")
        return
    await _publisher.start()


async def stop_outbox_publisher() -> None:
    """Stop the global outbox publisher."""
    global _publisher

    if _publisher is not None:
        await _publisher.stop()
        _publisher = None


def get_outbox_publisher() -> OutboxPublisher | None:
    """Get the global outbox publisher instance."""
    return _publisher


__all__ = [
    "OutboxPublisher",
    "build_outbox_publisher",
    "get_outbox_publisher",
    "start_outbox_publisher",
    "stop_outbox_publisher",
    "to_message",
]
