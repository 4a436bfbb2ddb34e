"""Outbox message envelope and the JetStream publisher.

``EventPublisher`` is the only contract the outbox publisher depends on, so
tests and alternative brokers can substitute their own implementation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from relay_service.core.exceptions import TransientDependencyError
from relay_service.infra.metrics.prometheus import broker_publish_total

if TYPE_CHECKING:
    from faststream.nats import NatsBroker

    from relay_service.core.settings.nats import NatsSettings

logger = logging.getLogger(__name__)

# JetStream deduplicates on this header within the stream's duplicate window
DEDUP_HEADER = "Nats-Msg-Id"


@dataclass(frozen=True, slots=True)
class OutboxMessage:
    """One outbox row ready for the wire."""

    event_id: str
    event_type: str
    aggregate_key: str
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def occurred_at(self) -> str | None:
        return self.payload.get("occurred_at")

    @property
    def trace_id(self) -> str | None:
        return self.payload.get("trace_id")

    def headers(self) -> dict[str, str]:
        headers = {
            DEDUP_HEADER: self.event_id,
            "event_type": self.event_type,
            "aggregate_key": self.aggregate_key,
        }
        if self.occurred_at:
            headers["occurred_at"] = str(self.occurred_at)
        if self.trace_id:
            headers["trace_id"] = str(self.trace_id)
        return headers


class EventPublisher(Protocol):
    """Publishes one message; raises on failure."""

    async def publish(self, message: OutboxMessage, *, timeout: float) -> None: ...


class JetStreamPublisher:
    """Publish outbox messages to JetStream and wait for the stream ack.

    Connection errors and ack timeouts become ``TransientDependencyError``
    so the outbox retries them with backoff.
    """

    def __init__(self, broker: NatsBroker, settings: NatsSettings) -> None:
        self._broker = broker
        self._settings = settings

    async def publish(self, message: OutboxMessage, *, timeout: float) -> None:
        from nats.errors import Error as NatsError

        subject = self._settings.subject_for(message.event_type)
        try:
            ack = await self._broker.publish(
                message.payload,
                subject=subject,
                headers=message.headers(),
                stream=self._settings.stream,
                timeout=timeout,
            )
        except (TimeoutError, NatsError) as exc:
            broker_publish_total.labels(result="error").inc()
            msg = f"publish to {subject} failed: {exc or type(exc).__name__}"
            raise TransientDependencyError(msg) from exc

        duplicate = bool(getattr(ack, "duplicate", False))
        broker_publish_total.labels(result="duplicate" if duplicate else "stored").inc()
        logger.debug(
            "Event published",
            extra={
                "event_id": message.event_id,
                "subject": subject,
                "duplicate": duplicate,
                "stream_seq": getattr(ack, "seq", None),
            },
        )
