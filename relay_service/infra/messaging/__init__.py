"""Messaging infrastructure: FastStream NATS broker and JetStream publishing."""

from relay_service.infra.messaging.broker import get_broker, start_broker, stop_broker
from relay_service.infra.messaging.publisher import (
    DEDUP_HEADER,
    EventPublisher,
    JetStreamPublisher,
    OutboxMessage,
)

__all__ = [
    "DEDUP_HEADER",
    "EventPublisher",
    "JetStreamPublisher",
    "OutboxMessage",
    "get_broker",
    "start_broker",
    "stop_broker",
]
