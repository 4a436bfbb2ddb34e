"""Transactional outbox pattern implementation.

1. The command handler writes an event row in the same transaction as the
   entitlement change.
2. The outbox publisher leases rows and publishes them to JetStream with the
   event id as dedup id.
3. Rows end PUBLISHED, or FAILED after ``max_attempts``.

This gives at-least-once delivery; the stream's duplicate window collapses
re-publishes of the same event id.
"""

from relay_service.infra.events.outbox.models import OUTBOX_STATES, OutboxEvent, OutboxStatus
from relay_service.infra.events.outbox.processor import (
    OutboxPublisher,
    build_outbox_publisher,
    get_outbox_publisher,
    start_outbox_publisher,
    stop_outbox_publisher,
)
from relay_service.infra.events.outbox.repository import OutboxRepository, get_outbox_repository

__all__ = [
    "OUTBOX_STATES",
    "OutboxEvent",
    "OutboxPublisher",
    "OutboxRepository",
    "OutboxStatus",
    "build_outbox_publisher",
    "get_outbox_publisher",
    "get_outbox_repository",
    "start_outbox_publisher",
    "stop_outbox_publisher",
]
