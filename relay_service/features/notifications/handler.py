"""Entitlement event consumption: decode, dedup and enqueue.

Kept free of broker imports so it can be driven by the FastStream
subscriber in production and by plain fakes in tests.

Ack policy for one JetStream message:

- decoded and stored (or already stored): ``ack``;
- malformed payload, ``event_id`` or ``occurred_at``: ``reject`` (JetStream
  TERM), since redelivery can never succeed;
- anything else (database down, unexpected error): ``nack`` so JetStream
  redelivers, up to the consumer's ``max_deliver``.
"""

from __future__ import annotations

import logging
from datetime import UTC
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Protocol

from pydantic import ValidationError

from relay_service.core.exceptions import TerminalFailure
from relay_service.core.services.base import BaseService
from relay_service.features.entitlements.events import EntitlementEvent
from relay_service.features.notifications.repository import (
    NotificationRepository,
    get_notification_repository,
)
from relay_service.infra.logging.context import log_context
from relay_service.infra.metrics.prometheus import broker_consumed_total

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


class MalformedEventError(TerminalFailure):
    """The message can never be processed; redelivery would not help."""


class AckAction(StrEnum):
    ACK = "ack"
    NACK = "nack"
    REJECT = "reject"


class InboundMessage(Protocol):
    """The parts of a broker message the consumer relies on."""

    body: bytes

    async def ack(self) -> None: ...

    async def nack(self) -> None: ...

    async def reject(self) -> None: ...


def decode_event(body: bytes | str | dict[str, Any]) -> EntitlementEvent:
    """Parse and validate an entitlement event.

    A timestamp without an offset is read as UTC.

    Raises:
        MalformedEventError: If the payload is not a valid entitlement event
    """
    try:
        if isinstance(body, dict):
            event = EntitlementEvent.model_validate(body)
        else:
            event = EntitlementEvent.model_validate_json(body)
    except ValidationError as exc:
        fields = sorted({".".join(str(part) for part in err["loc"]) or "payload" for err in exc.errors()})
        msg = f"invalid entitlement event: {', '.join(fields)}"
        raise MalformedEventError(msg) from exc

    if event.occurred_at.tzinfo is None:
        event = event.model_copy(update={"occurred_at": event.occurred_at.replace(tzinfo=UTC)})
    return event


class NotificationEventHandler(BaseService):
    """Turn an entitlement event into at most one notification row."""

    def __init__(self, repository: NotificationRepository | None = None) -> None:
        super().__init__()
        self.repository = repository or get_notification_repository()

    async def handle(self, session: AsyncSession, event: EntitlementEvent) -> bool:
        """Store a PENDING notification for ``event`` and commit.

        Returns:
            False if the event was already stored (a redelivery)
        """
        inserted = await self.repository.insert_if_absent(
            session,
            source_event_id=event.event_id,
            user_id=event.user_id,
            type=event.event_type,
            occurred_at=event.occurred_at,
            payload=event.model_dump_json(),
        )
        if not inserted:
            self.logger.info("Duplicate event ignored", extra={"event_id": str(event.event_id)})
            return False

        await session.commit()
        self.logger.info(
            "Notification enqueued",
            extra={
                "event_id": str(event.event_id),
                "event_type": event.event_type,
                "user_id": event.user_id,
                "trace_id": event.trace_id,
            },
        )
        return True


async def process_message(
    message: InboundMessage,
    *,
    session_factory: async_sessionmaker[AsyncSession],
    handler: NotificationEventHandler,
) -> AckAction:
    """Handle one broker message and settle it with ack, nack or reject."""
    try:
        event = decode_event(message.body)
        with log_context(event_id=str(event.event_id), trace_id=event.trace_id):
            async with session_factory() as session:
                await handler.handle(session, event)
    except TerminalFailure as exc:
        logger.warning("Rejecting unprocessable message", extra={"error": str(exc)})
        action = AckAction.REJECT
    except Exception:
        logger.warning("Message handling failed, requesting redelivery", exc_info=True)
        action = AckAction.NACK
    else:
        action = AckAction.ACK

    await settle_message(message, action)
    broker_consumed_total.labels(ack=action).inc()
    return action


async def settle_message(message: InboundMessage, action: AckAction) -> None:
    """Apply ``action`` to the message."""
    try:
        if action is AckAction.ACK:
            await message.ack()
        elif action is AckAction.REJECT:
            await message.reject()
        else:
            await message.nack()
    except Exception:
        # The server redelivers after ack_wait when a settle is lost
        logger.warning("Failed to settle message", extra={"ack": str(action)}, exc_info=True)


__all__ = [
    "AckAction",
    "InboundMessage",
    "MalformedEventError",
    "NotificationEventHandler",
    "decode_event",
    "process_message",
    "settle_message",
]
