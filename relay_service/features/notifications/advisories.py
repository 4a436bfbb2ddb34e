"""JetStream consumer advisories: the NATS-side dead letter.

JetStream stops delivering a message to the notification consumer in two
cases, and publishes an advisory for each:

- ``MAX_DELIVERIES``: the message was nacked (or its ack timed out) until
  ``max_deliver`` was reached;
- ``MSG_TERMINATED``: the consumer rejected it as malformed.

The advisory carries the stream sequence of the lost message. Recording it in
``notification_nats_dlq`` lets an operator fetch the message from the stream
and replay it.

Ack policy for one advisory:

- recorded (or already recorded): ``ack``;
- not JSON, or no usable ``stream_seq``: ``ack`` and drop with a warning,
  since redelivery cannot fix the payload;
- database or unexpected failure: ``nack`` so the advisory is redelivered.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from relay_service.features.notifications.handler import AckAction, InboundMessage, settle_message
from relay_service.features.notifications.models import ConsumerAdvisoryKind
from relay_service.features.notifications.repository import (
    NotificationNatsDlqRepository,
    get_notification_nats_dlq_repository,
)
from relay_service.infra.metrics.prometheus import consumer_advisories_total

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


class ConsumerAdvisory(BaseModel):
    """The advisory fields we keep; everything else is ignored."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    stream: str = Field(min_length=1)
    consumer: str = Field(min_length=1)
    stream_seq: int = Field(gt=0)
    deliveries: int | None = None
    reason: str | None = None


def decode_advisory(body: bytes | str) -> ConsumerAdvisory | None:
    """Parse an advisory, or None if it cannot identify a message."""
    try:
        return ConsumerAdvisory.model_validate_json(body)
    except ValidationError as exc:
        fields = sorted({".".join(str(part) for part in err["loc"]) or "payload" for err in exc.errors()})
        logger.warning("Unusable consumer advisory dropped", extra={"fields": fields})
        return None


async def process_advisory(
    message: InboundMessage,
    kind: ConsumerAdvisoryKind,
    *,
    session_factory: async_sessionmaker[AsyncSession],
    repository: NotificationNatsDlqRepository | None = None,
) -> AckAction:
    """Record the lost stream sequence named by one advisory and settle it."""
    repository = repository or get_notification_nats_dlq_repository()

    advisory = decode_advisory(message.body)
    if advisory is None:
        result = "dropped"
        action = AckAction.ACK
    else:
        try:
            async with session_factory() as session:
                inserted = await repository.record_if_absent(
                    session,
                    stream=advisory.stream,
                    consumer=advisory.consumer,
                    stream_seq=advisory.stream_seq,
                    kind=kind,
                    deliveries=advisory.deliveries,
                    reason=advisory.reason,
                )
                await session.commit()
        except Exception:
            logger.warning(
                "Advisory not recorded, requesting redelivery",
                extra={"kind": str(kind), "stream_seq": advisory.stream_seq},
                exc_info=True,
            )
            result = "retry"
            action = AckAction.NACK
        else:
            result = "recorded" if inserted else "duplicate"
            action = AckAction.ACK
            if inserted:
                logger.error(
                    "Entitlement event dead-lettered by JetStream",
                    extra={
                        "kind": str(kind),
                        "stream": advisory.stream,
                        "consumer": advisory.consumer,
                        "stream_seq": advisory.stream_seq,
                        "deliveries": advisory.deliveries,
                        "reason": advisory.reason,
                    },
                )

    await settle_message(message, action)
    consumer_advisories_total.labels(kind=str(kind), result=result).inc()
    return action


__all__ = ["ConsumerAdvisory", "decode_advisory", "process_advisory"]
