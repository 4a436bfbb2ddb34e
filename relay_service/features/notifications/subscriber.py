"""FastStream JetStream subscriber feeding the notification queue.

Imported only when the broker is configured. Annotations are evaluated at
import time on purpose: FastStream resolves ``NatsMessage`` from them to
inject the raw message.
"""

import logging

from faststream.nats import ConsumerConfig, JStream, NatsBroker
from faststream.nats.annotations import NatsMessage
from nats.js.api import AckPolicy

from relay_service.core.settings.nats import NatsSettings
from relay_service.features.notifications.advisories import process_advisory
from relay_service.features.notifications.handler import NotificationEventHandler, process_message
from relay_service.features.notifications.models import ConsumerAdvisoryKind

logger = logging.getLogger(__name__)


def build_consumer_config(
    settings: NatsSettings,
    *,
    durable: str | None = None,
    filter_subject: str | None = None,
) -> ConsumerConfig:
    """Durable consumer with explicit acks and bounded redelivery.

    Defaults to the entitlement event consumer; advisory consumers pass their
    own durable name and subject and reuse the same redelivery limits.
    """
    return ConsumerConfig(
        durable_name=durable or settings.durable,
        ack_policy=AckPolicy.EXPLICIT,
        ack_wait=settings.ack_wait.total_seconds(),
        max_deliver=settings.max_deliver,
        filter_subject=filter_subject or settings.subject_filter,
    )


def register_subscriber(
    broker: NatsBroker,
    settings: NatsSettings,
    *,
    session_factory=None,
    handler: NotificationEventHandler | None = None,
) -> None:
    """Attach the entitlement event consumer to ``broker``.

    Must run before the broker starts. The stream is bound, never declared;
    ``ensure_streams`` owns its configuration. With advisories enabled the
    dead-letter advisory subscribers are registered too.
    """
    if session_factory is None:
        from relay_service.infra.database.session import AsyncSessionLocal

        session_factory = AsyncSessionLocal
    event_handler = handler or NotificationEventHandler()

    @broker.subscriber(
        settings.subject_filter,
        stream=JStream(settings.stream, declare=False),
        durable=settings.durable,
        config=build_consumer_config(settings),
    )
    async def on_entitlement_event(message: NatsMessage) -> None:
        await process_message(message, session_factory=session_factory, handler=event_handler)

    logger.info(
        "Notification subscriber registered",
        extra={
            "subject": settings.subject_filter,
            "stream": settings.stream,
            "durable": settings.durable,
            "ack_wait_seconds": settings.ack_wait.total_seconds(),
            "max_deliver": settings.max_deliver,
        },
    )

    if settings.advisory_enabled:
        register_advisory_subscribers(broker, settings, session_factory=session_factory)


def _advisory_handler(kind: ConsumerAdvisoryKind, session_factory):
    async def on_consumer_advisory(message: NatsMessage) -> None:
        await process_advisory(message, kind, session_factory=session_factory)

    return on_consumer_advisory


def register_advisory_subscribers(
    broker: NatsBroker,
    settings: NatsSettings,
    *,
    session_factory=None,
) -> None:
    """Record MAX_DELIVERIES and MSG_TERMINATED advisories of the event consumer."""
    if session_factory is None:
        from relay_service.infra.database.session import AsyncSessionLocal

        session_factory = AsyncSessionLocal

    stream = JStream(settings.advisory_stream, declare=False)
    subjects = {
        ConsumerAdvisoryKind.MAX_DELIVERIES: settings.max_deliveries_advisory_subject,
        ConsumerAdvisoryKind.TERMINATED: settings.terminated_advisory_subject,
    }

    for kind, subject in subjects.items():
        durable = f"{settings.advisory_durable}-{kind.lower().replace('_', '-')}"

        broker.subscriber(
            subject,
            stream=stream,
            durable=durable,
            config=build_consumer_config(settings, durable=durable, filter_subject=subject),
        )(_advisory_handler(kind, session_factory))

        logger.info(
            "Advisory subscriber registered",
            extra={"subject": subject, "stream": settings.advisory_stream, "durable": durable},
        )


__all__ = ["build_consumer_config", "register_advisory_subscribers", "register_subscriber"]
