"""JetStream stream bootstrap.

The stream carries the duplicate-suppression window the outbox relies on:
a message re-published with the same ``Nats-Msg-Id`` inside the window is
acknowledged but not stored again. The window must exceed the worst-case
publisher retry span (lease plus the sum of backoff delays).

A second stream captures the notification consumer's MAX_DELIVERIES and
MSG_TERMINATED advisories. Advisories are plain NATS messages; storing them
in a stream keeps the ones emitted while this service is down.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from nats.js import JetStreamContext
    from nats.js.api import StreamConfig, StreamInfo

    from relay_service.core.settings.nats import NatsSettings

logger = logging.getLogger(__name__)


def build_stream_config(settings: NatsSettings) -> StreamConfig:
    """Stream configuration covering every event subject."""
    from nats.js.api import StreamConfig

    return StreamConfig(
        name=settings.stream,
        subjects=[settings.subject_filter],
        duplicate_window=settings.duplicate_window.total_seconds(),
    )


def build_advisory_stream_config(settings: NatsSettings) -> StreamConfig:
    """Stream holding the consumer's dead-letter advisories."""
    from nats.js.api import StreamConfig

    return StreamConfig(
        name=settings.advisory_stream,
        subjects=[
            settings.max_deliveries_advisory_subject,
            settings.terminated_advisory_subject,
        ],
    )


async def ensure_stream(
    js: JetStreamContext,
    settings: NatsSettings,
    *,
    config: StreamConfig | None = None,
) -> StreamInfo:
    """Create the stream, or update it in place if it already exists.

    Defaults to the event stream; pass ``config`` for another one.
    """
    from nats.js.errors import NotFoundError

    config = config or build_stream_config(settings)
    try:
        info = await js.update_stream(config)
        action = "updated"
    except NotFoundError:
        info = await js.add_stream(config)
        action = "created"

    logger.info(
        "JetStream stream ready",
        extra={
            "stream": config.name,
            "action": action,
            "subjects": config.subjects,
            "duplicate_window_seconds": config.duplicate_window,
        },
    )
    return info


async def ensure_streams(js: JetStreamContext, settings: NatsSettings) -> None:
    """Bootstrap the event stream and, when advisories are recorded, their stream."""
    await ensure_stream(js, settings)
    if settings.consumer_enabled and settings.advisory_enabled:
        await ensure_stream(js, settings, config=build_advisory_stream_config(settings))
