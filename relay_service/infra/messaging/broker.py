"""NATS JetStream broker configuration using FastStream.

The broker is created lazily on first use so that importing this module
never requires the optional ``broker`` extra. When NATS is disabled every
accessor returns None and callers skip broker-dependent work.

Startup order matters: connect, make sure the streams exist (the event
stream with the configured duplicate window, and the advisory stream), then
start subscribers (they bind to existing streams and never declare them).

When the first start fails and the service runs degraded, a background task
retries ``start_broker`` until it succeeds. Subscribers registered before the
failed start are started then, and the outbox publisher resumes polling once
``is_broker_connected()`` turns true.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

from relay_service.core.settings import get_nats_settings
from relay_service.infra.messaging.streams import ensure_streams

if TYPE_CHECKING:
    from faststream.nats import NatsBroker

logger = logging.getLogger(__name__)

broker: NatsBroker | None = None
_not_configured_logged = False
_connected = False
_reconnect_task: asyncio.Task[None] | None = None


def get_broker() -> NatsBroker | None:
    """Return the process-wide broker, creating it on first call.

    Returns:
        NatsBroker instance or None if NATS is not configured.
    """
    global broker, _not_configured_logged

    if broker is not None:
        return broker

    nats_settings = get_nats_settings()
    if not nats_settings.is_configured:
        if not _not_configured_logged:
            logger.warning("NATS not configured - publishing and consuming disabled")
            _not_configured_logged = True
        return None

    from faststream.nats import NatsBroker

    broker = NatsBroker(
        servers=nats_settings.servers,
        name=nats_settings.connection_name,
        graceful_timeout=nats_settings.graceful_timeout,
        logger=logger,
    )
    return broker


async def start_broker() -> None:
    """Connect, bootstrap the streams and start registered subscribers.

    Raises:
        ConnectionError: If the initial connection times out.
    """
    global _connected

    current = get_broker()
    if current is None:
        logger.warning("NATS not configured, skipping broker startup")
        return

    nats_settings = get_nats_settings()
    logger.info(
        "Starting NATS broker",
        extra={"servers": nats_settings.servers, "stream": nats_settings.stream},
    )

    try:
        await asyncio.wait_for(current.connect(), timeout=nats_settings.connect_timeout)
    except TimeoutError:
        error_msg = f"NATS connection timeout after {nats_settings.connect_timeout}s"
        logger.error(error_msg, extra={"servers": nats_settings.servers})
        raise ConnectionError(error_msg) from None

    await ensure_streams(current.stream, nats_settings)
    await current.start()
    _connected = True
    logger.info("NATS broker started")


def is_broker_connected() -> bool:
    """Whether the broker has started: streams exist and subscribers run."""
    return _connected


def schedule_reconnect(interval: float) -> asyncio.Task[None]:
    """Retry ``start_broker`` every ``interval`` seconds until it succeeds.

    Returns:
        The background task; ``stop_broker`` cancels it
    """
    global _reconnect_task

    if _reconnect_task is None or _reconnect_task.done():
        _reconnect_task = asyncio.create_task(_reconnect_loop(interval), name="nats-reconnect")
    return _reconnect_task


async def _reconnect_loop(interval: float) -> None:
    attempt = 0
    while True:
        await asyncio.sleep(interval)
        attempt += 1
        try:
            await start_broker()
        except Exception as e:
            logger.warning(
                "NATS still unavailable, will retry",
                extra={"attempt": attempt, "retry_in_seconds": interval, "error": str(e)},
            )
            continue
        logger.info("NATS broker recovered", extra={"attempt": attempt})
        return


async def stop_broker() -> None:
    """Stop reconnecting, drain subscribers and close the connection."""
    global broker, _connected, _reconnect_task

    if _reconnect_task is not None:
        _reconnect_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await _reconnect_task
        _reconnect_task = None

    _connected = False
    if broker is None:
        return

    logger.info("Stopping NATS broker")
    await broker.close()
    broker = None
    logger.info("NATS broker stopped")


__all__ = [
    "get_broker",
    "is_broker_connected",
    "schedule_reconnect",
    "start_broker",
    "stop_broker",
]
