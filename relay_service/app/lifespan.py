"""Application lifespan management.

Services start in dependency order and only when configured.

Startup Order:
1. Core (logging) - always runs first
2. Database - required; the service cannot accept commands without it
3. Messaging (NATS JetStream) - subscribers registered before the broker starts;
   if the broker is down it is retried in the background (degraded mode)
4. Outbox publisher - requires database; polls only while the broker is connected
5. Delivery worker - requires database
6. Scheduler (retention sweep) - requires database

Shutdown Order: Reverse of startup (what starts first, shuts down last)
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from relay_service.core.settings import (
    get_app_settings,
    get_db_settings,
    get_delivery_settings,
    get_logging_settings,
    get_nats_settings,
    get_outbox_settings,
    get_retention_settings,
)
from relay_service.infra.logging.config import setup_logging, shutdown as shutdown_logging

# Lazy imports keep the optional broker extra out of the import graph:
# - relay_service.infra.messaging.broker
# - relay_service.features.notifications.subscriber

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI

logger = logging.getLogger(__name__)

def get_broker_started() -> bool:
    """Whether the NATS broker is up, at startup or after a later reconnect."""
    from relay_service.infra.messaging.broker import is_broker_connected

    return is_broker_connected()


# =============================================================================
# Startup functions - organized by service
# =============================================================================


async def _startup_core() -> None:
    """Configure logging."""
    app = get_app_settings()
    log = get_logging_settings()

    setup_logging(log_settings=log, force=True)
    logger.info(
        "Application starting",
        extra={"service": app.service_name, "environment": app.environment},
    )


async def _startup_database() -> None:
    """Initialize database connection."""
    from relay_service.infra.database.session import init_database

    db = get_db_settings()

    try:
        await init_database()
    except Exception as e:
        logger.exception(
            "Database unavailable, failing startup",
            extra={"error": str(e), "postgres": db.is_configured},
        )
        raise
    logger.info("Database connection initialized", extra={"postgres": db.is_configured})


async def _startup_messaging() -> None:
    """Register the notification consumer and start the NATS broker.

    In degraded mode a failed start schedules background retries; the
    registered subscribers start with the broker once it is reachable.
    """
    from relay_service.infra.messaging.broker import get_broker, schedule_reconnect, start_broker

    settings = get_nats_settings()

    if not settings.is_configured:
        return

    try:
        broker = get_broker()
        if broker is not None and settings.consumer_enabled:
            from relay_service.features.notifications.subscriber import register_subscriber

            register_subscriber(broker, settings)
        await start_broker()
        logger.info("NATS broker initialized")
    except Exception as e:
        if settings.startup_require_nats:
            logger.exception("NATS required but unavailable, failing startup")
            raise
        logger.warning(
            "NATS unavailable, continuing in degraded mode",
            extra={
                "error": str(e),
                "startup_require_nats": False,
                "retry_in_seconds": settings.reconnect_interval.total_seconds(),
            },
        )
        schedule_reconnect(settings.reconnect_interval.total_seconds())


async def _startup_outbox() -> None:
    """Start the outbox publisher."""
    from relay_service.infra.events.outbox.processor import start_outbox_publisher

    try:
        await start_outbox_publisher()
    except Exception as e:
        logger.warning(
            "Failed to start outbox publisher, events will not be published",
            extra={"error": str(e)},
        )


async def _startup_delivery() -> None:
    """Start the notification delivery worker."""
    from relay_service.features.notifications.delivery import start_delivery_worker

    try:
        await start_delivery_worker()
    except Exception as e:
        logger.warning(
            "Failed to start delivery worker, notifications will not be sent",
            extra={"error": str(e)},
        )


async def _startup_tasks() -> None:
    """Register scheduled jobs and start APScheduler."""
    from relay_service.tasks.scheduler import setup_scheduled_jobs, start_scheduler

    if not get_retention_settings().enabled:
        logger.info("Retention sweep disabled, scheduler not started")
        return

    setup_scheduled_jobs()
    await start_scheduler()


# =============================================================================
# Shutdown functions
# =============================================================================


async def _shutdown_tasks() -> None:
    """Stop APScheduler."""
    from relay_service.tasks.scheduler import stop_scheduler

    await stop_scheduler()


async def _shutdown_delivery() -> None:
    """Stop the delivery worker."""
    from relay_service.features.notifications.delivery import stop_delivery_worker

    await stop_delivery_worker()


async def _shutdown_outbox() -> None:
    """Stop the outbox publisher."""
    from relay_service.infra.events.outbox.processor import stop_outbox_publisher

    await stop_outbox_publisher()


async def _shutdown_messaging() -> None:
    """Stop reconnect attempts and close the NATS broker."""
    from relay_service.infra.messaging.broker import stop_broker

    await stop_broker()


async def _shutdown_database() -> None:
    """Close database connection."""
    from relay_service.infra.database.session import close_database

    await close_database()
    logger.info("Database connection closed")


# =============================================================================
# Main lifespan context manager
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle.

    Args:
        app: FastAPI application instance.

    Yields:
        None during application runtime.
    """
    _ = app

    # 1. Core services (logging)
    await _startup_core()

    # 2. Database connection
    await _startup_database()

    # 3. Messaging (NATS)
    await _startup_messaging()

    # 4. Outbox publisher (requires database; waits for messaging)
    await _startup_outbox()

    # 5. Delivery worker
    await _startup_delivery()

    # 6. Background tasks (APScheduler)
    await _startup_tasks()

    app_settings = get_app_settings()
    logger.info(
        "Application startup complete - listening on %s:%s",
        app_settings.host,
        app_settings.port,
        extra={
            "service": app_settings.service_name,
            "environment": app_settings.environment,
            "version": app_settings.version,
            "postgres_enabled": get_db_settings().is_configured,
            "messaging_connected": get_broker_started(),
            "outbox_enabled": get_outbox_settings().enabled,
            "delivery_enabled": get_delivery_settings().enabled,
            "retention_enabled": get_retention_settings().enabled,
        },
    )

    yield

    logger.info("Application shutting down", extra={"service": app_settings.service_name})

    # 6. Background tasks
    await _shutdown_tasks()

    # 5. Delivery worker
    await _shutdown_delivery()

    # 4. Outbox publisher
    await _shutdown_outbox()

    # 3. Messaging
    await _shutdown_messaging()

    # 2. Database
    await _shutdown_database()

    logger.info("Application shutdown complete")

    # 1. Core
    shutdown_logging()


__all__ = ["get_broker_started", "lifespan"]
