"""Retention sweep for terminal rows.

Each step runs in its own transaction, so one failing table does not hold
back the others; the next scheduled run retries whatever failed.

Deleted per run:
- idempotency keys past ``expires_at``;
- PUBLISHED outbox rows past ``published_ttl`` (by ``published_at``);
- FAILED outbox rows past ``failed_ttl`` (by ``updated_at``);
- SENT and FAILED notifications created before ``notification_ttl``;
- notification receipts older than ``notification_ttl``, except those of
  notifications still PENDING or PROCESSING;
- NATS dead-letter rows past ``failed_ttl`` (by ``created_at``), the same
  operator window as FAILED outbox rows.

PENDING and PROCESSING notifications are never deleted. If any are older
than the horizon an error is logged with their count: the delivery worker
is stuck or down.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError

from relay_service.core.database.types import utcnow
from relay_service.core.settings import get_retention_settings
from relay_service.features.idempotency.repository import get_idempotency_repository
from relay_service.features.notifications.models import NotificationStatus
from relay_service.features.notifications.repository import (
    get_notification_nats_dlq_repository,
    get_notification_receipt_repository,
    get_notification_repository,
)
from relay_service.infra.events.outbox.models import OutboxStatus
from relay_service.infra.events.outbox.repository import get_outbox_repository
from relay_service.infra.metrics.prometheus import retention_deleted_total, retention_stale_active_rows

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from relay_service.core.settings.retention import RetentionSettings

logger = logging.getLogger(__name__)


async def sweep(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    *,
    settings: RetentionSettings | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Run every retention step once.

    Returns:
        Deleted row counts per step, the stale active notification count, and
        ``status`` "success" or "partial" (with ``errors``) if a step failed.
    """
    if session_factory is None:
        from relay_service.infra.database.session import AsyncSessionLocal

        session_factory = AsyncSessionLocal
    settings = settings or get_retention_settings()
    now = now or utcnow()
    limit = settings.batch_limit

    outbox = get_outbox_repository()
    notifications = get_notification_repository()
    receipts = get_notification_receipt_repository()
    nats_dead_letters = get_notification_nats_dlq_repository()
    idempotency = get_idempotency_repository()

    steps: list[tuple[str, Callable[[AsyncSession], Awaitable[int]]]] = [
        (
            "idempotency_keys",
            lambda s: idempotency.delete_expired(s, now=now, limit=limit),
        ),
        (
            "outbox_published",
            lambda s: outbox.delete_terminal(
                s,
                statuses=[OutboxStatus.PUBLISHED],
                column="published_at",
                older_than=now - settings.published_ttl,
                limit=limit,
            ),
        ),
        (
            "outbox_failed",
            lambda s: outbox.delete_terminal(
                s,
                statuses=[OutboxStatus.FAILED],
                column="updated_at",
                older_than=now - settings.failed_ttl,
                limit=limit,
            ),
        ),
        (
            "notifications",
            lambda s: notifications.delete_terminal(
                s,
                statuses=[NotificationStatus.SENT, NotificationStatus.FAILED],
                column="created_at",
                older_than=now - settings.notification_ttl,
                limit=limit,
            ),
        ),
        (
            "notification_receipts",
            lambda s: receipts.delete_settled(s, older_than=now - settings.notification_ttl),
        ),
        (
            "notification_nats_dlq",
            lambda s: nats_dead_letters.delete_older_than(s, older_than=now - settings.failed_ttl, limit=limit),
        ),
    ]

    result: dict[str, Any] = {}
    errors: list[dict[str, str]] = []

    for name, step in steps:
        try:
            async with session_factory() as session:
                deleted = await step(session)
                await session.commit()
        except SQLAlchemyError as exc:
            errors.append({"step": name, "error": str(exc)})
            logger.exception("Retention step failed", extra={"step": name})
            continue
        result[name] = deleted
        if deleted:
            retention_deleted_total.labels(table=name).inc(deleted)

    try:
        async with session_factory() as session:
            stale = await notifications.count_stale_active(
                session,
                older_than=now - settings.notification_ttl,
            )
    except SQLAlchemyError as exc:
        errors.append({"step": "stale_notifications", "error": str(exc)})
        logger.exception("Retention step failed", extra={"step": "stale_notifications"})
    else:
        result["stale_active_notifications"] = stale
        retention_stale_active_rows.labels(table="notifications").set(stale)
        if stale:
            logger.error(
                "Active notifications older than the retention horizon were kept",
                extra={"count": stale, "older_than": (now - settings.notification_ttl).isoformat()},
            )

    result["status"] = "partial" if errors else "success"
    if errors:
        result["errors"] = errors

    logger.info("Retention sweep completed", extra=result)
    return result


async def run_retention_sweep() -> None:
    """Scheduler entry point; a failed run is logged and retried next interval."""
    try:
        await sweep()
    except Exception:
        logger.exception("Retention sweep failed")


__all__ = ["run_retention_sweep", "sweep"]
