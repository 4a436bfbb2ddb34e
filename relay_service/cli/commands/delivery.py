"""Notification delivery operator commands."""

from __future__ import annotations

import sys
import uuid

import click

from relay_service.cli.utils import coro, error, header, info, success, table, warning
from relay_service.features.notifications.models import NotificationStatus
from relay_service.features.notifications.repository import (
    get_notification_dlq_repository,
    get_notification_nats_dlq_repository,
    get_notification_repository,
)


@click.group(name="delivery")
def delivery() -> None:
    """Notification delivery management commands."""


@delivery.command()
@coro
async def status() -> None:
    """Show notification row counts per status."""
    from relay_service.infra.database.session import AsyncSessionLocal, close_database

    header("Notification Queue Status")
    try:
        async with AsyncSessionLocal() as session:
            counts = await get_notification_repository().count_by_status(session)
    finally:
        await close_database()

    table(["Status", "Rows"], [(name, count) for name, count in counts.items()])


@delivery.command(name="failed")
@click.option("--limit", default=50, type=click.IntRange(1, 1000), help="Maximum rows to show")
@coro
async def list_failed(limit: int) -> None:
    """List dead-lettered notifications, newest first."""
    from relay_service.infra.database.session import AsyncSessionLocal, close_database

    header("Notification DLQ")
    try:
        async with AsyncSessionLocal() as session:
            rows = await get_notification_dlq_repository().list_recent(session, limit=limit)
    finally:
        await close_database()

    if not rows:
        info("Dead-letter queue is empty")
        return

    table(
        ["Notification ID", "Event ID", "Failed At", "Error"],
        [(r.notification_id, r.source_event_id, r.created_at, r.error_message) for r in rows],
    )


@delivery.command(name="stream-failed")
@click.option("--limit", default=50, type=click.IntRange(1, 1000), help="Maximum rows to show")
@coro
async def list_stream_failed(limit: int) -> None:
    """List stream messages JetStream stopped delivering, newest first.

    Fetch a message by its stream sequence to replay it.
    """
    from relay_service.infra.database.session import AsyncSessionLocal, close_database

    header("NATS Dead Letters")
    try:
        async with AsyncSessionLocal() as session:
            rows = await get_notification_nats_dlq_repository().list_recent(session, limit=limit)
    finally:
        await close_database()

    if not rows:
        info("No dead-lettered stream messages")
        return

    table(
        ["Stream", "Sequence", "Kind", "Deliveries", "Recorded At", "Reason"],
        [(r.stream, r.stream_seq, r.kind, r.deliveries, r.created_at, r.reason) for r in rows],
    )


@delivery.command()
@click.argument("notification_ids", nargs=-1, type=click.UUID)
@click.option("--all", "requeue_all", is_flag=True, help="Requeue every FAILED notification")
@coro
async def requeue(notification_ids: tuple[uuid.UUID, ...], requeue_all: bool) -> None:
    """Reset FAILED notifications to PENDING.

    DLQ entries are kept as history; a notification failing again updates
    its entry.
    """
    from relay_service.infra.database.session import AsyncSessionLocal, close_database

    if not notification_ids and not requeue_all:
        error("Pass one or more notification ids, or --all")
        sys.exit(2)

    try:
        async with AsyncSessionLocal() as session:
            count = await get_notification_repository().requeue_failed(
                session, None if requeue_all else notification_ids
            )
            await session.commit()
    finally:
        await close_database()

    if count:
        success(f"Requeued {count} notification(s)")
    else:
        warning(f"No {NotificationStatus.FAILED} notifications matched")


@delivery.command(name="run-once")
@coro
async def run_once() -> None:
    """Deliver one batch of due notifications."""
    from relay_service.features.notifications.delivery import DeliveryWorker
    from relay_service.infra.database.session import close_database

    try:
        leased = await DeliveryWorker().run_once()
    finally:
        await close_database()

    success(f"Processed {leased} notification(s)")
