"""Outbox operator commands.

- Inspect row counts per status
- List FAILED events
- Requeue FAILED events
- Run one publish poll against the configured broker
"""

from __future__ import annotations

import sys
import uuid

import click

from relay_service.cli.utils import coro, error, header, info, success, table, warning
from relay_service.infra.events.outbox.models import OutboxStatus
from relay_service.infra.events.outbox.repository import get_outbox_repository


@click.group(name="outbox")
def outbox() -> None:
    """Transactional outbox management commands."""


@outbox.command()
@coro
async def status() -> None:
    """Show outbox row counts per status."""
    from relay_service.infra.database.session import AsyncSessionLocal, close_database

    header("Outbox Status")
    try:
        async with AsyncSessionLocal() as session:
            counts = await get_outbox_repository().count_by_status(session)
    finally:
        await close_database()

    table(["Status", "Rows"], [(name, count) for name, count in counts.items()])


@outbox.command(name="failed")
@click.option("--limit", default=50, type=click.IntRange(1, 1000), help="Maximum rows to show")
@coro
async def list_failed(limit: int) -> None:
    """List FAILED outbox events, oldest first."""
    from relay_service.infra.database.session import AsyncSessionLocal, close_database

    header("Failed Outbox Events")
    try:
        async with AsyncSessionLocal() as session:
            rows = await get_outbox_repository().list_by_status(session, OutboxStatus.FAILED, limit=limit)
    finally:
        await close_database()

    if not rows:
        info("No failed events")
        return

    table(
        ["Event ID", "Type", "Aggregate", "Attempts", "Last Error"],
        [(r.event_id, r.event_type, r.aggregate_key, r.attempt_count, r.last_error) for r in rows],
    )


@outbox.command()
@click.argument("event_ids", nargs=-1, type=click.UUID)
@click.option("--all", "requeue_all", is_flag=True, help="Requeue every FAILED event")
@coro
async def requeue(event_ids: tuple[uuid.UUID, ...], requeue_all: bool) -> None:
    """Reset FAILED events to PENDING with a fresh attempt budget."""
    from relay_service.infra.database.session import AsyncSessionLocal, close_database

    if not event_ids and not requeue_all:
        error("Pass one or more event ids, or --all")
        sys.exit(2)

    try:
        async with AsyncSessionLocal() as session:
            count = await get_outbox_repository().requeue_failed(
                session, None if requeue_all else event_ids
            )
            await session.commit()
    finally:
        await close_database()

    if count:
        success(f"Requeued {count} event(s)")
    else:
        warning("No FAILED events matched")


@outbox.command(name="run-once")
@coro
async def run_once() -> None:
    """Connect to NATS and publish one batch of due events."""
    from relay_service.infra.database.session import close_database
    from relay_service.infra.events.outbox.processor import build_outbox_publisher
    from relay_service.infra.messaging.broker import start_broker, stop_broker

    try:
        await start_broker()
        publisher = build_outbox_publisher()
        if publisher is None:
            error("NATS is not configured")
            sys.exit(1)
        leased = await publisher.run_once()
    except ConnectionError as e:
        error(str(e))
        sys.exit(1)
    finally:
        await stop_broker()
        await close_database()

    success(f"Processed {leased} event(s)")
