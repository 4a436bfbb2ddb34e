"""APScheduler integration for the retention sweep.

The sweep runs in-process on an interval. ``max_instances=1`` and
``coalesce=True`` keep a slow sweep from overlapping with the next one; in a
multi-replica deployment concurrent sweeps are harmless because every delete
is bounded by status and age.
"""

from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from relay_service.core.settings import get_retention_settings
from relay_service.tasks.retention import run_retention_sweep

logger = logging.getLogger(__name__)

# Runs in the same event loop as FastAPI
scheduler = AsyncIOScheduler(
    timezone="UTC",
    job_defaults={
        "coalesce": True,  # Combine multiple pending executions into one
        "max_instances": 1,  # Only one instance of each job at a time
        "misfire_grace_time": 60,  # Allow 60s delay before considering job missed
    },
)

RETENTION_JOB_ID = "retention_sweep"


def setup_scheduled_jobs() -> None:
    """Register the retention job. Call before ``start_scheduler``."""
    settings = get_retention_settings()
    if not settings.enabled:
        logger.info("Retention sweep disabled by configuration")
        return

    scheduler.add_job(
        func=run_retention_sweep,
        trigger=IntervalTrigger(seconds=settings.cleanup_interval.total_seconds()),
        id=RETENTION_JOB_ID,
        name="Delete terminal rows past their retention horizon",
        replace_existing=True,
    )
    logger.info(
        "Scheduled retention sweep",
        extra={"interval_seconds": settings.cleanup_interval.total_seconds()},
    )


async def start_scheduler() -> None:
    """Start the APScheduler."""
    if not scheduler.running:
        logger.info("Starting APScheduler")
        scheduler.start()
        logger.info("APScheduler started", extra={"jobs": len(scheduler.get_jobs())})
    else:
        logger.warning("APScheduler is already running")


async def stop_scheduler() -> None:
    """Stop the APScheduler, waiting for a running sweep to finish."""
    if scheduler.running:
        logger.info("Stopping APScheduler")
        scheduler.shutdown(wait=True)
        logger.info("APScheduler stopped")


__all__ = [
    "RETENTION_JOB_ID",
    "scheduler",
    "setup_scheduled_jobs",
    "start_scheduler",
    "stop_scheduler",
]
