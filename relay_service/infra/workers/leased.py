"""Polling worker over a leased queue table.

The outbox publisher and the notification delivery worker both run this
loop; they differ only in ``handle()`` (publish vs. send) and in what
happens when a row is parked in FAILED.

One poll:
0. Skip the poll if ``ready()`` is false (the side effect's dependency is
   down), so rows keep their attempts until it is back.
1. Lease up to ``batch_size`` eligible rows and commit, so the lease is
   visible to other workers before any slow I/O starts.
2. Run ``handle(row)`` for each row.
3. Record the outcome in its own short transaction, qualified by lease
   owner. A worker whose lease expired and was taken over records nothing.
4. Refresh queue gauges from the database.

The lease is a soft timeout. Work that outlives it is not cancelled; the row
simply becomes eligible for another worker, and the broker duplicate window
or the sink's receipt ledger absorbs the second attempt.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from relay_service.core.database.types import utcnow
from relay_service.core.exceptions import TerminalFailure
from relay_service.infra.logging.context import log_context, set_log_context
from relay_service.infra.metrics.prometheus import (
    queue_oldest_active_age_seconds,
    queue_rows,
    worker_batch_duration_seconds,
    worker_outcomes_total,
    worker_poll_errors_total,
)
from relay_service.infra.workers.identity import resolve_worker_id
from relay_service.utils.backoff import BackoffPolicy, truncate_error

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from relay_service.core.database.leasing import LeaseRepository
    from relay_service.core.settings.workers import WorkerPolicySettings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LeasedBatchProcessor(Generic[T]):
    """Background loop leasing and processing rows of one queue table.

    Subclasses implement ``handle()``. Raising ``TerminalFailure`` parks the
    row in FAILED immediately; any other exception schedules a retry until
    ``max_attempts`` is reached.

    Attributes:
        queue_name: Label used in logs and metrics
        worker_id: Lease owner written on claimed rows
    """

    queue_name = "leased"

    def __init__(
        self,
        *,
        repository: LeaseRepository[T],
        settings: WorkerPolicySettings,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        worker_id: str | None = None,
        backoff: BackoffPolicy | None = None,
    ) -> None:
        self.repository = repository
        self.settings = settings
        self.worker_id = worker_id or resolve_worker_id()
        self.backoff = backoff or BackoffPolicy.from_settings(settings)
        self._session_factory = session_factory

        self._running = False
        self._task: asyncio.Task[None] | None = None

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            from relay_service.infra.database.session import AsyncSessionLocal

            self._session_factory = AsyncSessionLocal
        return self._session_factory

    @property
    def is_running(self) -> bool:
        return self._running

    # ─────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────
    async def start(self) -> None:
        """Start polling in a background task."""
        if self._running:
            logger.warning("Worker already running", extra={"queue": self.queue_name})
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop(), name=f"{self.queue_name}-worker")
        logger.info(
            "Worker started",
            extra={
                "queue": self.queue_name,
                "worker_id": self.worker_id,
                "batch_size": self.settings.batch_size,
                "poll_interval": self.settings.poll_interval.total_seconds(),
                "lease_seconds": self.settings.lease.total_seconds(),
                "max_attempts": self.settings.max_attempts,
            },
        )

    async def stop(self, timeout: float = 30.0) -> None:
        """Stop after the current batch, cancelling if it takes too long.

        A cancelled batch leaves its rows leased; they are reclaimed once
        the lease expires.
        """
        if not self._running:
            return

        self._running = False

        if self._task:
            try:
                await asyncio.wait_for(self._task, timeout=timeout)
            except TimeoutError:
                logger.warning("Worker shutdown timed out, cancelling", extra={"queue": self.queue_name})
                self._task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._task
            self._task = None

        logger.info("Worker stopped", extra={"queue": self.queue_name})

    async def _run_loop(self) -> None:
        set_log_context(queue=self.queue_name, worker_id=self.worker_id)
        idle_sleep = self.settings.poll_interval.total_seconds()

        while self._running:
            try:
                processed = await self.run_once()

                if processed == 0:
                    await asyncio.sleep(idle_sleep)
                else:
                    # More rows may be due; yield to other tasks and poll again
                    await asyncio.sleep(0)

            except asyncio.CancelledError:
                logger.info("Worker loop cancelled")
                raise
            except Exception:
                worker_poll_errors_total.labels(queue=self.queue_name).inc()
                logger.exception("Error in worker loop")
                await asyncio.sleep(idle_sleep * 2)

    # ─────────────────────────────────────────────────────
    # One poll
    # ─────────────────────────────────────────────────────
    async def run_once(self) -> int:
        """Lease and process one batch.

        Returns:
            Number of rows leased in this poll
        """
        if not self.ready():
            await self.refresh_metrics()
            return 0

        started = time.perf_counter()
        records = await self._claim()

        for record in records:
            try:
                await self._process_record(record)
            except Exception:
                # Bookkeeping failed (database unavailable); the lease expires
                # and another poll picks the row up again.
                worker_poll_errors_total.labels(queue=self.queue_name).inc()
                logger.exception(
                    "Failed to record outcome",
                    extra={"row_id": str(self.repository.row_id(record))},
                )

        if records:
            worker_batch_duration_seconds.labels(queue=self.queue_name).observe(
                time.perf_counter() - started
            )
            logger.debug("Batch processed", extra={"leased": len(records)})

        await self.refresh_metrics()
        return len(records)

    async def _claim(self) -> list[T]:
        async with self.session_factory() as session:
            records = await self.repository.claim(
                session,
                owner=self.worker_id,
                lease=self.settings.lease,
                batch_size=self.settings.batch_size,
            )
            await session.commit()
        return records

    async def _process_record(self, record: T) -> None:
        row_id = self.repository.row_id(record)
        with log_context(row_id=str(row_id)):
            try:
                await self.handle(record)
            except TerminalFailure as exc:
                await self._record_failure(record, exc, terminal=True)
            except Exception as exc:
                await self._record_failure(record, exc, terminal=False)
            else:
                await self._record_success(record)

    def ready(self) -> bool:
        """Whether rows can be processed now; polls are skipped otherwise."""
        return True

    async def handle(self, record: T) -> None:
        """Perform the side effect for one leased row."""
        raise NotImplementedError

    # ─────────────────────────────────────────────────────
    # Outcomes
    # ─────────────────────────────────────────────────────
    async def _record_success(self, record: T) -> None:
        async with self.session_factory() as session:
            owned = await self.repository.mark_done(
                session,
                self.repository.row_id(record),
                owner=self.worker_id,
            )
            await session.commit()

        if owned:
            worker_outcomes_total.labels(queue=self.queue_name, outcome="done").inc()
            logger.debug("Row completed")
        else:
            self._lease_lost(record, "done")

    async def _record_failure(self, record: T, exc: Exception, *, terminal: bool) -> None:
        attempts = self._attempt_count(record) + 1
        error = self.describe_error(exc)

        if terminal or attempts >= self.settings.max_attempts:
            owned = await self.park(record, attempts=attempts, error=error)
            if not owned:
                self._lease_lost(record, "failed")
                return
            worker_outcomes_total.labels(queue=self.queue_name, outcome="failed").inc()
            logger.error(
                "Row parked in FAILED",
                extra={"attempt_count": attempts, "terminal": terminal, "error": error},
            )
            return

        next_retry_at = self.backoff.next_retry_at(self._attempt_count(record))
        async with self.session_factory() as session:
            owned = await self.repository.mark_retry(
                session,
                self.repository.row_id(record),
                owner=self.worker_id,
                attempt_count=attempts,
                next_retry_at=next_retry_at,
                error=error,
            )
            await session.commit()

        if not owned:
            self._lease_lost(record, "retry")
            return
        worker_outcomes_total.labels(queue=self.queue_name, outcome="retry").inc()
        logger.warning(
            "Attempt failed, retry scheduled",
            extra={
                "attempt_count": attempts,
                "next_retry_at": next_retry_at.isoformat(),
                "error": error,
            },
        )

    async def park(self, record: T, *, attempts: int, error: str) -> bool:
        """Move an owned row to FAILED.

        Returns:
            False if the lease was lost
        """
        async with self.session_factory() as session:
            owned = await self.repository.mark_failed(
                session,
                self.repository.row_id(record),
                owner=self.worker_id,
                attempt_count=attempts,
                error=error,
            )
            await session.commit()
        return owned

    def _lease_lost(self, record: T, outcome: str) -> None:
        worker_outcomes_total.labels(queue=self.queue_name, outcome="lease_lost").inc()
        logger.warning(
            "Lease lost before recording outcome",
            extra={"row_id": str(self.repository.row_id(record)), "outcome": outcome},
        )

    def describe_error(self, exc: BaseException) -> str:
        message = f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__
        return truncate_error(message, self.settings.error_message_max_length)

    @staticmethod
    def _attempt_count(record: Any) -> int:
        return record.attempt_count or 0

    # ─────────────────────────────────────────────────────
    # Metrics
    # ─────────────────────────────────────────────────────
    async def refresh_metrics(self) -> None:
        """Set queue gauges from database counts."""
        try:
            async with self.session_factory() as session:
                counts = await self.repository.count_by_status(session)
                oldest = await self.repository.oldest_active_created_at(session)
        except SQLAlchemyError:
            logger.warning("Could not refresh queue gauges", exc_info=True)
            return

        for status, count in counts.items():
            queue_rows.labels(queue=self.queue_name, status=status).set(count)
        age = (utcnow() - oldest).total_seconds() if oldest is not None else 0.0
        queue_oldest_active_age_seconds.labels(queue=self.queue_name).set(max(age, 0.0))
