"""Database row leasing shared by the outbox and the delivery queue.

Both queues run the same per-row state machine::

    PENDING -> <in progress> -> {<done> | PENDING (retry) | FAILED}

The database is the only coordinator between workers. A lease is claimed
with a conditional UPDATE that re-checks eligibility (compare-and-swap on
status and lease expiry), so two workers can never hold the same row even
when their candidate SELECTs overlap. Every later transition is qualified by
the lease owner and the in-progress status, so a worker whose lease was
taken over cannot overwrite the new owner's outcome.

On PostgreSQL the candidate SELECT also uses ``FOR UPDATE SKIP LOCKED`` so
concurrent pollers spread across different rows instead of contending.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, TypeVar

from sqlalchemy import Integer, String, Text, and_, delete, func, inspect, or_, select, update
from sqlalchemy.orm import Mapped, mapped_column

from relay_service.core.database.repository import BaseRepository
from relay_service.core.database.types import UTCDateTime, utcnow

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession
    from sqlalchemy.sql.elements import ColumnElement

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class LeaseStates:
    """Status names used by one leased table."""

    pending: str
    in_progress: str
    done: str
    failed: str

    @property
    def all(self) -> tuple[str, ...]:
        return (self.pending, self.in_progress, self.done, self.failed)

    @property
    def active(self) -> tuple[str, ...]:
        return (self.pending, self.in_progress)

    @property
    def terminal(self) -> tuple[str, ...]:
        return (self.done, self.failed)


class LeasedRowMixin:
    """Lease, attempt and retry bookkeeping columns.

    Provides:
        status: Current state in the lease state machine
        attempt_count: Failed attempts so far
        next_retry_at: Earliest time a PENDING row may be leased again
        lease_owner: Worker id holding the lease
        leased_at: When the current lease was taken
        lease_until: When the current lease expires
        last_error: Last failure, truncated
    """

    __allow_unmapped__ = True

    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default="PENDING",
        comment="Lease state machine status",
    )
    attempt_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Number of failed attempts",
    )
    next_retry_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
        comment="Earliest time the row may be retried",
    )
    lease_owner: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="Worker currently holding the lease",
    )
    leased_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
        comment="When the current lease was taken",
    )
    lease_until: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
        comment="When the current lease expires",
    )
    last_error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="Last failure message (truncated)",
    )


_CLEARED_LEASE: dict[str, Any] = {
    "lease_owner": None,
    "leased_at": None,
    "lease_until": None,
}


class LeaseRepository(BaseRepository[T]):
    """Lease-qualified queries for a table using ``LeasedRowMixin``.

    Args:
        model: Mapped class with ``LeasedRowMixin`` and a ``created_at`` column
        states: Status names for this table
        completed_at: Attribute stamped when a row reaches the done state
    """

    __slots__ = ("states", "_completed_at")

    def __init__(self, model: type[T], *, states: LeaseStates, completed_at: str) -> None:
        super().__init__(model)
        self.states = states
        self._completed_at = completed_at

    # ─────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────
    @property
    def pk(self) -> Any:
        """Primary key column attribute."""
        return getattr(self.model, inspect(self.model).primary_key[0].key)

    def row_id(self, record: T) -> Any:
        """Primary key value of a loaded row."""
        return getattr(record, inspect(self.model).primary_key[0].key)

    def eligible(self, now: datetime) -> ColumnElement[bool]:
        """Rows a worker may lease at ``now``.

        Due PENDING rows, plus in-progress rows whose lease has expired
        (their previous owner crashed or stalled).
        """
        m: Any = self.model
        return or_(
            and_(
                m.status == self.states.pending,
                or_(m.next_retry_at.is_(None), m.next_retry_at <= now),
            ),
            and_(
                m.status == self.states.in_progress,
                or_(m.lease_until.is_(None), m.lease_until <= now),
            ),
        )

    def _owned_by(self, row_id: Any, owner: str) -> ColumnElement[bool]:
        m: Any = self.model
        return and_(
            self.pk == row_id,
            m.status == self.states.in_progress,
            m.lease_owner == owner,
        )

    # ─────────────────────────────────────────────────────
    # Leasing
    # ─────────────────────────────────────────────────────
    async def claim(
        self,
        session: AsyncSession,
        *,
        owner: str,
        lease: timedelta,
        batch_size: int,
        now: datetime | None = None,
    ) -> list[T]:
        """Lease up to ``batch_size`` eligible rows, oldest first.

        The caller must commit before doing any slow work so the lease is
        visible to other workers and row locks are released.

        Returns:
            The rows this worker now owns, refreshed from the database
        """
        now = now or utcnow()
        m: Any = self.model
        candidates = (
            select(self.pk)
            .where(self.eligible(now))
            .order_by(m.created_at.asc(), self.pk.asc())
            .limit(batch_size)
            .with_for_update(skip_locked=True)
        )
        row_ids = (await session.execute(candidates)).scalars().all()

        leased = [
            row_id
            for row_id in row_ids
            if await self.try_lease(session, row_id, owner=owner, lease=lease, now=now)
        ]
        if not leased:
            return []

        stmt = (
            select(self.model)
            .where(self.pk.in_(leased))
            .order_by(m.created_at.asc(), self.pk.asc())
            .execution_options(populate_existing=True)
        )
        records = list((await session.execute(stmt)).scalars().all())
        self._logger.debug(
            "Leased rows",
            extra={"owner": owner, "candidates": len(row_ids), "leased": len(records)},
        )
        return records

    async def try_lease(
        self,
        session: AsyncSession,
        row_id: Any,
        *,
        owner: str,
        lease: timedelta,
        now: datetime | None = None,
    ) -> bool:
        """Compare-and-swap a single row into the in-progress state.

        Returns:
            True if this call took the lease, False if the row was no longer eligible
        """
        now = now or utcnow()
        stmt = (
            update(self.model)
            .where(self.pk == row_id, self.eligible(now))
            .values(
                status=self.states.in_progress,
                lease_owner=owner,
                leased_at=now,
                lease_until=now + lease,
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount == 1

    # ─────────────────────────────────────────────────────
    # Owner-qualified transitions
    # ─────────────────────────────────────────────────────
    async def mark_done(
        self,
        session: AsyncSession,
        row_id: Any,
        *,
        owner: str,
        now: datetime | None = None,
    ) -> bool:
        """Move an owned row to the done state.

        Returns:
            False if the lease was lost in the meantime
        """
        stmt = (
            update(self.model)
            .where(self._owned_by(row_id, owner))
            .values(
                status=self.states.done,
                next_retry_at=None,
                last_error=None,
                **{self._completed_at: now or utcnow()},
                **_CLEARED_LEASE,
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount == 1

    async def mark_retry(
        self,
        session: AsyncSession,
        row_id: Any,
        *,
        owner: str,
        attempt_count: int,
        next_retry_at: datetime,
        error: str,
    ) -> bool:
        """Return an owned row to PENDING with its next retry time."""
        stmt = (
            update(self.model)
            .where(self._owned_by(row_id, owner))
            .values(
                status=self.states.pending,
                attempt_count=attempt_count,
                next_retry_at=next_retry_at,
                last_error=error,
                **_CLEARED_LEASE,
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount == 1

    async def mark_failed(
        self,
        session: AsyncSession,
        row_id: Any,
        *,
        owner: str,
        attempt_count: int,
        error: str,
    ) -> bool:
        """Park an owned row in FAILED; it is never retried automatically."""
        stmt = (
            update(self.model)
            .where(self._owned_by(row_id, owner))
            .values(
                status=self.states.failed,
                attempt_count=attempt_count,
                next_retry_at=None,
                last_error=error,
                **_CLEARED_LEASE,
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount == 1

    # ─────────────────────────────────────────────────────
    # Operator and maintenance queries
    # ─────────────────────────────────────────────────────
    async def list_by_status(
        self,
        session: AsyncSession,
        status: str,
        *,
        limit: int = 100,
    ) -> Sequence[T]:
        """Rows in ``status``, oldest first."""
        m: Any = self.model
        stmt = select(self.model).where(m.status == status).order_by(m.created_at.asc()).limit(limit)
        result = await session.execute(stmt)
        return result.scalars().all()

    async def requeue_failed(
        self,
        session: AsyncSession,
        row_ids: Iterable[Any] | None = None,
    ) -> int:
        """Reset FAILED rows to PENDING with a fresh attempt budget.

        Args:
            session: Database session
            row_ids: Restrict to these rows; all FAILED rows when None

        Returns:
            Number of rows requeued
        """
        m: Any = self.model
        stmt = update(self.model).where(m.status == self.states.failed)
        if row_ids is not None:
            stmt = stmt.where(self.pk.in_(list(row_ids)))
        stmt = stmt.values(
            status=self.states.pending,
            attempt_count=0,
            next_retry_at=None,
            last_error=None,
            **_CLEARED_LEASE,
        ).execution_options(synchronize_session=False)
        result = await session.execute(stmt)
        return result.rowcount

    async def count_by_status(self, session: AsyncSession) -> dict[str, int]:
        """Row counts per status (statuses with no rows report 0)."""
        m: Any = self.model
        stmt = select(m.status, func.count()).group_by(m.status)
        counts = dict.fromkeys(self.states.all, 0)
        for status, count in (await session.execute(stmt)).all():
            counts[status] = count
        return counts

    async def oldest_active_created_at(self, session: AsyncSession) -> datetime | None:
        """Creation time of the oldest row not yet in a terminal state."""
        m: Any = self.model
        stmt = select(func.min(m.created_at)).where(m.status.in_(self.states.active))
        return (await session.execute(stmt)).scalar_one_or_none()

    async def count_stale_active(self, session: AsyncSession, *, older_than: datetime) -> int:
        """Active rows created before ``older_than``."""
        m: Any = self.model
        stmt = (
            select(func.count())
            .select_from(self.model)
            .where(m.status.in_(self.states.active), m.created_at <= older_than)
        )
        return (await session.execute(stmt)).scalar_one()

    async def delete_terminal(
        self,
        session: AsyncSession,
        *,
        statuses: Iterable[str],
        column: str,
        older_than: datetime,
        limit: int | None = None,
    ) -> int:
        """Delete rows in ``statuses`` whose ``column`` is at or before ``older_than``.

        Only terminal statuses are accepted.

        Returns:
            Number of rows deleted
        """
        statuses = tuple(statuses)
        if not set(statuses) <= set(self.states.terminal):
            msg = f"refusing to delete non-terminal statuses: {statuses}"
            raise ValueError(msg)
        m: Any = self.model
        victims = select(self.pk).where(m.status.in_(statuses), getattr(m, column) <= older_than)
        if limit is not None:
            victims = victims.limit(limit)
        stmt = delete(self.model).where(self.pk.in_(victims)).execution_options(synchronize_session=False)
        result = await session.execute(stmt)
        return result.rowcount
