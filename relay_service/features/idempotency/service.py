"""Idempotency store: reserve, replay or reject a command by its key.

The primary key on ``idempotency_keys.key`` is the only concurrency guard.
``reserve_or_replay`` inserts a reservation row and flushes it, so two
concurrent requests with the same key cannot both proceed: on PostgreSQL the
second insert blocks on the first transaction's uncommitted key and fails
with a duplicate-key error once it commits. That error is turned into a
re-read and a REPLAY or CONFLICT decision.

Because the reservation is rolled back with the rest of the transaction on
any failure, ``reserve_or_replay`` must be the first write of the command
transaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from relay_service.core.database.types import utcnow
from relay_service.core.exceptions import ValidationException
from relay_service.core.services.base import BaseService
from relay_service.core.settings import get_idempotency_settings
from relay_service.features.idempotency.models import IdempotencyRecord
from relay_service.features.idempotency.repository import (
    IdempotencyRepository,
    get_idempotency_repository,
)
from relay_service.infra.metrics.prometheus import idempotency_decisions_total

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from relay_service.core.settings.idempotency import IdempotencySettings


class DecisionKind(StrEnum):
    """What the caller must do with a command."""

    EXECUTE = "execute"
    REPLAY = "replay"
    CONFLICT = "conflict"


@dataclass(frozen=True, slots=True)
class IdempotencyDecision:
    """Outcome of ``reserve_or_replay``.

    ``record`` is the stored row for REPLAY and CONFLICT. ``reason`` explains
    a CONFLICT.
    """

    kind: DecisionKind
    record: IdempotencyRecord | None = None
    reason: str | None = None


class IdempotencyStore(BaseService):
    """Lookup, reservation and finalization of idempotency records."""

    def __init__(
        self,
        repository: IdempotencyRepository | None = None,
        settings: IdempotencySettings | None = None,
    ) -> None:
        super().__init__()
        self.repository = repository or get_idempotency_repository()
        self.settings = settings or get_idempotency_settings()

    def validate_key(self, key: str | None) -> str:
        """Reject a missing, blank or oversized key.

        Raises:
            ValidationException: If the key is unusable
        """
        if key is None or not key.strip():
            raise ValidationException(
                detail="Idempotency-Key header is required",
                extra={"field": "Idempotency-Key"},
            )
        key = key.strip()
        if len(key) > self.settings.key_max_length:
            raise ValidationException(
                detail=f"Idempotency-Key must be at most {self.settings.key_max_length} characters",
                extra={"field": "Idempotency-Key"},
            )
        return key

    async def lookup(
        self,
        session: AsyncSession,
        key: str,
        *,
        now: datetime | None = None,
    ) -> IdempotencyRecord | None:
        """Return the unexpired record for ``key``, if any."""
        record = await self._find(session, self.validate_key(key))
        if record is None or record.is_expired(now or utcnow()):
            return None
        return record

    async def reserve_or_replay(
        self,
        session: AsyncSession,
        key: str,
        request_hash: str,
        *,
        now: datetime | None = None,
    ) -> IdempotencyDecision:
        """Claim ``key`` for this request, or report what already holds it.

        Returns:
            EXECUTE with the reservation flushed in the session's transaction;
            REPLAY with the stored record when the same request completed;
            CONFLICT when the key belongs to a different request or its first
            request has not completed.

        Raises:
            ValidationException: If the key is missing or blank
        """
        key = self.validate_key(key)
        now = now or utcnow()

        existing = await self._find(session, key)
        if existing is not None:
            if not existing.is_expired(now):
                return self._decide(existing, request_hash)
            await self.repository.delete_expired_key(session, key, now=now)
            session.expunge(existing)

        session.add(
            IdempotencyRecord(
                key=key,
                request_hash=request_hash,
                response_code=None,
                response_body=None,
                expires_at=now + self.settings.ttl,
                created_at=now,
            )
        )
        try:
            await session.flush()
        except IntegrityError:
            # Another transaction committed this key after our read
            await session.rollback()
            winner = await self._find(session, key)
            if winner is None:
                raise
            self.logger.info(
                "Idempotency key taken by a concurrent request",
                extra={"idempotency_key": key},
            )
            return self._decide(winner, request_hash)

        idempotency_decisions_total.labels(decision=DecisionKind.EXECUTE).inc()
        return IdempotencyDecision(DecisionKind.EXECUTE)

    async def finalize(
        self,
        session: AsyncSession,
        key: str,
        request_hash: str,
        response_code: int,
        response_body: str,
        *,
        ttl: timedelta | None = None,
        now: datetime | None = None,
    ) -> IdempotencyRecord:
        """Store the response under ``key`` in the caller's transaction.

        Completes the reservation made by ``reserve_or_replay``; inserts the
        record when there is none.
        """
        key = self.validate_key(key)
        now = now or utcnow()

        record = await self.repository.get(session, key)
        if record is None:
            record = IdempotencyRecord(key=key, request_hash=request_hash, created_at=now)
            session.add(record)

        record.request_hash = request_hash
        record.response_code = response_code
        record.response_body = response_body
        record.expires_at = now + (ttl or self.settings.ttl)
        await session.flush()
        return record

    async def _find(self, session: AsyncSession, key: str) -> IdempotencyRecord | None:
        return await self.repository.load(session, key)

    def _decide(self, record: IdempotencyRecord, request_hash: str) -> IdempotencyDecision:
        if record.request_hash != request_hash:
            decision = IdempotencyDecision(
                DecisionKind.CONFLICT,
                record,
                "Idempotency-Key was already used with a different request",
            )
        elif record.response_code is None:
            decision = IdempotencyDecision(
                DecisionKind.CONFLICT,
                record,
                "A request with this Idempotency-Key is still in progress",
            )
        else:
            decision = IdempotencyDecision(DecisionKind.REPLAY, record)

        idempotency_decisions_total.labels(decision=decision.kind).inc()
        self.logger.info(
            "Idempotency key already used",
            extra={"idempotency_key": record.key, "decision": str(decision.kind)},
        )
        return decision


_idempotency_store: IdempotencyStore | None = None


def get_idempotency_store() -> IdempotencyStore:
    """Get the shared IdempotencyStore instance."""
    global _idempotency_store
    if _idempotency_store is None:
        _idempotency_store = IdempotencyStore()
    return _idempotency_store


__all__ = [
    "DecisionKind",
    "IdempotencyDecision",
    "IdempotencyStore",
    "get_idempotency_store",
]
