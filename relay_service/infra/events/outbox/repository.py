"""Repository for outbox rows.

Leasing and status transitions come from ``LeaseRepository``; this module
adds the insert used by the command handler.
"""

from __future__ import annotations

import json
import uuid
from typing import TYPE_CHECKING, Any

from relay_service.core.database.leasing import LeaseRepository
from relay_service.infra.events.outbox.models import OUTBOX_STATES, OutboxEvent, OutboxStatus

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession


class OutboxRepository(LeaseRepository[OutboxEvent]):
    """Outbox queries for the command handler, the publisher and operators."""

    def __init__(self) -> None:
        super().__init__(OutboxEvent, states=OUTBOX_STATES, completed_at="published_at")

    async def append(
        self,
        session: AsyncSession,
        *,
        event_id: uuid.UUID,
        event_type: str,
        aggregate_key: str,
        payload: dict[str, Any],
    ) -> OutboxEvent:
        """Stage an event in the caller's transaction.

        Must be called inside the same transaction as the state change the
        event describes. Does not commit.
        """
        event = OutboxEvent(
            event_id=event_id,
            event_type=event_type,
            aggregate_key=aggregate_key,
            payload=json.dumps(payload, separators=(",", ":"), sort_keys=True),
            status=OutboxStatus.PENDING,
            attempt_count=0,
        )
        return await self.create(session, event)


_outbox_repository: OutboxRepository | None = None


def get_outbox_repository() -> OutboxRepository:
    """Get the shared OutboxRepository instance."""
    global _outbox_repository
    if _outbox_repository is None:
        _outbox_repository = OutboxRepository()
    return _outbox_repository


__all__ = ["OutboxRepository", "get_outbox_repository"]
