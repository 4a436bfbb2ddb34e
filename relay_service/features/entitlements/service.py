"""Entitlement command handler.

A grant or revoke runs as one database transaction:

1. reserve the idempotency key (first write of the transaction);
2. apply the state transition to ``entitlements``;
3. stage the domain event in ``outbox_events``;
4. append an ``entitlement_audit`` row;
5. store the response body under the key, then commit.

Nothing is visible to other transactions until the commit, so a crash at any
point leaves either all of it or none of it. A retried request with the same
key and body gets the stored response back byte for byte.

A transition that is not allowed (grant of an ACTIVE entitlement, revoke of a
REVOKED one) is a failed-but-terminal outcome: the 409 body is stored under
the key and replayed later, with no state change and no event.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from relay_service.core.database.base import generate_uuid7
from relay_service.core.database.types import utcnow
from relay_service.core.exceptions import ConflictException, IdempotencyConflictException
from relay_service.core.services.base import BaseService
from relay_service.features.entitlements.events import (
    EVENT_GRANTED,
    EVENT_REVOKED,
    aggregate_key,
    build_event,
    event_payload,
)
from relay_service.features.entitlements.models import (
    Entitlement,
    EntitlementAudit,
    EntitlementStatus,
)
from relay_service.features.entitlements.repository import (
    EntitlementAuditRepository,
    EntitlementRepository,
    get_entitlement_audit_repository,
    get_entitlement_repository,
)
from relay_service.features.entitlements.schemas import (
    EntitlementList,
    EntitlementResponse,
    EntitlementSummary,
)
from relay_service.features.idempotency.hashing import request_hash
from relay_service.features.idempotency.service import (
    DecisionKind,
    IdempotencyStore,
    get_idempotency_store,
)
from relay_service.infra.events.outbox.repository import OutboxRepository, get_outbox_repository
from relay_service.infra.metrics.prometheus import commands_total

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from relay_service.features.entitlements.schemas import EntitlementCommand

SUCCESS_STATUS_CODE = 200
CONFLICT_STATUS_CODE = 409


class EntitlementAction(StrEnum):
    GRANT = "GRANT"
    REVOKE = "REVOKE"


_TARGET_STATUS = {
    EntitlementAction.GRANT: EntitlementStatus.ACTIVE,
    EntitlementAction.REVOKE: EntitlementStatus.REVOKED,
}
_EVENT_TYPE = {
    EntitlementAction.GRANT: EVENT_GRANTED,
    EntitlementAction.REVOKE: EVENT_REVOKED,
}


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Response of a command, as computed or as replayed.

    Attributes:
        status_code: HTTP status to return
        body: JSON text; identical bytes on every replay
        replayed: True when served from the idempotency store
    """

    status_code: int
    body: str
    replayed: bool = False

    def json(self) -> Any:
        return json.loads(self.body)


def _dump(document: dict[str, Any]) -> str:
    return json.dumps(document, separators=(",", ":"), ensure_ascii=False)


class EntitlementService(BaseService):
    """Grant, revoke and list entitlements.

    The service owns the transaction: it commits on success and on a stored
    state conflict, and rolls back on every other outcome.
    """

    def __init__(
        self,
        *,
        store: IdempotencyStore | None = None,
        repository: EntitlementRepository | None = None,
        audit_repository: EntitlementAuditRepository | None = None,
        outbox: OutboxRepository | None = None,
    ) -> None:
        super().__init__()
        self.store = store or get_idempotency_store()
        self.repository = repository or get_entitlement_repository()
        self.audit_repository = audit_repository or get_entitlement_audit_repository()
        self.outbox = outbox or get_outbox_repository()

    async def grant(
        self,
        session: AsyncSession,
        command: EntitlementCommand,
        idempotency_key: str | None,
        trace_id: str | None = None,
    ) -> CommandResult:
        """Make the entitlement ACTIVE.

        Raises:
            ValidationException: If the idempotency key is missing or blank
            IdempotencyConflictException: If the key belongs to another request
        """
        return await self._execute(session, EntitlementAction.GRANT, command, idempotency_key, trace_id)

    async def revoke(
        self,
        session: AsyncSession,
        command: EntitlementCommand,
        idempotency_key: str | None,
        trace_id: str | None = None,
    ) -> CommandResult:
        """Make the entitlement REVOKED. Same contract as ``grant``."""
        return await self._execute(session, EntitlementAction.REVOKE, command, idempotency_key, trace_id)

    async def list_by_user(self, session: AsyncSession, user_id: str) -> EntitlementList:
        rows = await self.repository.list_for_user(session, user_id)
        self.logger.debug("Listed entitlements", extra={"user_id": user_id, "count": len(rows)})
        return EntitlementList(
            user_id=user_id,
            entitlements=[EntitlementSummary.model_validate(row) for row in rows],
        )

    async def _execute(
        self,
        session: AsyncSession,
        action: EntitlementAction,
        command: EntitlementCommand,
        idempotency_key: str | None,
        trace_id: str | None,
    ) -> CommandResult:
        key = self.store.validate_key(idempotency_key)
        fingerprint = request_hash(action, command.canonical_fields())
        now = utcnow()

        try:
            decision = await self.store.reserve_or_replay(session, key, fingerprint, now=now)

            if decision.kind is DecisionKind.CONFLICT:
                await session.rollback()
                commands_total.labels(action=action, status="idempotency_conflict").inc()
                raise IdempotencyConflictException(key, decision.reason)

            if decision.kind is DecisionKind.REPLAY:
                record = decision.record
                replay = CommandResult(record.response_code, record.response_body, replayed=True)
                await session.rollback()
                commands_total.labels(action=action, status="replayed").inc()
                self.logger.info(
                    "Command replayed",
                    extra={"action": str(action), "idempotency_key": key},
                )
                return replay

            entitlement = await self.repository.get_for_update(session, command.user_id, command.sku)
            if entitlement is not None and entitlement.status == _TARGET_STATUS[action]:
                result = await self._store_state_conflict(session, key, fingerprint, entitlement, now=now)
                commands_total.labels(action=action, status="state_conflict").inc()
                return result

            entitlement = await self._apply(session, action, entitlement, command, now=now)
            event = build_event(
                entitlement,
                event_id=generate_uuid7(),
                event_type=_EVENT_TYPE[action],
                occurred_at=now,
                trace_id=trace_id,
            )
            await self.outbox.append(
                session,
                event_id=event.event_id,
                event_type=event.event_type,
                aggregate_key=aggregate_key(entitlement.user_id, entitlement.sku),
                payload=event_payload(event),
            )
            await self.audit_repository.create(
                session,
                EntitlementAudit(
                    occurred_at=now,
                    user_id=entitlement.user_id,
                    sku=entitlement.sku,
                    action=action,
                    source=command.reason,
                    source_id=command.purchase_id,
                    idempotency_key=key,
                    detail_json=_dump(command.model_dump()),
                ),
            )

            body = EntitlementResponse.model_validate(entitlement).model_dump_json()
            await self.store.finalize(session, key, fingerprint, SUCCESS_STATUS_CODE, body, now=now)
            await session.commit()
        except Exception:
            if session.in_transaction():
                await session.rollback()
            raise

        commands_total.labels(action=action, status="executed").inc()
        self.logger.info(
            "Entitlement changed",
            extra={
                "action": str(action),
                "user_id": event.user_id,
                "sku": event.sku,
                "version": event.version,
                "event_id": str(event.event_id),
                "trace_id": event.trace_id,
                "idempotency_key": key,
            },
        )
        return CommandResult(SUCCESS_STATUS_CODE, body)

    async def _apply(
        self,
        session: AsyncSession,
        action: EntitlementAction,
        entitlement: Entitlement | None,
        command: EntitlementCommand,
        *,
        now: datetime,
    ) -> Entitlement:
        if entitlement is None:
            entitlement = Entitlement(user_id=command.user_id, sku=command.sku, version=0)
            session.add(entitlement)
        else:
            entitlement.version += 1

        entitlement.status = _TARGET_STATUS[action]
        entitlement.source = command.reason
        entitlement.source_id = command.purchase_id
        entitlement.updated_at = now
        if action is EntitlementAction.GRANT:
            entitlement.granted_at = now
            entitlement.revoked_at = None
        else:
            entitlement.revoked_at = now

        await session.flush()
        return entitlement

    async def _store_state_conflict(
        self,
        session: AsyncSession,
        key: str,
        fingerprint: str,
        entitlement: Entitlement,
        *,
        now: datetime,
    ) -> CommandResult:
        extra = {"user_id": entitlement.user_id, "sku": entitlement.sku}
        problem = ConflictException(
            detail=f"Entitlement is already {entitlement.status}",
            type="entitlement-state-conflict",
            extra=extra,
        ).to_problem_detail()
        body = _dump(problem)
        await self.store.finalize(session, key, fingerprint, CONFLICT_STATUS_CODE, body, now=now)
        await session.commit()

        self.logger.info(
            "Entitlement transition rejected",
            extra={**extra, "detail": problem["detail"], "idempotency_key": key},
        )
        return CommandResult(CONFLICT_STATUS_CODE, body)


_entitlement_service: EntitlementService | None = None


def get_entitlement_service() -> EntitlementService:
    """Get the shared EntitlementService instance."""
    global _entitlement_service
    if _entitlement_service is None:
        _entitlement_service = EntitlementService()
    return _entitlement_service


__all__ = [
    "CONFLICT_STATUS_CODE",
    "SUCCESS_STATUS_CODE",
    "CommandResult",
    "EntitlementAction",
    "EntitlementService",
    "get_entitlement_service",
]
