"""Tests for idempotent grant and revoke commands.

Each command must leave the entitlement row, exactly one outbox event, one
audit row and the stored response in the same commit, or nothing at all.
"""

from __future__ import annotations

import json

import pytest
from sqlalchemy import func, select

from relay_service.core.exceptions import IdempotencyConflictException, ValidationException
from relay_service.features.entitlements.models import Entitlement, EntitlementAudit
from relay_service.features.entitlements.schemas import EntitlementCommand
from relay_service.features.entitlements.service import EntitlementService
from relay_service.features.idempotency.models import IdempotencyRecord
from relay_service.infra.events.outbox.models import OutboxEvent, OutboxStatus


@pytest.fixture
def service() -> EntitlementService:
    return EntitlementService()


async def _count(session_factory, model) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


async def _outbox_rows(session_factory) -> list[OutboxEvent]:
    async with session_factory() as session:
        stmt = select(OutboxEvent).order_by(OutboxEvent.created_at, OutboxEvent.event_id)
        return list((await session.execute(stmt)).scalars().all())


@pytest.mark.asyncio
class TestGrant:
    async def test_grant_writes_state_event_and_audit(self, service, session_factory, grant_command):
        async with session_factory() as session:
            result = await service.grant(session, grant_command, "key-1", trace_id="trace-abc")

        assert result.status_code == 200
        assert result.replayed is False
        body = result.json()
        assert body["user_id"] == "u-1"
        assert body["sku"] == "sku-pro"
        assert body["status"] == "ACTIVE"
        assert body["version"] == 0

        (event,) = await _outbox_rows(session_factory)
        payload = json.loads(event.payload)
        assert event.status == OutboxStatus.PENDING
        assert event.event_type == "EntitlementGranted"
        assert event.aggregate_key == "u-1:sku-pro"
        assert payload["event_id"] == str(event.event_id)
        assert payload["version"] == 0
        assert payload["source"] == "purchase"
        assert payload["source_id"] == "p-100"
        assert payload["trace_id"] == "trace-abc"

        assert await _count(session_factory, EntitlementAudit) == 1
        async with session_factory() as session:
            record = await session.get(IdempotencyRecord, "key-1")
        assert record.response_code == 200
        assert record.response_body == result.body

    async def test_trace_id_generated_when_absent(self, service, session_factory, grant_command):
        async with session_factory() as session:
            await service.grant(session, grant_command, "key-1")

        (event,) = await _outbox_rows(session_factory)
        assert len(json.loads(event.payload)["trace_id"]) == 32

    async def test_replay_returns_identical_body(self, service, session_factory, grant_command):
        async with session_factory() as session:
            first = await service.grant(session, grant_command, "key-1")
        async with session_factory() as session:
            second = await service.grant(session, grant_command, "key-1")

        assert second.replayed is True
        assert second.status_code == first.status_code
        assert second.body == first.body
        assert await _count(session_factory, OutboxEvent) == 1
        assert await _count(session_factory, EntitlementAudit) == 1

    async def test_key_reused_with_different_body_conflicts(self, service, session_factory, grant_command):
        async with session_factory() as session:
            await service.grant(session, grant_command, "key-1")

        other = grant_command.model_copy(update={"purchase_id": "p-200"})
        async with session_factory() as session:
            with pytest.raises(IdempotencyConflictException) as exc_info:
                await service.grant(session, other, "key-1")

        assert exc_info.value.status_code == 409
        assert exc_info.value.key == "key-1"
        assert await _count(session_factory, OutboxEvent) == 1

    async def test_same_key_for_revoke_conflicts(self, service, session_factory, grant_command):
        async with session_factory() as session:
            await service.grant(session, grant_command, "key-1")

        async with session_factory() as session:
            with pytest.raises(IdempotencyConflictException):
                await service.revoke(session, grant_command, "key-1")

    async def test_missing_key_rejected_before_any_write(self, service, session_factory, grant_command):
        async with session_factory() as session:
            with pytest.raises(ValidationException):
                await service.grant(session, grant_command, None)

        assert await _count(session_factory, Entitlement) == 0
        assert await _count(session_factory, IdempotencyRecord) == 0


@pytest.mark.asyncio
class TestStateTransitions:
    async def test_grant_of_active_is_stored_conflict(self, service, session_factory, grant_command):
        async with session_factory() as session:
            await service.grant(session, grant_command, "key-1")

        async with session_factory() as session:
            conflict = await service.grant(session, grant_command, "key-2")

        assert conflict.status_code == 409
        problem = conflict.json()
        assert problem["type"] == "entitlement-state-conflict"
        assert problem["detail"] == "Entitlement is already ACTIVE"
        assert problem["user_id"] == "u-1"
        assert await _count(session_factory, OutboxEvent) == 1

        # The 409 is stored under its key and replayed verbatim
        async with session_factory() as session:
            replay = await service.grant(session, grant_command, "key-2")
        assert replay.replayed is True
        assert replay.status_code == 409
        assert replay.body == conflict.body

    async def test_versions_increase_per_transition(self, service, session_factory, grant_command):
        async with session_factory() as session:
            granted = await service.grant(session, grant_command, "key-1")
        async with session_factory() as session:
            revoked = await service.revoke(session, grant_command, "key-2")
        async with session_factory() as session:
            regranted = await service.grant(session, grant_command, "key-3")

        assert [r.json()["version"] for r in (granted, revoked, regranted)] == [0, 1, 2]
        assert [r.json()["status"] for r in (granted, revoked, regranted)] == ["ACTIVE", "REVOKED", "ACTIVE"]

        events = await _outbox_rows(session_factory)
        assert [e.event_type for e in events] == [
            "EntitlementGranted",
            "EntitlementRevoked",
            "EntitlementGranted",
        ]
        assert [json.loads(e.payload)["version"] for e in events] == [0, 1, 2]

    async def test_revoke_of_unknown_entitlement_creates_revoked_row(self, service, session_factory):
        command = EntitlementCommand(user_id="u-2", sku="sku-basic", reason="refund", purchase_id="p-7")

        async with session_factory() as session:
            result = await service.revoke(session, command, "key-1")

        assert result.status_code == 200
        assert result.json()["status"] == "REVOKED"
        assert result.json()["version"] == 0
        (event,) = await _outbox_rows(session_factory)
        assert event.event_type == "EntitlementRevoked"

    async def test_revoke_of_revoked_is_stored_conflict(self, service, session_factory, grant_command):
        async with session_factory() as session:
            await service.revoke(session, grant_command, "key-1")
        async with session_factory() as session:
            result = await service.revoke(session, grant_command, "key-2")

        assert result.status_code == 409
        assert result.json()["detail"] == "Entitlement is already REVOKED"


@pytest.mark.asyncio
async def test_list_by_user(service, session_factory, grant_command):
    async with session_factory() as session:
        await service.grant(session, grant_command, "key-1")
    basic = grant_command.model_copy(update={"sku": "sku-basic"})
    async with session_factory() as session:
        await service.grant(session, basic, "key-2")

    async with session_factory() as session:
        listing = await service.list_by_user(session, "u-1")
        empty = await service.list_by_user(session, "nobody")

    assert listing.user_id == "u-1"
    assert {e.sku for e in listing.entitlements} == {"sku-pro", "sku-basic"}
    assert all(e.status == "ACTIVE" for e in listing.entitlements)
    assert empty.entitlements == []
