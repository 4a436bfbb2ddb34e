"""Tests for idempotency key reservation, replay and conflict detection."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from relay_service.core.exceptions import ValidationException
from relay_service.core.settings.idempotency import IdempotencySettings
from relay_service.features.idempotency.models import IdempotencyRecord
from relay_service.features.idempotency.service import DecisionKind, IdempotencyStore

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
HASH_A = "a" * 64
HASH_B = "b" * 64


@pytest.fixture
def store() -> IdempotencyStore:
    return IdempotencyStore(settings=IdempotencySettings(ttl=timedelta(hours=24), key_max_length=32))


async def _complete(store, session_factory, key: str, request_hash: str = HASH_A, *, now=NOW) -> None:
    async with session_factory() as session:
        decision = await store.reserve_or_replay(session, key, request_hash, now=now)
        assert decision.kind is DecisionKind.EXECUTE
        await store.finalize(session, key, request_hash, 200, '{"ok":true}', now=now)
        await session.commit()


class TestValidateKey:
    @pytest.mark.parametrize("key", [None, "", "   "])
    def test_missing_or_blank_rejected(self, store, key):
        with pytest.raises(ValidationException) as exc_info:
            store.validate_key(key)

        assert exc_info.value.status_code == 422
        assert exc_info.value.extra == {"field": "Idempotency-Key"}

    def test_oversized_rejected(self, store):
        with pytest.raises(ValidationException, match="at most 32"):
            store.validate_key("k" * 33)

    def test_surrounding_whitespace_trimmed(self, store):
        assert store.validate_key("  key-1 ") == "key-1"


@pytest.mark.asyncio
class TestReserveOrReplay:
    async def test_new_key_executes_and_holds_reservation(self, store, session_factory):
        async with session_factory() as session:
            decision = await store.reserve_or_replay(session, "key-1", HASH_A, now=NOW)
            pending = await store._find(session, "key-1")

            assert decision.kind is DecisionKind.EXECUTE
            assert pending.response_code is None
            assert pending.expires_at == NOW + timedelta(hours=24)
            await session.rollback()

        # Rolled back with the command transaction: nothing left behind
        async with session_factory() as session:
            assert await store._find(session, "key-1") is None

    async def test_same_request_replays(self, store, session_factory):
        await _complete(store, session_factory, "key-1")

        async with session_factory() as session:
            decision = await store.reserve_or_replay(session, "key-1", HASH_A, now=NOW + timedelta(hours=1))

        assert decision.kind is DecisionKind.REPLAY
        assert decision.record.response_code == 200
        assert decision.record.response_body == '{"ok":true}'

    async def test_different_request_conflicts(self, store, session_factory):
        await _complete(store, session_factory, "key-1")

        async with session_factory() as session:
            decision = await store.reserve_or_replay(session, "key-1", HASH_B, now=NOW)

        assert decision.kind is DecisionKind.CONFLICT
        assert "different request" in decision.reason

    async def test_uncompleted_reservation_conflicts(self, store, session_factory):
        async with session_factory() as session:
            session.add(
                IdempotencyRecord(
                    key="key-1",
                    request_hash=HASH_A,
                    expires_at=NOW + timedelta(hours=1),
                    created_at=NOW,
                )
            )
            await session.commit()

        async with session_factory() as session:
            decision = await store.reserve_or_replay(session, "key-1", HASH_A, now=NOW)

        assert decision.kind is DecisionKind.CONFLICT
        assert "in progress" in decision.reason

    async def test_expired_key_executes_again(self, store, session_factory):
        await _complete(store, session_factory, "key-1", HASH_A, now=NOW - timedelta(days=2))

        async with session_factory() as session:
            decision = await store.reserve_or_replay(session, "key-1", HASH_B, now=NOW)
            assert decision.kind is DecisionKind.EXECUTE
            await store.finalize(session, "key-1", HASH_B, 200, '{"second":true}', now=NOW)
            await session.commit()

        async with session_factory() as session:
            record = await store._find(session, "key-1")
        assert record.request_hash == HASH_B
        assert record.response_body == '{"second":true}'

    async def test_lookup_ignores_expired_records(self, store, session_factory):
        await _complete(store, session_factory, "key-1", now=NOW - timedelta(days=2))

        async with session_factory() as session:
            assert await store.lookup(session, "key-1", now=NOW) is None
            assert await store.lookup(session, "key-1", now=NOW - timedelta(days=2)) is not None

    async def test_key_committed_after_read_is_replayed(self, session_factory):
        """The loser of an insert race re-reads the winner's row."""

        class BlindStore(IdempotencyStore):
            blind = True

            async def _find(self, session, key):
                if self.blind:
                    self.blind = False
                    return None
                return await super()._find(session, key)

        store = BlindStore(settings=IdempotencySettings())
        await _complete(store, session_factory, "key-1")
        store.blind = True

        async with session_factory() as session:
            decision = await store.reserve_or_replay(session, "key-1", HASH_A, now=NOW)

        assert decision.kind is DecisionKind.REPLAY
        assert decision.record.response_body == '{"ok":true}'


@pytest.mark.asyncio
async def test_finalize_without_reservation_inserts(store, session_factory):
    async with session_factory() as session:
        record = await store.finalize(session, "key-9", HASH_A, 409, '{"status":409}', ttl=timedelta(minutes=5), now=NOW)
        await session.commit()

    assert record.response_code == 409
    assert record.expires_at == NOW + timedelta(minutes=5)
