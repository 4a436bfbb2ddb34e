"""End-to-end HTTP tests against the ASGI app with a SQLite database."""

from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

from relay_service.app.main import create_app
from relay_service.core.dependencies.database import get_db_session

GRANT_BODY = {"user_id": "u-1", "sku": "sku-pro", "reason": "purchase", "purchase_id": "p-100"}


@pytest.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient]:
    """HTTP client whose requests use the test database.

    The lifespan is not run, so no broker or background workers start.
    """
    app = create_app()

    async def override_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_session
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def _grant(client: AsyncClient, key: str | None, body: dict | None = None):
    headers = {"Idempotency-Key": key} if key is not None else {}
    return await client.post("/api/v1/entitlements/grants", json=body or GRANT_BODY, headers=headers)


@pytest.mark.asyncio
class TestCommands:
    async def test_grant(self, client):
        response = await _grant(client, "key-1")

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/json"
        assert "idempotency-replayed" not in response.headers
        body = response.json()
        assert body["status"] == "ACTIVE"
        assert body["version"] == 0

    async def test_retry_replays_identical_bytes(self, client):
        first = await _grant(client, "key-1")
        second = await _grant(client, "key-1")

        assert second.status_code == 200
        assert second.headers["idempotency-replayed"] == "true"
        assert second.content == first.content

    async def test_missing_key(self, client):
        response = await _grant(client, None)

        assert response.status_code == 422
        problem = response.json()
        assert problem["type"] == "validation-error"
        assert problem["field"] == "Idempotency-Key"
        assert problem["instance"] == "/api/v1/entitlements/grants"

    async def test_blank_field(self, client):
        response = await _grant(client, "key-1", {**GRANT_BODY, "sku": "   "})

        assert response.status_code == 422
        assert [e["field"] for e in response.json()["errors"]] == ["body.sku"]

    async def test_unknown_field(self, client):
        response = await _grant(client, "key-1", {**GRANT_BODY, "price": 10})

        assert response.status_code == 422
        assert response.json()["errors"][0]["type"] == "extra_forbidden"

    async def test_key_reused_with_other_body(self, client):
        await _grant(client, "key-1")

        response = await _grant(client, "key-1", {**GRANT_BODY, "purchase_id": "p-999"})

        assert response.status_code == 409
        problem = response.json()
        assert problem["type"] == "idempotency-key-conflict"
        assert problem["idempotency_key"] == "key-1"

    async def test_state_conflict_is_replayable(self, client):
        await _grant(client, "key-1")

        conflict = await _grant(client, "key-2")
        replay = await _grant(client, "key-2")

        assert conflict.status_code == 409
        assert conflict.json()["type"] == "entitlement-state-conflict"
        assert replay.status_code == 409
        assert replay.headers["idempotency-replayed"] == "true"
        assert replay.content == conflict.content

    async def test_revoke(self, client):
        await _grant(client, "key-1")

        response = await client.post(
            "/api/v1/entitlements/revokes",
            json=GRANT_BODY,
            headers={"Idempotency-Key": "key-2", "X-Trace-Id": "trace-1"},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "REVOKED"
        assert response.json()["version"] == 1


@pytest.mark.asyncio
class TestQueries:
    async def test_list_entitlements(self, client):
        await _grant(client, "key-1")

        response = await client.get("/api/v1/users/u-1/entitlements")

        assert response.status_code == 200
        body = response.json()
        assert body["user_id"] == "u-1"
        assert [e["sku"] for e in body["entitlements"]] == ["sku-pro"]

    async def test_notification_inbox_starts_empty(self, client):
        response = await client.get("/api/v1/users/u-1/notifications")

        assert response.status_code == 200
        assert response.json() == {"user_id": "u-1", "notifications": []}

    async def test_notification_inbox_limit_validated(self, client):
        response = await client.get("/api/v1/users/u-1/notifications", params={"limit": 0})

        assert response.status_code == 422

    async def test_metrics(self, client):
        await _grant(client, "key-1")

        response = await client.get("/metrics")

        assert response.status_code == 200
        assert "relay_commands_total" in response.text
