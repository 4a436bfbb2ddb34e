"""Tests for the RFC 7807 exception handlers."""

from __future__ import annotations

import json

import pytest
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError

from relay_service.app.exception_handlers import (
    app_exception_handler,
    configure_exception_handlers,
    generic_exception_handler,
    validation_exception_handler,
)
from relay_service.core.exceptions import (
    AppException,
    IdempotencyConflictException,
    ValidationException,
)


def _build_request(path: str = "/api/v1/entitlements/grants", method: str = "POST") -> Request:
    scope = {
        "type": "http",
        "method": method,
        "path": path,
        "raw_path": path.encode(),
        "root_path": "",
        "scheme": "http",
        "server": ("testserver", 80),
        "client": ("testclient", 50000),
        "query_string": b"",
        "headers": [],
    }
    return Request(scope)


def _body(response) -> dict:
    return json.loads(response.body)


@pytest.mark.asyncio
class TestAppExceptionHandler:
    async def test_problem_detail_with_instance_from_path(self):
        response = await app_exception_handler(_build_request(), ValidationException(detail="sku is blank"))

        assert response.status_code == 422
        assert _body(response) == {
            "type": "validation-error",
            "title": "Validation Error",
            "status": 422,
            "detail": "sku is blank",
            "instance": "/api/v1/entitlements/grants",
        }

    async def test_idempotency_conflict_carries_key(self):
        response = await app_exception_handler(_build_request(), IdempotencyConflictException("k-1"))

        body = _body(response)
        assert response.status_code == 409
        assert body["type"] == "idempotency-key-conflict"
        assert body["title"] == "Conflict"
        assert body["idempotency_key"] == "k-1"

    async def test_explicit_instance_wins(self):
        exc = ValidationException(detail="bad", instance="/custom")

        body = _body(await app_exception_handler(_build_request(), exc))

        assert body["instance"] == "/custom"
        assert body["status"] == 422

    async def test_unknown_status_gets_generic_title(self):
        exc = AppException(status_code=418, detail="teapot")

        body = _body(await app_exception_handler(_build_request(), exc))

        assert body["title"] == "Error"
        assert body["type"] == "about:blank"


@pytest.mark.asyncio
async def test_validation_handler_lists_fields():
    exc = RequestValidationError(
        [
            {"loc": ("body", "sku"), "msg": "Field required", "type": "missing", "input": {}},
            {"loc": ("body", "extra"), "msg": "Extra inputs are not permitted", "type": "extra_forbidden", "input": 1},
        ]
    )

    response = await validation_exception_handler(_build_request(), exc)
    body = _body(response)

    assert response.status_code == 422
    assert body["type"] == "validation-error"
    assert body["detail"] == "Request validation failed for 2 field(s)"
    assert [e["field"] for e in body["errors"]] == ["body.sku", "body.extra"]
    assert body["errors"][1]["value"] == 1


@pytest.mark.asyncio
async def test_generic_handler_hides_internals():
    response = await generic_exception_handler(_build_request(), RuntimeError("password=secret"))
    body = _body(response)

    assert response.status_code == 500
    assert body["type"] == "internal-error"
    assert "secret" not in response.body.decode()


def test_configure_exception_handlers_registers_all():
    app = FastAPI()

    configure_exception_handlers(app)

    assert app.exception_handlers[AppException] is app_exception_handler
    assert app.exception_handlers[RequestValidationError] is validation_exception_handler
    assert app.exception_handlers[Exception] is generic_exception_handler
