"""API router for the entitlements feature.

Command endpoints return the stored response body verbatim, so a retried
request sees exactly the bytes (and status code) of the first one.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Header, Response
from sqlalchemy.ext.asyncio import AsyncSession

from relay_service.core.dependencies.database import get_db_session
from relay_service.core.schemas.error import ProblemDetail, ValidationProblemDetail
from relay_service.features.entitlements.schemas import (
    EntitlementCommand,
    EntitlementList,
    EntitlementResponse,
)
from relay_service.features.entitlements.service import (
    CommandResult,
    EntitlementService,
    get_entitlement_service,
)

router = APIRouter(tags=["entitlements"])

logger = logging.getLogger(__name__)

REPLAYED_HEADER = "Idempotency-Replayed"

_COMMAND_RESPONSES = {
    409: {"model": ProblemDetail, "description": "Key reused for another request, or state conflict"},
    422: {"model": ValidationProblemDetail, "description": "Missing key or invalid body"},
}


def _to_response(result: CommandResult) -> Response:
    headers = {REPLAYED_HEADER: "true"} if result.replayed else None
    return Response(
        content=result.body,
        status_code=result.status_code,
        media_type="application/json",
        headers=headers,
    )


@router.post(
    "/entitlements/grants",
    response_model=EntitlementResponse,
    responses=_COMMAND_RESPONSES,
    summary="Grant an entitlement",
    description="Make the user's entitlement to the SKU ACTIVE. Requires an Idempotency-Key header.",
)
async def grant_entitlement(
    command: EntitlementCommand,
    session: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[EntitlementService, Depends(get_entitlement_service)],
    idempotency_key: Annotated[str | None, Header(alias="Idempotency-Key")] = None,
    trace_id: Annotated[str | None, Header(alias="X-Trace-Id")] = None,
) -> Response:
    result = await service.grant(session, command, idempotency_key, trace_id)
    return _to_response(result)


@router.post(
    "/entitlements/revokes",
    response_model=EntitlementResponse,
    responses=_COMMAND_RESPONSES,
    summary="Revoke an entitlement",
    description="Make the user's entitlement to the SKU REVOKED. Requires an Idempotency-Key header.",
)
async def revoke_entitlement(
    command: EntitlementCommand,
    session: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[EntitlementService, Depends(get_entitlement_service)],
    idempotency_key: Annotated[str | None, Header(alias="Idempotency-Key")] = None,
    trace_id: Annotated[str | None, Header(alias="X-Trace-Id")] = None,
) -> Response:
    result = await service.revoke(session, command, idempotency_key, trace_id)
    return _to_response(result)


@router.get(
    "/users/{user_id}/entitlements",
    response_model=EntitlementList,
    summary="List a user's entitlements",
    description="Return every entitlement of the user, most recently changed first.",
)
async def list_user_entitlements(
    user_id: str,
    session: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[EntitlementService, Depends(get_entitlement_service)],
) -> EntitlementList:
    return await service.list_by_user(session, user_id)
