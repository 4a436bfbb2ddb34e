"""Pydantic schemas for the entitlements feature."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class EntitlementCommand(BaseModel):
    """Body of a grant or revoke request.

    Every field is required and must not be blank after trimming.
    """

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    user_id: str = Field(..., min_length=1, max_length=128)
    sku: str = Field(..., min_length=1, max_length=128)
    reason: str = Field(..., min_length=1, max_length=255)
    purchase_id: str = Field(..., min_length=1, max_length=255)

    def canonical_fields(self) -> dict[str, Any]:
        return self.model_dump()


class EntitlementResponse(BaseModel):
    """State of one entitlement after a successful command."""

    model_config = ConfigDict(from_attributes=True)

    user_id: str
    sku: str
    status: str
    version: int
    updated_at: datetime


class EntitlementSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    sku: str
    status: str
    version: int
    updated_at: datetime


class EntitlementList(BaseModel):
    """Entitlements of one user, most recently changed first."""

    user_id: str
    entitlements: list[EntitlementSummary]


__all__ = [
    "EntitlementCommand",
    "EntitlementList",
    "EntitlementResponse",
    "EntitlementSummary",
]
