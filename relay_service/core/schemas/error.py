"""RFC 7807 Problem Details schemas for error responses."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ProblemDetail(BaseModel):
    """RFC 7807 Problem Details for HTTP APIs.

    See: https://datatracker.ietf.org/doc/html/rfc7807
    """

    type: str = Field(
        default="about:blank",
        min_length=1,
        max_length=200,
        description="URI reference identifying the problem type",
    )
    title: str = Field(min_length=1, max_length=200, description="Short summary of the problem")
    status: int = Field(ge=100, le=599, description="HTTP status code")
    detail: str | None = Field(
        default=None,
        max_length=2000,
        description="Explanation specific to this occurrence",
    )
    instance: str | None = Field(
        default=None,
        max_length=500,
        description="URI reference identifying the specific occurrence",
    )

    model_config = ConfigDict(
        extra="allow",
        json_schema_extra={
            "example": {
                "type": "idempotency-key-conflict",
                "title": "Conflict",
                "status": 409,
                "detail": "Idempotency-Key was already used with a different request",
                "idempotency_key": "9b1c4c1e-5f0e-4d8f-8a3c-2f0a1d2b3c4d",
            }
        },
    )


class FieldError(BaseModel):
    """A single field-level validation failure."""

    field: str = Field(description="Dotted path of the offending field")
    message: str
    type: str
    value: Any = None


class ValidationProblemDetail(ProblemDetail):
    """Problem detail carrying field-level validation errors."""

    errors: list[FieldError] = Field(default_factory=list)
