"""Custom exception classes for the application.

Two families live here:

- ``AppException`` and subclasses are command-time errors. They surface
  synchronously to the caller as RFC 7807 problem details.
- ``PipelineError`` and subclasses are delivery-time errors. They never
  reach the original caller; the leased workers record them on the row and
  decide between retry and the terminal FAILED state.
"""

from __future__ import annotations

from typing import Any


class AppException(Exception):
    """Base application exception.

    Follows RFC 7807 Problem Details for HTTP APIs.

    Attributes:
        status_code: HTTP status code for the error.
        detail: Human-readable error message.
        type: Error type identifier (used in RFC 7807 problem details).
        title: Short, human-readable summary of the problem type.
        instance: URI reference that identifies the specific occurrence of the problem.
        extra: Additional context-specific information about the error.
    """

    def __init__(
        self,
        status_code: int,
        detail: str,
        type: str = "about:blank",
        title: str | None = None,
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        self.status_code = status_code
        self.detail = detail
        self.type = type
        self.title = title or self._default_title(status_code)
        self.instance = instance
        self.extra = extra or {}
        super().__init__(detail)

    @staticmethod
    def _default_title(status_code: int) -> str:
        """Get default title for HTTP status code."""
        titles = {
            400: "Bad Request",
            404: "Not Found",
            409: "Conflict",
            422: "Unprocessable Entity",
            500: "Internal Server Error",
            503: "Service Unavailable",
        }
        return titles.get(status_code, "Error")

    def to_problem_detail(self) -> dict[str, Any]:
        """Render the exception as an RFC 7807 problem detail dict."""
        problem: dict[str, Any] = {
            "type": self.type,
            "title": self.title,
            "status": self.status_code,
            "detail": self.detail,
        }
        if self.instance:
            problem["instance"] = self.instance
        problem.update(self.extra)
        return problem


class ValidationException(AppException):
    """Malformed or missing required input, rejected before any mutation.

    Example:
        raise ValidationException(
            detail="Idempotency-Key header is required",
            extra={"field": "Idempotency-Key"},
        )
    """

    def __init__(
        self,
        detail: str,
        type: str = "validation-error",
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            status_code=422,
            detail=detail,
            type=type,
            title="Validation Error",
            instance=instance,
            extra=extra,
        )


class ConflictException(AppException):
    """Exception raised for resource conflicts.

    Example:
        raise ConflictException(
            detail="Entitlement is already ACTIVE",
            type="entitlement-state-conflict",
            extra={"user_id": "u-1", "sku": "sku-1"},
        )
    """

    def __init__(
        self,
        detail: str,
        type: str = "conflict",
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            status_code=409,
            detail=detail,
            type=type,
            title="Conflict",
            instance=instance,
            extra=extra,
        )


class IdempotencyConflictException(ConflictException):
    """Idempotency key reused with a different request, or still in progress.

    Never executed and never stored: the original key keeps its own response.
    """

    def __init__(self, key: str, detail: str | None = None) -> None:
        super().__init__(
            detail=detail or "Idempotency-Key was already used with a different request",
            type="idempotency-key-conflict",
            extra={"idempotency_key": key},
        )
        self.key = key


class PipelineError(Exception):
    """Base class for asynchronous delivery errors."""


class TransientDependencyError(PipelineError):
    """Broker or database temporarily unavailable; retried with backoff."""


class TerminalFailure(PipelineError):
    """Non-retryable delivery error; the row goes straight to FAILED."""
