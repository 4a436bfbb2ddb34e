"""Shared API schemas."""

from .error import FieldError, ProblemDetail, ValidationProblemDetail

__all__ = ["FieldError", "ProblemDetail", "ValidationProblemDetail"]
