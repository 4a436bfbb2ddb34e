"""Shared lease/retry policy for the polling workers.

The outbox publisher and the delivery worker run the same state machine,
so their knobs live on one base class. Each worker subclasses it with its
own env prefix (OUTBOX_, DELIVERY_) and defaults.
"""

from __future__ import annotations

from datetime import timedelta

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


class WorkerPolicySettings(BaseSettings):
    """Polling, leasing and backoff settings for a leased worker."""

    # ─────────────────────────────────────────────────────
    # Enable/disable toggle
    # ─────────────────────────────────────────────────────
    enabled: bool = Field(default=True, description="Run this worker in the service process.")

    # ─────────────────────────────────────────────────────
    # Polling and leasing
    # ─────────────────────────────────────────────────────
    poll_interval: timedelta = Field(
        default=timedelta(seconds=1),
        description="Sleep between polls when the previous batch was empty.",
    )
    batch_size: int = Field(default=50, ge=1, le=1000, description="Rows leased per poll.")
    lease: timedelta = Field(
        default=timedelta(seconds=30),
        description="How long a leased row stays owned before another worker may reclaim it.",
    )

    # ─────────────────────────────────────────────────────
    # Retry and backoff
    # ─────────────────────────────────────────────────────
    max_attempts: int = Field(
        default=10,
        ge=1,
        le=1000,
        description="Attempts before a row is parked in FAILED.",
    )
    backoff_base: timedelta = Field(default=timedelta(seconds=1))
    backoff_exponent_base: float = Field(default=2.0, ge=1.0, le=10.0)
    backoff_min: timedelta = Field(default=timedelta(seconds=1))
    backoff_max: timedelta = Field(default=timedelta(minutes=5))
    backoff_jitter_min: float = Field(default=0.5, ge=0.0, le=10.0)
    backoff_jitter_max: float = Field(default=1.5, ge=0.0, le=10.0)
    error_message_max_length: int = Field(
        default=1000,
        ge=16,
        le=10_000,
        description="Stored error messages are truncated to this many characters.",
    )

    @model_validator(mode="after")
    def _check_bounds(self) -> WorkerPolicySettings:
        """Reject inverted or non-positive backoff and lease bounds."""
        if self.backoff_jitter_min > self.backoff_jitter_max:
            msg = "backoff_jitter_min must be <= backoff_jitter_max"
            raise ValueError(msg)
        if self.backoff_min > self.backoff_max:
            msg = "backoff_min must be <= backoff_max"
            raise ValueError(msg)
        if self.lease <= timedelta(0) or self.poll_interval <= timedelta(0):
            msg = "lease and poll_interval must be positive"
            raise ValueError(msg)
        return self
