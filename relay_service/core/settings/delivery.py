"""Notification delivery worker settings."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import SettingsConfigDict

from .workers import WorkerPolicySettings


class DeliverySettings(WorkerPolicySettings):
    """Settings for the notification delivery worker.

    Environment variables use DELIVERY_ prefix.
    Example: DELIVERY_MAX_ATTEMPTS=5, DELIVERY_FAILURE_INJECTION_ENABLED=true
    """

    # ─────────────────────────────────────────────────────
    # Failure injection (exercise retry and DLQ paths)
    # ─────────────────────────────────────────────────────
    failure_injection_enabled: bool = Field(
        default=False,
        description="Fail sends for users matching failure_user_prefix.",
    )
    failure_user_prefix: str = Field(
        default="fail-",
        min_length=1,
        description="User id prefix that triggers an injected send failure.",
    )

    model_config = SettingsConfigDict(
        env_prefix="DELIVERY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )
