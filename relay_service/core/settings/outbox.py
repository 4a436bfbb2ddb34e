"""Outbox publisher settings."""

from __future__ import annotations

from pydantic_settings import SettingsConfigDict

from .workers import WorkerPolicySettings


class OutboxSettings(WorkerPolicySettings):
    """Settings for the outbox publisher.

    Environment variables use OUTBOX_ prefix.
    Example: OUTBOX_BATCH_SIZE=100, OUTBOX_LEASE=PT1M, OUTBOX_MAX_ATTEMPTS=20
    """

    model_config = SettingsConfigDict(
        env_prefix="OUTBOX_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )
