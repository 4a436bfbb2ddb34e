"""Idempotency key settings."""

from __future__ import annotations

from datetime import timedelta

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class IdempotencySettings(BaseSettings):
    """Lifetime and limits for stored command responses.

    Environment variables use IDEMPOTENCY_ prefix.
    Example: IDEMPOTENCY_TTL=P1D
    """

    ttl: timedelta = Field(
        default=timedelta(hours=24),
        description="How long a key replays its stored response.",
    )
    key_max_length: int = Field(default=255, ge=8, le=255)

    model_config = SettingsConfigDict(
        env_prefix="IDEMPOTENCY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )

    @field_validator("ttl")
    @classmethod
    def _positive_ttl(cls, value: timedelta) -> timedelta:
        if value <= timedelta(0):
            msg = "ttl must be positive"
            raise ValueError(msg)
        return value
