"""Retention sweeper settings."""

from __future__ import annotations

from datetime import timedelta

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RetentionSettings(BaseSettings):
    """Horizons for deleting terminal rows.

    Environment variables use RETENTION_ prefix.
    Example: RETENTION_PUBLISHED_TTL=P7D, RETENTION_CLEANUP_INTERVAL=PT1H
    """

    enabled: bool = Field(default=True, description="Schedule the retention sweep.")
    cleanup_interval: timedelta = Field(
        default=timedelta(hours=1),
        description="Interval between sweeps.",
    )
    published_ttl: timedelta = Field(
        default=timedelta(days=7),
        description="PUBLISHED outbox rows older than this are deleted.",
    )
    failed_ttl: timedelta = Field(
        default=timedelta(days=30),
        description="FAILED outbox rows and NATS dead-letter rows older than this are deleted.",
    )
    notification_ttl: timedelta = Field(
        default=timedelta(days=30),
        description="SENT and FAILED notifications older than this are deleted.",
    )
    batch_limit: int = Field(
        default=10_000,
        ge=1,
        description="Upper bound on rows deleted per table per sweep.",
    )

    model_config = SettingsConfigDict(
        env_prefix="RETENTION_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )
