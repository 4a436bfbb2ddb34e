"""Unified settings composition for convenient access.

Composes the per-domain settings into one object. Each nested settings class
still respects its own env prefix, and the values are the same cached
instances the ``get_*_settings()`` loaders return.

Usage:
    from relay_service.core.settings import get_settings

    settings = get_settings()
    print(settings.outbox.batch_size)
    print(settings.nats.duplicate_window)
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .app import AppSettings
from .delivery import DeliverySettings
from .idempotency import IdempotencySettings
from .loader import (
    get_app_settings,
    get_db_settings,
    get_delivery_settings,
    get_idempotency_settings,
    get_logging_settings,
    get_nats_settings,
    get_outbox_settings,
    get_retention_settings,
)
from .logs import LoggingSettings
from .nats import NatsSettings
from .outbox import OutboxSettings
from .postgres import PostgresSettings
from .retention import RetentionSettings


class Settings(BaseSettings):
    """Every settings domain in one frozen object."""

    model_config = SettingsConfigDict(
        frozen=True,
        extra="ignore",
    )

    app: AppSettings = Field(default_factory=get_app_settings)
    db: PostgresSettings = Field(default_factory=get_db_settings)
    nats: NatsSettings = Field(default_factory=get_nats_settings)
    outbox: OutboxSettings = Field(default_factory=get_outbox_settings)
    delivery: DeliverySettings = Field(default_factory=get_delivery_settings)
    retention: RetentionSettings = Field(default_factory=get_retention_settings)
    idempotency: IdempotencySettings = Field(default_factory=get_idempotency_settings)
    logging: LoggingSettings = Field(default_factory=get_logging_settings)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get unified settings instance (cached)."""
    return Settings()
