"""LRU-cached settings loaders.

Settings are loaded and validated once, then cached for the lifetime of the process.

Usage:
    from relay_service.core.settings.loader import get_outbox_settings

    settings = get_outbox_settings()  # First call: loads and validates
    settings = get_outbox_settings()  # Subsequent calls: returns cached instance

Testing:
    Clear the cache to force reload after changing the environment:
    get_outbox_settings.cache_clear()

    Or construct directly with overrides:
    settings = OutboxSettings(batch_size=5)
"""

from __future__ import annotations

from functools import lru_cache

from .app import AppSettings
from .delivery import DeliverySettings
from .idempotency import IdempotencySettings
from .logs import LoggingSettings
from .nats import NatsSettings
from .outbox import OutboxSettings
from .postgres import PostgresSettings
from .retention import RetentionSettings


@lru_cache(maxsize=1)
def get_app_settings() -> AppSettings:
    """Get cached application settings.

    Returns:
        Validated and frozen AppSettings instance.
    """
    return AppSettings()


@lru_cache(maxsize=1)
def get_db_settings() -> PostgresSettings:
    """Get cached database settings.

    Returns:
        Validated and frozen PostgresSettings instance.
    """
    return PostgresSettings()


@lru_cache(maxsize=1)
def get_nats_settings() -> NatsSettings:
    """Get cached NATS settings.

    Returns:
        Validated and frozen NatsSettings instance.
    """
    return NatsSettings()


@lru_cache(maxsize=1)
def get_outbox_settings() -> OutboxSettings:
    """Get cached outbox publisher settings.

    Returns:
        Validated and frozen OutboxSettings instance.
    """
    return OutboxSettings()


@lru_cache(maxsize=1)
def get_delivery_settings() -> DeliverySettings:
    """Get cached delivery worker settings.

    Returns:
        Validated and frozen DeliverySettings instance.
    """
    return DeliverySettings()


@lru_cache(maxsize=1)
def get_retention_settings() -> RetentionSettings:
    """Get cached retention settings."""
    return RetentionSettings()


@lru_cache(maxsize=1)
def get_idempotency_settings() -> IdempotencySettings:
    """Get cached idempotency settings."""
    return IdempotencySettings()


@lru_cache(maxsize=1)
def get_logging_settings() -> LoggingSettings:
    """Get cached logging settings.

    Returns:
        Validated and frozen LoggingSettings instance.
    """
    return LoggingSettings()


def clear_settings_cache() -> None:
    """Drop every cached settings instance (tests and CLI overrides)."""
    from .unified import get_settings

    get_settings.cache_clear()
    for loader in (
        get_app_settings,
        get_db_settings,
        get_nats_settings,
        get_outbox_settings,
        get_delivery_settings,
        get_retention_settings,
        get_idempotency_settings,
        get_logging_settings,
    ):
        loader.cache_clear()
