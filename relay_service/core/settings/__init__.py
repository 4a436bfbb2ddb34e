"""Modular Pydantic Settings v2 configuration.

One settings module per domain, each with its own env prefix:

    APP_          application and HTTP surface
    DB_           PostgreSQL (SQLite fallback when disabled)
    NATS_         JetStream connection, stream and consumer
    OUTBOX_       outbox publisher polling, leasing and backoff
    DELIVERY_     notification delivery worker polling, leasing and backoff
    RETENTION_    terminal-row cleanup horizons
    IDEMPOTENCY_  stored response lifetime
    LOG_          logging

Import settings via cached loaders:
    from relay_service.core.settings import get_outbox_settings
"""

from __future__ import annotations

from .loader import (
    clear_settings_cache,
    get_app_settings,
    get_db_settings,
    get_delivery_settings,
    get_idempotency_settings,
    get_logging_settings,
    get_nats_settings,
    get_outbox_settings,
    get_retention_settings,
)
from .unified import Settings, get_settings

__all__ = [
    "Settings",
    "clear_settings_cache",
    "get_app_settings",
    "get_db_settings",
    "get_delivery_settings",
    "get_idempotency_settings",
    "get_logging_settings",
    "get_nats_settings",
    "get_outbox_settings",
    "get_retention_settings",
    "get_settings",
]
