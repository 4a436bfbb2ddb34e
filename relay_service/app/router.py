"""Router registry and setup."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from relay_service.core.settings import get_app_settings
from relay_service.features.entitlements.router import router as entitlements_router
from relay_service.features.metrics.router import router as metrics_router
from relay_service.features.notifications.router import router as notifications_router

if TYPE_CHECKING:
    from fastapi import FastAPI

    from relay_service.core.settings.app import AppSettings

logger = logging.getLogger(__name__)


def setup_routers(app: FastAPI, app_settings: AppSettings | None = None) -> None:
    """Register all feature routers with the application.

    Args:
        app: FastAPI application instance.
        app_settings: Optional application settings override for the API
            prefix and feature flags.
    """
    app_settings = app_settings or get_app_settings()
    api_prefix = app_settings.api_prefix

    # Include metrics endpoint (no prefix - accessible at /metrics)
    if app_settings.metrics_enabled:
        app.include_router(metrics_router, tags=["observability"])

    app.include_router(entitlements_router, prefix=api_prefix, tags=["entitlements"])

    if app_settings.notifications_inbox_enabled:
        app.include_router(notifications_router, prefix=api_prefix, tags=["notifications"])

    logger.debug(
        "Routers configured",
        extra={
            "api_prefix": api_prefix,
            "metrics_enabled": app_settings.metrics_enabled,
            "notifications_inbox_enabled": app_settings.notifications_inbox_enabled,
        },
    )


__all__ = ["setup_routers"]
