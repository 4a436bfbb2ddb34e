"""FastAPI application factory."""

from __future__ import annotations

from fastapi import FastAPI

from relay_service.app.exception_handlers import configure_exception_handlers
from relay_service.app.lifespan import lifespan
from relay_service.app.router import setup_routers
from relay_service.core.settings import get_settings


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Settings are loaded once and cached via LRU cache.

    Returns:
        Configured FastAPI application instance.
    """
    settings = get_settings()
    app_settings = settings.app

    app = FastAPI(
        title=app_settings.title,
        version=app_settings.version,
        docs_url=app_settings.docs_url,
        redoc_url=None,
        root_path=app_settings.root_path,
        debug=app_settings.debug,
        lifespan=lifespan,
    )

    # Configure exception handlers
    configure_exception_handlers(app)

    # Setup routers
    setup_routers(app, app_settings)

    return app


# Application instance for uvicorn
app = create_app()
