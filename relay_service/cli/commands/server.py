"""Server management commands."""

import sys

import click

from relay_service.cli.utils import error, info
from relay_service.core.settings import get_app_settings


@click.group(name="server")
def server() -> None:
    """Server management commands."""


@server.command()
@click.option("--host", default=None, help="Host to bind (default: from settings)")
@click.option("--port", default=None, type=int, help="Port to bind (default: from settings)")
@click.option("--reload/--no-reload", default=False, help="Enable auto-reload on code changes")
@click.option(
    "--log-level",
    default="info",
    type=click.Choice(["critical", "error", "warning", "info", "debug", "trace"]),
    help="Uvicorn log level",
)
def run(host: str | None, port: int | None, reload: bool, log_level: str) -> None:
    """Run the API with its background workers in one process."""
    import uvicorn

    settings = get_app_settings()
    host = host or settings.host
    port = port or settings.port

    info(f"Server will run at: http://{host}:{port}")
    info(f"Environment: {settings.environment}")

    try:
        uvicorn.run(
            "relay_service.app.main:app",
            host=host,
            port=port,
            reload=reload,
            log_level=log_level,
            # Application logging is configured by the lifespan
            log_config=None,
        )
    except KeyboardInterrupt:
        info("Shutting down server...")
    except Exception as e:
        error(f"Failed to start server: {e}")
        sys.exit(1)
