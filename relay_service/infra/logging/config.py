"""Logging configuration setup.

Uses:
- dictConfig for the root logger and its filters
- QueueHandler + QueueListener so the event loop never blocks on log I/O
- ContextInjectingFilter for automatic context propagation
- JSONL output for machine parsing (Loki-ready)
"""

from __future__ import annotations

import atexit
import logging
import logging.config
import time
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from pathlib import Path
from queue import Queue
from typing import TYPE_CHECKING, Any

from relay_service.infra.logging.formatters import JSONFormatter

if TYPE_CHECKING:
    from relay_service.core.settings.logs import LoggingSettings

_log_queue: Queue[logging.LogRecord] | None = None
_listener: QueueListener | None = None
_LOGGING_INITIALIZED = False

_TEXT_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

logger = logging.getLogger(__name__)


def complete(max_wait: float = 5.0) -> None:
    """Block until queued log records have been handed to the handlers.

    Called by ``shutdown()``; useful before exiting a CLI command so the last
    lines are not lost.
    """
    if _log_queue is None or _listener is None:
        return

    start = time.monotonic()
    while not _log_queue.empty() and (time.monotonic() - start) < max_wait:
        time.sleep(0.01)


def shutdown() -> None:
    """Flush pending records and stop the QueueListener."""
    global _log_queue, _listener

    if _listener is not None:
        complete()
        _listener.stop()
        _listener = None

    _log_queue = None


def setup_logging(
    log_settings: LoggingSettings | None = None,
    *,
    force: bool = False,
    **configure_kwargs: Any,
) -> None:
    """Configure logging once across entrypoints (app lifespan, CLI).

    Args:
        log_settings: Settings instance; loaded via get_logging_settings() if omitted.
        force: Reconfigure even if logging was already initialized.
        **configure_kwargs: Explicit overrides for configure_logging().
    """
    global _LOGGING_INITIALIZED

    if _LOGGING_INITIALIZED and not force:
        return

    if log_settings is None:
        from relay_service.core.settings import get_logging_settings

        log_settings = get_logging_settings()

    configure_logging(**{**log_settings.to_logging_kwargs(), **configure_kwargs})
    _LOGGING_INITIALIZED = True


def configure_logging(
    service_name: str = "relay-service",
    log_level: str = "INFO",
    console_level: str | None = None,
    file_path: str | Path | None = None,
    json_logs: bool = True,
    include_context: bool = True,
    capture_warnings: bool = True,
    file_max_bytes: int = 10 * 1024 * 1024,
    file_backup_count: int = 5,
) -> None:
    """Configure the root logger with a QueueHandler feeding real handlers.

    Args:
        service_name: Static ``service`` field on every JSON record.
        log_level: Root logger level.
        console_level: Console handler level. If None, uses log_level.
        file_path: Rotating log file. None disables file logging.
        json_logs: Emit JSON Lines instead of plain text.
        include_context: Attach ContextInjectingFilter to the root logger.
        capture_warnings: Forward ``warnings`` output to logging.
        file_max_bytes: Maximum log file size before rotation.
        file_backup_count: Number of rotated log files to keep.
    """
    global _log_queue, _listener

    if capture_warnings:
        logging.captureWarnings(True)

    filters: dict[str, Any] = {}
    if include_context:
        filters["context"] = {
            "()": "relay_service.infra.logging.context.ContextInjectingFilter",
        }

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": filters,
            "root": {
                "level": log_level.upper(),
                "handlers": [],
                "filters": list(filters),
            },
        }
    )

    if _listener is not None:
        _listener.stop()
        _listener = None

    handlers: list[logging.Handler] = []

    console_handler = logging.StreamHandler()
    console_handler.setLevel((console_level or log_level).upper())
    console_handler.setFormatter(_make_formatter(json_logs, service_name))
    handlers.append(console_handler)

    if file_path:
        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            path,
            maxBytes=file_max_bytes,
            backupCount=file_backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(log_level.upper())
        file_handler.setFormatter(_make_formatter(json_logs, service_name))
        handlers.append(file_handler)

    _log_queue = Queue()
    _listener = QueueListener(_log_queue, *handlers, respect_handler_level=True)
    _listener.start()
    atexit.register(shutdown)

    logging.getLogger().addHandler(QueueHandler(_log_queue))

    # Chatty third-party loggers
    for name in ("apscheduler.executors.default", "aiosqlite", "nats"):
        logging.getLogger(name).setLevel(logging.WARNING)


def _make_formatter(json_logs: bool, service_name: str) -> logging.Formatter:
    if json_logs:
        return JSONFormatter(static={"service": service_name})
    return logging.Formatter(fmt=_TEXT_FORMAT, datefmt=_DATE_FORMAT)
