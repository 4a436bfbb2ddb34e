"""Logging infrastructure.

Structured logging with:
- JSONL format for Loki/Elasticsearch ingestion
- Automatic context injection (worker_id, queue, idempotency_key, ...)
- QueueHandler + QueueListener for non-blocking I/O
- OpenTelemetry trace correlation

Basic usage:
    from relay_service.infra.logging import set_log_context
    import logging

    logger = logging.getLogger(__name__)

    set_log_context(worker_id="web-1:42:a1b2c3")
    logger.info("Leased batch", extra={"count": 12})  # includes worker_id
"""

from relay_service.infra.logging.config import (
    complete,
    configure_logging,
    setup_logging,
    shutdown,
)
from relay_service.infra.logging.context import (
    ContextInjectingFilter,
    clear_log_context,
    get_log_context,
    log_context,
    set_log_context,
)
from relay_service.infra.logging.formatters import JSONFormatter

__all__ = [
    "ContextInjectingFilter",
    "JSONFormatter",
    "clear_log_context",
    "complete",
    "configure_logging",
    "get_log_context",
    "log_context",
    "set_log_context",
    "setup_logging",
    "shutdown",
]
