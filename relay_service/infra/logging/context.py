"""Context management for structured logging.

Fields set here are injected into every log record emitted from the same
asyncio task, so the polling workers only have to set ``worker_id`` and
``queue`` once and the HTTP layer only has to set ``idempotency_key`` and
``trace_id`` once per request.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator

# Each asyncio task gets its own copy automatically
_log_context: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})


def set_log_context(**kwargs: Any) -> None:
    """Add fields to the logging context of the current task.

    Example:
        ```python
        set_log_context(worker_id="web-1:42:a1b2c3", queue="outbox")
        logger.info("Publisher started")  # includes worker_id and queue
        ```
    """
    current = _log_context.get().copy()
    current.update(kwargs)
    _log_context.set(current)


def get_log_context() -> dict[str, Any]:
    """Return a copy of the current logging context."""
    return _log_context.get().copy()


def clear_log_context() -> None:
    """Drop every field from the current logging context."""
    _log_context.set({})


@contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    """Temporarily add fields to the logging context.

    Example:
        ```python
        with log_context(event_id=str(row.event_id)):
            await publisher.publish(row)
        ```
    """
    token = _log_context.set({**_log_context.get(), **kwargs})
    try:
        yield
    finally:
        _log_context.reset(token)


class ContextInjectingFilter(logging.Filter):
    """Copy contextvar fields onto each LogRecord.

    Attached to the root logger by ``configure_logging`` so every logger
    benefits. Existing record attributes (including ``extra=`` fields) win.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _log_context.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True
