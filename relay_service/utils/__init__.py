"""Utility modules for common operations.

- Exponential backoff with jitter for leased-row retries
"""

from relay_service.utils.backoff import BackoffPolicy, truncate_error

__all__ = [
    "BackoffPolicy",
    "truncate_error",
]
