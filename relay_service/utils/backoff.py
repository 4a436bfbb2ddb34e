"""Exponential backoff with jitter for leased-row retries."""

from __future__ import annotations

import math
import random
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from relay_service.core.database.types import utcnow

if TYPE_CHECKING:
    from relay_service.core.settings.workers import WorkerPolicySettings


class BackoffPolicy:
    """Delay before the next attempt of a failed row.

    ``base * exponent_base ** attempt_count`` is clamped to ``[minimum,
    maximum]``, multiplied by a uniform jitter factor drawn from
    ``[jitter_min, jitter_max]`` and clamped again, so the result is always
    inside the configured bounds whatever the draw.

    Example:
        >>> policy = BackoffPolicy(base=timedelta(seconds=1), maximum=timedelta(seconds=60))
        >>> timedelta(seconds=2) <= policy.delay(2) <= timedelta(seconds=6)
        True
    """

    def __init__(
        self,
        base: timedelta = timedelta(seconds=1),
        exponent_base: float = 2.0,
        minimum: timedelta = timedelta(seconds=1),
        maximum: timedelta = timedelta(minutes=5),
        jitter_min: float = 0.5,
        jitter_max: float = 1.5,
        rng: random.Random | None = None,
    ) -> None:
        if jitter_min > jitter_max:
            msg = "jitter_min must be <= jitter_max"
            raise ValueError(msg)
        if minimum > maximum:
            msg = "minimum must be <= maximum"
            raise ValueError(msg)
        self.base = base
        self.exponent_base = exponent_base
        self.minimum = minimum
        self.maximum = maximum
        self.jitter_min = jitter_min
        self.jitter_max = jitter_max
        self._rng = rng or random.Random()

    @classmethod
    def from_settings(
        cls,
        settings: WorkerPolicySettings,
        rng: random.Random | None = None,
    ) -> BackoffPolicy:
        return cls(
            base=settings.backoff_base,
            exponent_base=settings.backoff_exponent_base,
            minimum=settings.backoff_min,
            maximum=settings.backoff_max,
            jitter_min=settings.backoff_jitter_min,
            jitter_max=settings.backoff_jitter_max,
            rng=rng,
        )

    def _clamp(self, seconds: float) -> float:
        return min(max(seconds, self.minimum.total_seconds()), self.maximum.total_seconds())

    def raw_delay(self, attempt_count: int) -> timedelta:
        """Exponential delay clamped to the bounds, before jitter."""
        try:
            factor = self.exponent_base**attempt_count
        except OverflowError:
            factor = math.inf
        base_seconds = self.base.total_seconds()
        return timedelta(seconds=self._clamp(base_seconds * factor if base_seconds > 0 else 0.0))

    def delay(self, attempt_count: int) -> timedelta:
        """Jittered delay for a row that has failed ``attempt_count`` times before."""
        jitter = self._rng.uniform(self.jitter_min, self.jitter_max)
        return timedelta(seconds=self._clamp(self.raw_delay(attempt_count).total_seconds() * jitter))

    def next_retry_at(self, attempt_count: int, now: datetime | None = None) -> datetime:
        return (now or utcnow()) + self.delay(attempt_count)


def truncate_error(message: str, max_length: int) -> str:
    """Bound a stored error message, marking the cut."""
    if len(message) <= max_length:
        return message
    marker = "..."
    return message[: max(max_length - len(marker), 0)] + marker
