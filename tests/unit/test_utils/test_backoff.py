"""Tests for retry backoff."""

from __future__ import annotations

import random
from datetime import UTC, datetime, timedelta

import pytest

from relay_service.utils.backoff import BackoffPolicy, truncate_error


@pytest.mark.unit
class TestBackoffPolicy:
    def test_raw_delay_grows_exponentially(self, fixed_backoff: BackoffPolicy):
        assert fixed_backoff.raw_delay(0) == timedelta(seconds=1)
        assert fixed_backoff.raw_delay(1) == timedelta(seconds=2)
        assert fixed_backoff.raw_delay(3) == timedelta(seconds=8)

    def test_raw_delay_capped_at_maximum(self, fixed_backoff: BackoffPolicy):
        assert fixed_backoff.raw_delay(20) == timedelta(seconds=60)

    def test_raw_delay_survives_float_overflow(self):
        policy = BackoffPolicy(exponent_base=10.0, maximum=timedelta(minutes=5))

        assert policy.raw_delay(100_000) == timedelta(minutes=5)

    def test_minimum_applies_when_base_is_tiny(self):
        policy = BackoffPolicy(base=timedelta(milliseconds=1), minimum=timedelta(seconds=2))

        assert policy.raw_delay(0) == timedelta(seconds=2)

    def test_jitter_result_clamped_to_bounds(self):
        policy = BackoffPolicy(
            base=timedelta(seconds=4),
            minimum=timedelta(seconds=3),
            maximum=timedelta(seconds=5),
            jitter_min=1.5,
            jitter_max=1.5,
        )

        # 4s * 1.5 = 6s, clamped back to the 5s maximum
        assert policy.delay(0) == timedelta(seconds=5)

    @pytest.mark.parametrize("seed", [0, 1, 7, 42, 1234])
    def test_delay_always_within_bounds(self, seed: int):
        policy = BackoffPolicy(
            base=timedelta(seconds=1),
            minimum=timedelta(seconds=1),
            maximum=timedelta(seconds=30),
            jitter_min=0.1,
            jitter_max=3.0,
            rng=random.Random(seed),
        )

        for attempt in range(25):
            delay = policy.delay(attempt)
            assert timedelta(seconds=1) <= delay <= timedelta(seconds=30)

    def test_next_retry_at_adds_delay(self, fixed_backoff: BackoffPolicy):
        now = datetime(2026, 1, 1, tzinfo=UTC)

        assert fixed_backoff.next_retry_at(2, now=now) == now + timedelta(seconds=4)

    def test_inverted_jitter_rejected(self):
        with pytest.raises(ValueError, match="jitter_min"):
            BackoffPolicy(jitter_min=2.0, jitter_max=1.0)

    def test_inverted_bounds_rejected(self):
        with pytest.raises(ValueError, match="minimum"):
            BackoffPolicy(minimum=timedelta(seconds=10), maximum=timedelta(seconds=1))


@pytest.mark.unit
def test_truncate_error_marks_the_cut():
    assert truncate_error("short", 10) == "short"
    assert truncate_error("abcdefghijkl", 8) == "abcde..."
    assert len(truncate_error("x" * 5000, 1000)) == 1000
