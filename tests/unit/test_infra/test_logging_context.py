"""Tests for contextvar-based log fields."""

from __future__ import annotations

import asyncio
import logging

import pytest

from relay_service.infra.logging.context import (
    ContextInjectingFilter,
    clear_log_context,
    get_log_context,
    log_context,
    set_log_context,
)


@pytest.fixture(autouse=True)
def _clean_context():
    clear_log_context()
    yield
    clear_log_context()


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("test", logging.INFO, __file__, 1, "message", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_set_and_clear():
    set_log_context(worker_id="w-1")
    set_log_context(queue="outbox")

    assert get_log_context() == {"worker_id": "w-1", "queue": "outbox"}

    clear_log_context()
    assert get_log_context() == {}


def test_log_context_restores_previous_fields():
    set_log_context(queue="outbox")

    with log_context(event_id="e-1", queue="notifications"):
        assert get_log_context() == {"queue": "notifications", "event_id": "e-1"}

    assert get_log_context() == {"queue": "outbox"}


def test_filter_injects_context_without_overwriting_extra():
    set_log_context(trace_id="t-ctx", worker_id="w-1")
    record = _record(trace_id="t-extra")

    assert ContextInjectingFilter().filter(record) is True
    assert record.trace_id == "t-extra"
    assert record.worker_id == "w-1"


@pytest.mark.asyncio
async def test_tasks_do_not_share_context():
    async def worker(name: str) -> dict:
        set_log_context(worker_id=name)
        await asyncio.sleep(0)
        return get_log_context()

    first, second = await asyncio.gather(worker("a"), worker("b"))

    assert first == {"worker_id": "a"}
    assert second == {"worker_id": "b"}
    assert get_log_context() == {}
