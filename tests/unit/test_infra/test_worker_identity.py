"""Tests for lease owner identity."""

from __future__ import annotations

import os

from relay_service.infra.workers.identity import resolve_worker_id


def test_worker_id_uses_hostname_env(monkeypatch):
    monkeypatch.setenv("HOSTNAME", "relay-7f9c")

    host, pid, token = resolve_worker_id().split(":")

    assert host == "relay-7f9c"
    assert pid == str(os.getpid())
    assert len(token) == 6


def test_worker_ids_are_unique_within_a_process(monkeypatch):
    monkeypatch.setenv("HOSTNAME", "relay-7f9c")

    assert resolve_worker_id() != resolve_worker_id()
