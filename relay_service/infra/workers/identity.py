"""Worker identity recorded as ``lease_owner`` on leased rows."""

from __future__ import annotations

import os
import secrets
import socket


def resolve_worker_id() -> str:
    """``<host>:<pid>:<token>``, unique per worker instance.

    The host part comes from ``HOSTNAME`` (set per pod in Kubernetes), then
    the socket host name. The pid and random token keep two workers in one
    process or host from sharing an identity.
    """
    host = os.environ.get("HOSTNAME")
    if not host:
        try:
            host = socket.gethostname()
        except OSError:
            host = ""
    return f"{host or 'unknown-host'}:{os.getpid()}:{secrets.token_hex(3)}"
