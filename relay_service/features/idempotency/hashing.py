"""Canonical request hashing for idempotency checks."""

from __future__ import annotations

import hashlib
import json
from typing import Any

# Field order is part of the hash; never reorder
CANONICAL_FIELDS = ("user_id", "sku", "reason", "purchase_id")


def canonical_request(action: str, fields: dict[str, Any]) -> str:
    """Compact JSON with a fixed key order: action, user_id, sku, reason, purchase_id."""
    document = {"action": action}
    document.update({name: fields.get(name) for name in CANONICAL_FIELDS})
    return json.dumps(document, separators=(",", ":"), ensure_ascii=False)


def request_hash(action: str, fields: dict[str, Any]) -> str:
    """SHA-256 hex digest of the canonical request."""
    return hashlib.sha256(canonical_request(action, fields).encode("utf-8")).hexdigest()
