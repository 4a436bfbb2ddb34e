"""Idempotency keys: replay of completed commands and conflict detection."""

from relay_service.features.idempotency.hashing import canonical_request, request_hash
from relay_service.features.idempotency.models import IdempotencyRecord
from relay_service.features.idempotency.service import (
    DecisionKind,
    IdempotencyDecision,
    IdempotencyStore,
    get_idempotency_store,
)

__all__ = [
    "DecisionKind",
    "IdempotencyDecision",
    "IdempotencyRecord",
    "IdempotencyStore",
    "canonical_request",
    "get_idempotency_store",
    "request_hash",
]
