"""Entitlement domain events.

The payload is the contract between the entitlement service and its
consumers. It is built from post-mutation state and stored in the outbox
as JSON; the notification consumer decodes it with the same model.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from relay_service.features.entitlements.models import Entitlement

EVENT_GRANTED = "EntitlementGranted"
EVENT_REVOKED = "EntitlementRevoked"
EVENT_TYPES = (EVENT_GRANTED, EVENT_REVOKED)


class EntitlementEvent(BaseModel):
    """Entitlement change as published to the broker."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    event_id: uuid.UUID
    event_type: str = Field(..., min_length=1)
    occurred_at: datetime
    user_id: str = Field(..., min_length=1)
    sku: str = Field(..., min_length=1)
    source: str | None = None
    source_id: str | None = None
    version: int = Field(..., ge=0)
    trace_id: str | None = None

    @property
    def aggregate_key(self) -> str:
        return aggregate_key(self.user_id, self.sku)


def aggregate_key(user_id: str, sku: str) -> str:
    return f"{user_id}:{sku}"


def new_trace_id() -> str:
    return uuid.uuid4().hex


def build_event(
    entitlement: Entitlement,
    *,
    event_id: uuid.UUID,
    event_type: str,
    occurred_at: datetime,
    trace_id: str | None = None,
) -> EntitlementEvent:
    """Describe ``entitlement`` as it is after the mutation."""
    return EntitlementEvent(
        event_id=event_id,
        event_type=event_type,
        occurred_at=occurred_at,
        user_id=entitlement.user_id,
        sku=entitlement.sku,
        source=entitlement.source,
        source_id=entitlement.source_id,
        version=entitlement.version,
        trace_id=trace_id or new_trace_id(),
    )


def event_payload(event: EntitlementEvent) -> dict[str, Any]:
    """JSON-ready dict: UUIDs as strings, timestamps as ISO-8601 UTC."""
    return event.model_dump(mode="json")


__all__ = [
    "EVENT_GRANTED",
    "EVENT_REVOKED",
    "EVENT_TYPES",
    "EntitlementEvent",
    "aggregate_key",
    "build_event",
    "event_payload",
    "new_trace_id",
]
