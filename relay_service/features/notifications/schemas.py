"""Pydantic schemas for the notifications feature."""

from __future__ import annotations

import json
from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from pydantic import BaseModel

if TYPE_CHECKING:
    from relay_service.features.notifications.models import Notification


class NotificationSummary(BaseModel):
    """One notification as shown in the debug inbox."""

    notification_id: UUID
    event_id: UUID
    type: str
    status: str
    attempt_count: int
    created_at: datetime
    sent_at: datetime | None = None
    last_error: str | None = None
    payload: dict[str, Any]

    @classmethod
    def from_model(cls, notification: Notification) -> NotificationSummary:
        return cls(
            notification_id=notification.id,
            event_id=notification.source_event_id,
            type=notification.type,
            status=notification.status,
            attempt_count=notification.attempt_count,
            created_at=notification.created_at,
            sent_at=notification.sent_at,
            last_error=notification.last_error,
            payload=json.loads(notification.payload),
        )


class NotificationInbox(BaseModel):
    user_id: str
    notifications: list[NotificationSummary]


__all__ = ["NotificationInbox", "NotificationSummary"]
