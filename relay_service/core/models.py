"""Model registry.

Importing this module registers every table on ``Base.metadata``; Alembic
and ``create_schema`` rely on it.
"""

from relay_service.core.database.base import Base
from relay_service.features.entitlements.models import Entitlement, EntitlementAudit
from relay_service.features.idempotency.models import IdempotencyRecord
from relay_service.features.notifications.models import (
    Notification,
    NotificationDlq,
    NotificationNatsDlq,
    NotificationReceipt,
)
from relay_service.infra.events.outbox.models import OutboxEvent

__all__ = [
    "Base",
    "Entitlement",
    "EntitlementAudit",
    "IdempotencyRecord",
    "Notification",
    "NotificationDlq",
    "NotificationNatsDlq",
    "NotificationReceipt",
    "OutboxEvent",
]
