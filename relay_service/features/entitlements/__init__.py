"""Entitlements: idempotent grant and revoke commands with outbox events."""

from relay_service.features.entitlements.models import Entitlement, EntitlementAudit, EntitlementStatus
from relay_service.features.entitlements.service import (
    CommandResult,
    EntitlementAction,
    EntitlementService,
    get_entitlement_service,
)

__all__ = [
    "CommandResult",
    "Entitlement",
    "EntitlementAction",
    "EntitlementAudit",
    "EntitlementService",
    "EntitlementStatus",
    "get_entitlement_service",
]
