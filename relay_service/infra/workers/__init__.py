"""Leased polling workers shared by the outbox publisher and delivery worker."""

from relay_service.infra.workers.identity import resolve_worker_id
from relay_service.infra.workers.leased import LeasedBatchProcessor

__all__ = ["LeasedBatchProcessor", "resolve_worker_id"]
