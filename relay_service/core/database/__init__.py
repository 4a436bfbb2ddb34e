"""Core database package: declarative base, mixins, column types and repositories.

Base Classes and Mixins:
    - Base: Declarative base with the constraint naming convention
    - UUIDv7PKMixin: Time-sortable UUID primary key
    - TimestampMixin: created_at, updated_at tracking
    - LeasedRowMixin: lease, attempt and retry bookkeeping for polled queues

Repositories:
    - BaseRepository[T]: Generic CRUD with explicit session passing
    - LeaseRepository[T]: Claim / compare-and-swap transitions for leased rows

Types:
    - UTCDateTime: Timezone-aware UTC timestamps on every backend
"""

from __future__ import annotations

from .base import NAMING_CONVENTION, Base, TimestampMixin, UUIDv7PKMixin, generate_uuid7
from .leasing import LeasedRowMixin, LeaseRepository, LeaseStates
from .repository import BaseRepository
from .types import UTCDateTime, utcnow

__all__ = [
    "NAMING_CONVENTION",
    "Base",
    "BaseRepository",
    "LeaseRepository",
    "LeaseStates",
    "LeasedRowMixin",
    "TimestampMixin",
    "UTCDateTime",
    "UUIDv7PKMixin",
    "generate_uuid7",
    "utcnow",
]
