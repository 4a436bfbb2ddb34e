"""Base database model classes with composable mixins.

Models mix and match capabilities by inheriting from specific mixins:

    class OutboxEvent(Base, UUIDv7PKMixin, TimestampMixin, LeasedRowMixin):
        __tablename__ = "outbox_events"

All timestamps use ``UTCDateTime`` so they come back timezone-aware on both
PostgreSQL and the SQLite test database.
"""

from __future__ import annotations

import os
import time
import uuid
from datetime import datetime

from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func

from relay_service.core.database.types import UTCDateTime, utcnow

# Consistent naming convention for database constraints
# Ensures predictable names for migrations and schema management
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Declarative base sharing one metadata with the naming convention."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)


# ============================================================================
# Primary Key Mixins
# ============================================================================


def generate_uuid7() -> uuid.UUID:
    """Generate a time-ordered UUID v7.

    The first 48 bits hold the Unix timestamp in milliseconds, so rows keyed
    by it sort in creation order (FIFO leasing, stable pagination).
    """
    timestamp_ms = int(time.time() * 1000)
    random_bytes = os.urandom(10)

    uuid_bytes = bytearray(16)
    uuid_bytes[0:6] = timestamp_ms.to_bytes(6, byteorder="big")
    uuid_bytes[6] = (random_bytes[0] & 0x0F) | 0x70  # Version 7
    uuid_bytes[7] = random_bytes[1]
    uuid_bytes[8] = (random_bytes[2] & 0x3F) | 0x80  # Variant
    uuid_bytes[9:16] = random_bytes[3:10]

    return uuid.UUID(bytes=bytes(uuid_bytes))


class UUIDv7PKMixin:
    """UUID v7 primary key (time-sortable).

    Provides:
        id: UUID v7 primary key (time-ordered)
    """

    __allow_unmapped__ = True

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=generate_uuid7,
        comment="UUID v7 primary key (time-sortable)",
    )


# ============================================================================
# Audit and Tracking Mixins
# ============================================================================


class TimestampMixin:
    """Timestamp tracking for create and update operations.

    Uses both Python-side defaults (for test environments) and database
    server defaults (for direct SQL inserts).
    """

    __allow_unmapped__ = True

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
        comment="Timestamp of record creation",
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
        comment="Timestamp of last update",
    )
