"""notification nats dlq

Revision ID: b2d4f6a8c0e1
Revises: a1c3e5f7b9d0
Create Date: 2026-10-19 10:00:00.000000+00:00

"""
from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = 'b2d4f6a8c0e1'
down_revision: str | None = 'a1c3e5f7b9d0'
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Upgrade database schema."""
    op.create_table(
        'notification_nats_dlq',
        sa.Column('id', sa.Uuid(), nullable=False, comment='UUID v7 primary key (time-sortable)'),
        sa.Column('stream', sa.String(length=64), nullable=False),
        sa.Column('consumer', sa.String(length=64), nullable=False),
        sa.Column('stream_seq', sa.BigInteger(), nullable=False),
        sa.Column('kind', sa.String(length=32), nullable=False),
        sa.Column('deliveries', sa.Integer(), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_notification_nats_dlq')),
        sa.UniqueConstraint('stream', 'stream_seq', name=op.f('uq_notification_nats_dlq_stream')),
    )
    op.create_index(
        'ix_notification_nats_dlq_created_at',
        'notification_nats_dlq',
        ['created_at'],
        unique=False,
    )


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_index('ix_notification_nats_dlq_created_at', table_name='notification_nats_dlq')
    op.drop_table('notification_nats_dlq')
