"""initial schema

Revision ID: a1c3e5f7b9d0
Revises:
Create Date: 2026-10-19 09:00:00.000000+00:00

"""
from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = 'a1c3e5f7b9d0'
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _lease_columns() -> list[sa.Column]:
    return [
        sa.Column('status', sa.String(length=16), nullable=False, comment='Lease state machine status'),
        sa.Column('attempt_count', sa.Integer(), nullable=False, comment='Number of failed attempts'),
        sa.Column(
            'next_retry_at',
            sa.DateTime(timezone=True),
            nullable=True,
            comment='Earliest time the row may be retried',
        ),
        sa.Column(
            'lease_owner',
            sa.String(length=255),
            nullable=True,
            comment='Worker currently holding the lease',
        ),
        sa.Column(
            'leased_at',
            sa.DateTime(timezone=True),
            nullable=True,
            comment='When the current lease was taken',
        ),
        sa.Column(
            'lease_until',
            sa.DateTime(timezone=True),
            nullable=True,
            comment='When the current lease expires',
        ),
        sa.Column('last_error', sa.Text(), nullable=True, comment='Last failure message (truncated)'),
    ]


def _timestamp_columns() -> list[sa.Column]:
    return [
        sa.Column(
            'created_at',
            sa.DateTime(timezone=True),
            server_default=sa.text('now()'),
            nullable=False,
            comment='Timestamp of record creation',
        ),
        sa.Column(
            'updated_at',
            sa.DateTime(timezone=True),
            server_default=sa.text('now()'),
            nullable=False,
            comment='Timestamp of last update',
        ),
    ]


def upgrade() -> None:
    """Upgrade database schema."""
    op.create_table(
        'idempotency_keys',
        sa.Column('key', sa.String(length=255), nullable=False, comment='Client-supplied idempotency key'),
        sa.Column(
            'request_hash',
            sa.String(length=64),
            nullable=False,
            comment='SHA-256 hex of the canonical request',
        ),
        sa.Column(
            'response_code',
            sa.Integer(),
            nullable=True,
            comment='HTTP status returned for the request',
        ),
        sa.Column(
            'response_body',
            sa.Text(),
            nullable=True,
            comment='Exact response body returned for the request',
        ),
        sa.Column(
            'expires_at',
            sa.DateTime(timezone=True),
            nullable=False,
            comment='After this instant the key may be reused',
        ),
        sa.Column(
            'created_at',
            sa.DateTime(timezone=True),
            nullable=False,
            comment='Timestamp of record creation',
        ),
        sa.PrimaryKeyConstraint('key', name=op.f('pk_idempotency_keys')),
    )
    op.create_index('ix_idempotency_keys_expires_at', 'idempotency_keys', ['expires_at'], unique=False)

    op.create_table(
        'entitlements',
        sa.Column('user_id', sa.String(length=128), nullable=False),
        sa.Column('sku', sa.String(length=128), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('granted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            'source',
            sa.String(length=255),
            nullable=False,
            comment='Reason given by the caller for the last transition',
        ),
        sa.Column(
            'source_id',
            sa.String(length=255),
            nullable=False,
            comment='Purchase id behind the last transition',
        ),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('user_id', 'sku', name=op.f('pk_entitlements')),
    )
    op.create_index(
        'ix_entitlements_user_updated', 'entitlements', ['user_id', 'updated_at'], unique=False
    )

    op.create_table(
        'entitlement_audit',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('user_id', sa.String(length=128), nullable=False),
        sa.Column('sku', sa.String(length=128), nullable=False),
        sa.Column('action', sa.String(length=16), nullable=False),
        sa.Column('source', sa.String(length=255), nullable=False),
        sa.Column('source_id', sa.String(length=255), nullable=False),
        sa.Column('idempotency_key', sa.String(length=255), nullable=False),
        sa.Column(
            'detail_json',
            sa.Text(),
            nullable=False,
            comment='The command as received, JSON-serialized',
        ),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_entitlement_audit')),
    )
    op.create_index(
        'ix_entitlement_audit_user_sku',
        'entitlement_audit',
        ['user_id', 'sku', 'occurred_at'],
        unique=False,
    )

    op.create_table(
        'outbox_events',
        sa.Column(
            'event_id',
            sa.Uuid(),
            nullable=False,
            comment='Event id, used as the broker dedup id',
        ),
        sa.Column('event_type', sa.String(length=100), nullable=False, comment='Event type identifier'),
        sa.Column(
            'aggregate_key',
            sa.String(length=255),
            nullable=False,
            comment='Aggregate key (user_id:sku)',
        ),
        sa.Column('payload', sa.Text(), nullable=False, comment='JSON-serialized event data'),
        sa.Column(
            'published_at',
            sa.DateTime(timezone=True),
            nullable=True,
            comment='When the event was acknowledged by the broker',
        ),
        *_timestamp_columns(),
        *_lease_columns(),
        sa.PrimaryKeyConstraint('event_id', name=op.f('pk_outbox_events')),
    )
    op.create_index(
        'ix_outbox_events_claim',
        'outbox_events',
        ['status', 'next_retry_at', 'created_at'],
        unique=False,
    )
    op.create_index('ix_outbox_events_lease', 'outbox_events', ['status', 'lease_until'], unique=False)
    op.create_index('ix_outbox_events_published_at', 'outbox_events', ['published_at'], unique=False)
    op.create_index(
        'ix_outbox_events_aggregate', 'outbox_events', ['aggregate_key', 'created_at'], unique=False
    )

    op.create_table(
        'notifications',
        sa.Column('id', sa.Uuid(), nullable=False, comment='UUID v7 primary key (time-sortable)'),
        sa.Column('source_event_id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.String(length=128), nullable=False),
        sa.Column('type', sa.String(length=100), nullable=False),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('payload', sa.Text(), nullable=False),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamp_columns(),
        *_lease_columns(),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_notifications')),
        sa.UniqueConstraint('source_event_id', name=op.f('uq_notifications_source_event_id')),
    )
    op.create_index(
        'ix_notifications_claim',
        'notifications',
        ['status', 'next_retry_at', 'created_at'],
        unique=False,
    )
    op.create_index('ix_notifications_lease', 'notifications', ['status', 'lease_until'], unique=False)
    op.create_index(
        'ix_notifications_user_created', 'notifications', ['user_id', 'created_at'], unique=False
    )

    op.create_table(
        'notification_dlq',
        sa.Column('id', sa.Uuid(), nullable=False, comment='UUID v7 primary key (time-sortable)'),
        sa.Column('notification_id', sa.Uuid(), nullable=False),
        sa.Column('source_event_id', sa.Uuid(), nullable=False),
        sa.Column('payload', sa.Text(), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_notification_dlq')),
        sa.UniqueConstraint('notification_id', name=op.f('uq_notification_dlq_notification_id')),
    )

    op.create_table(
        'notification_receipts',
        sa.Column('id', sa.Uuid(), nullable=False, comment='UUID v7 primary key (time-sortable)'),
        sa.Column('idempotency_key', sa.String(length=255), nullable=False),
        sa.Column('user_id', sa.String(length=128), nullable=False),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_notification_receipts')),
        sa.UniqueConstraint('idempotency_key', name=op.f('uq_notification_receipts_idempotency_key')),
    )
    op.create_index(
        'ix_notification_receipts_delivered_at',
        'notification_receipts',
        ['delivered_at'],
        unique=False,
    )


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_index('ix_notification_receipts_delivered_at', table_name='notification_receipts')
    op.drop_table('notification_receipts')
    op.drop_table('notification_dlq')
    op.drop_index('ix_notifications_user_created', table_name='notifications')
    op.drop_index('ix_notifications_lease', table_name='notifications')
    op.drop_index('ix_notifications_claim', table_name='notifications')
    op.drop_table('notifications')
    op.drop_index('ix_outbox_events_aggregate', table_name='outbox_events')
    op.drop_index('ix_outbox_events_published_at', table_name='outbox_events')
    op.drop_index('ix_outbox_events_lease', table_name='outbox_events')
    op.drop_index('ix_outbox_events_claim', table_name='outbox_events')
    op.drop_table('outbox_events')
    op.drop_index('ix_entitlement_audit_user_sku', table_name='entitlement_audit')
    op.drop_table('entitlement_audit')
    op.drop_index('ix_entitlements_user_updated', table_name='entitlements')
    op.drop_table('entitlements')
    op.drop_index('ix_idempotency_keys_expires_at', table_name='idempotency_keys')
    op.drop_table('idempotency_keys')
