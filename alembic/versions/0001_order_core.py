"""Order core - orders, tips, cancellation policy/analytics, webhooks

Revision ID: 0001_order_core
Revises:
Create Date: 2025-01-06

Creates every table of the order lifecycle engine and the webhook
delivery log. Portable across PostgreSQL and SQLite.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '0001_order_core'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")
MONEY = sa.Numeric(12, 2)


def _ts(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    """Create order core tables."""

    # ==========================================================================
    # Cancellation policy (versioned, one active row)
    # ==========================================================================
    op.create_table(
        'cancellation_policies',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('free_window_seconds', sa.Integer(), nullable=False),
        sa.Column('penalty_rate', sa.Float(), nullable=False),
        sa.Column('min_penalty', MONEY, nullable=False),
        sa.Column('max_penalty', MONEY, nullable=False),
        sa.Column('description', sa.String(500)),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('updated_by', sa.Uuid()),
        _ts('created_at', nullable=False),
        _ts('updated_at', nullable=False),
        sa.CheckConstraint(
            'free_window_seconds >= 0 AND free_window_seconds <= 300', name='ck_policy_window'
        ),
        sa.CheckConstraint('penalty_rate >= 0 AND penalty_rate <= 1', name='ck_policy_rate'),
        sa.CheckConstraint('min_penalty <= max_penalty', name='ck_policy_bounds'),
    )
    op.create_index(
        'uq_cancellation_policy_active',
        'cancellation_policies',
        ['is_active'],
        unique=True,
        postgresql_where=sa.text('is_active'),
        sqlite_where=sa.text('is_active = 1'),
    )

    # ==========================================================================
    # Orders
    # ==========================================================================
    op.create_table(
        'orders',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('customer_id', sa.Uuid(), nullable=False),
        sa.Column('chef_id', sa.Uuid(), nullable=False),
        sa.Column('delivery_partner_id', sa.Uuid()),
        sa.Column('status', sa.String(30), nullable=False),
        sa.Column('subtotal', MONEY, nullable=False),
        sa.Column('delivery_fee', MONEY, nullable=False),
        sa.Column('tax_amount', MONEY, nullable=False),
        sa.Column('total_amount', MONEY, nullable=False),
        sa.Column('tip_amount', MONEY, nullable=False),
        sa.Column('penalty_amount', MONEY, nullable=False),
        sa.Column('refund_amount', MONEY, nullable=False),
        sa.Column('refund_status', sa.String(20), nullable=False),
        sa.Column('payment_id', sa.String(100)),
        sa.Column('payment_method', sa.String(30)),
        sa.Column('payment_status', sa.String(20), nullable=False),
        sa.Column('delivery_address', sa.Text()),
        sa.Column('special_instructions', sa.Text()),
        sa.Column(
            'cancellation_policy_id',
            sa.Uuid(),
            sa.ForeignKey('cancellation_policies.id'),
            nullable=False,
        ),
        _ts('countdown_expiry', nullable=False),
        sa.Column('can_cancel_free', sa.Boolean(), nullable=False),
        _ts('sent_to_chef_at'),
        _ts('chef_accepted_at'),
        _ts('chef_declined_at'),
        sa.Column('decline_reason', sa.String(50)),
        sa.Column('estimated_prep_time', sa.Integer()),
        _ts('estimated_delivery_time'),
        _ts('delivery_accepted_at'),
        _ts('pickup_time'),
        _ts('delivery_started_at'),
        _ts('delivered_at'),
        sa.Column('delivery_proof', sa.Text()),
        _ts('cancelled_at'),
        sa.Column('cancelled_by', sa.Uuid()),
        sa.Column('cancellation_reason', sa.String(50)),
        sa.Column('cancellation_notes', sa.Text()),
        sa.Column('cancellation_type', sa.String(20)),
        sa.Column('event_seq', sa.Integer(), nullable=False),
        _ts('created_at', nullable=False),
        _ts('updated_at', nullable=False),
    )
    op.create_index('idx_orders_customer', 'orders', ['customer_id', 'created_at'])
    op.create_index('idx_orders_chef', 'orders', ['chef_id', 'created_at'])
    op.create_index('idx_orders_delivery_partner', 'orders', ['delivery_partner_id'])
    op.create_index('idx_orders_countdown', 'orders', ['can_cancel_free', 'countdown_expiry'])
    op.create_index('idx_orders_status', 'orders', ['status'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column(
            'order_id', sa.Uuid(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False
        ),
        sa.Column('dish_id', sa.String(100), nullable=False),
        sa.Column('dish_name', sa.String(255)),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', MONEY, nullable=False),
        sa.Column('special_instructions', sa.Text()),
        _ts('created_at', nullable=False),
        sa.CheckConstraint('quantity >= 1', name='ck_order_items_quantity'),
        sa.CheckConstraint('unit_price >= 0', name='ck_order_items_price'),
    )
    op.create_index('idx_order_items_order', 'order_items', ['order_id'])

    op.create_table(
        'order_status_history',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column(
            'order_id', sa.Uuid(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False
        ),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('from_status', sa.String(30)),
        sa.Column('status', sa.String(30), nullable=False),
        sa.Column('message', sa.Text()),
        sa.Column('location', JSON),
        sa.Column('actor_id', sa.Uuid()),
        sa.Column('actor_role', sa.String(20)),
        _ts('created_at', nullable=False),
    )
    op.create_index(
        'idx_order_status_history_order', 'order_status_history', ['order_id', 'sequence']
    )

    # ==========================================================================
    # Tips
    # ==========================================================================
    op.create_table(
        'tips',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column(
            'order_id', sa.Uuid(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False
        ),
        sa.Column('customer_id', sa.Uuid(), nullable=False),
        sa.Column('recipient_id', sa.Uuid(), nullable=False),
        sa.Column('recipient_type', sa.String(20), nullable=False),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('message', sa.String(200)),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('transfer_id', sa.String(100)),
        _ts('processed_at'),
        _ts('created_at', nullable=False),
        _ts('updated_at', nullable=False),
        sa.UniqueConstraint('order_id', 'recipient_type', name='uq_tips_order_recipient'),
        sa.CheckConstraint('amount >= 10 AND amount <= 500', name='ck_tips_amount'),
    )

    # ==========================================================================
    # Cancellation analytics (one row per day)
    # ==========================================================================
    op.create_table(
        'cancellation_analytics',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('day', sa.Date(), nullable=False, unique=True),
        sa.Column('total_orders', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cancellations', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('free_cancellations', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('penalty_cancellations', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_penalty_collected', MONEY, nullable=False, server_default='0'),
        sa.Column('total_seconds_to_cancel', sa.Float(), nullable=False, server_default='0'),
        sa.Column('avg_seconds_to_cancel', sa.Float(), nullable=False, server_default='0'),
        _ts('created_at', nullable=False),
        _ts('updated_at', nullable=False),
    )

    # ==========================================================================
    # Webhooks
    # ==========================================================================
    op.create_table(
        'webhook_endpoints',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('owner_id', sa.Uuid(), nullable=False),
        sa.Column('url', sa.String(2048), nullable=False),
        sa.Column('events', JSON, nullable=False),
        sa.Column('secret', sa.Text(), nullable=False),
        sa.Column('description', sa.String(500)),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('max_attempts', sa.Integer(), nullable=False),
        sa.Column('base_delay_seconds', sa.Integer(), nullable=False),
        _ts('created_at', nullable=False),
        _ts('updated_at', nullable=False),
        _ts('deleted_at'),
    )
    op.create_index('idx_webhook_endpoints_owner', 'webhook_endpoints', ['owner_id', 'created_at'])

    op.create_table(
        'webhook_deliveries',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column(
            'webhook_id',
            sa.Uuid(),
            sa.ForeignKey('webhook_endpoints.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('event_type', sa.String(50), nullable=False),
        sa.Column('order_id', sa.Uuid()),
        sa.Column('sequence', sa.Integer()),
        sa.Column('payload', JSON, nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('attempt_count', sa.Integer(), nullable=False),
        sa.Column('response_status', sa.Integer()),
        sa.Column('response_body', sa.Text()),
        sa.Column('error_message', sa.Text()),
        _ts('next_retry_at'),
        _ts('delivered_at'),
        _ts('failed_at'),
        sa.Column('claimed_by', sa.String(100)),
        _ts('claimed_at'),
        _ts('created_at', nullable=False),
        _ts('updated_at', nullable=False),
    )
    op.create_index(
        'idx_webhook_deliveries_due', 'webhook_deliveries', ['status', 'next_retry_at']
    )
    op.create_index(
        'idx_webhook_deliveries_endpoint', 'webhook_deliveries', ['webhook_id', 'created_at']
    )
    op.create_index(
        'idx_webhook_deliveries_order', 'webhook_deliveries', ['order_id', 'sequence']
    )


def downgrade() -> None:
    """Drop order core tables."""
    op.drop_table('webhook_deliveries')
    op.drop_table('webhook_endpoints')
    op.drop_table('cancellation_analytics')
    op.drop_table('tips')
    op.drop_table('order_status_history')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('cancellation_policies')
