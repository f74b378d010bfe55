"""Create order lifecycle and COD reconciliation tables

Revision ID: 8f3a2c41d7b0
Revises:
Create Date: 2026-03-02 09:14:27.118204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8f3a2c41d7b0'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create orders, order items, status history, shipments and COD reconciliation tables."""
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_number', sa.String(), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='pending'),
        sa.Column('payment_method', sa.String(), nullable=True),
        sa.Column('payment_status', sa.String(), nullable=False, server_default='pending'),
        sa.Column('fulfillment_status', sa.String(), nullable=True),
        sa.Column('subtotal_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('shipping_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('cod_fee_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('total_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('cod_verification_required', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('cod_amount_collected', sa.BigInteger(), nullable=True),
        sa.Column('cod_collected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cod_collected_by', sa.Integer(), nullable=True),
        sa.Column('delivery_person_id', sa.Integer(), nullable=True),
        sa.Column('tracking_number', sa.String(), nullable=True),
        sa.Column('shipping_carrier', sa.String(), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_number'),
    )
    op.create_index('ix_orders_id', 'orders', ['id'])
    op.create_index('ix_orders_user_id', 'orders', ['user_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_payment_method', 'orders', ['payment_method'])
    op.create_index('ix_orders_cod_collected_at', 'orders', ['cod_collected_at'])
    op.create_index('ix_orders_delivery_person_id', 'orders', ['delivery_person_id'])
    op.create_index('ix_orders_tracking_number', 'orders', ['tracking_number'])
    op.create_index('ix_orders_created_at', 'orders', ['created_at'])
    op.create_index('ix_orders_payment_method_created_at', 'orders', ['payment_method', 'created_at'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('vendor_id', sa.Integer(), nullable=False),
        sa.Column('product_name', sa.String(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('unit_price_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('vendor_status', sa.String(), nullable=False, server_default='pending'),
        sa.Column('tracking_number', sa.String(), nullable=True),
        sa.Column('carrier', sa.String(), nullable=True),
        sa.Column('shipped_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_order_items_id', 'order_items', ['id'])
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])
    op.create_index('ix_order_items_vendor_id', 'order_items', ['vendor_id'])

    op.create_table(
        'order_status_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('from_status', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('comment', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_order_status_history_id', 'order_status_history', ['id'])
    op.create_index('ix_order_status_history_order_id', 'order_status_history', ['order_id'])

    op.create_table(
        'shipments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('carrier', sa.String(), nullable=True),
        sa.Column('tracking_number', sa.String(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='in_transit'),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_tracking_update', sa.DateTime(timezone=True), nullable=True),
        sa.Column('tracking_events', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_shipments_id', 'shipments', ['id'])
    op.create_index('ix_shipments_order_id', 'shipments', ['order_id'])
    op.create_index('ix_shipments_tracking_number', 'shipments', ['tracking_number'])

    op.create_table(
        'cod_daily_reports',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('report_date', sa.Date(), nullable=False),
        sa.Column('total_orders', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('expected_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('collected_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('reconciled_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reconciled_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('delivered_uncollected_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('delivered_uncollected_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('delivery_failed_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('delivery_failed_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('in_transit_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('in_transit_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('skipped_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('anomalies', sa.JSON(), nullable=False),
        sa.Column('auto_verify', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('completed_orders', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('auto_verified_reconciliations', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('generated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_cod_daily_reports_id', 'cod_daily_reports', ['id'])
    op.create_index('ix_cod_daily_reports_report_date', 'cod_daily_reports', ['report_date'], unique=True)

    op.create_table(
        'cod_reconciliations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('delivery_person_id', sa.Integer(), nullable=True),
        sa.Column('total_orders_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cod_amount_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('collected_amount_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('discrepancy_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(), nullable=False, server_default='pending'),
        sa.Column('verified_by', sa.Integer(), nullable=True),
        sa.Column('verified_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('date', 'delivery_person_id', name='uix_cod_reconciliation_date_person'),
    )
    op.create_index('ix_cod_reconciliations_id', 'cod_reconciliations', ['id'])
    op.create_index('ix_cod_reconciliations_date', 'cod_reconciliations', ['date'])
    op.create_index('ix_cod_reconciliations_status', 'cod_reconciliations', ['status'])
    op.create_index('ix_cod_reconciliations_date_status', 'cod_reconciliations', ['date', 'status'])


def downgrade() -> None:
    """Drop all order lifecycle and COD reconciliation tables."""
    op.drop_table('cod_reconciliations')
    op.drop_table('cod_daily_reports')
    op.drop_table('shipments')
    op.drop_table('order_status_history')
    op.drop_table('order_items')
    op.drop_table('orders')
