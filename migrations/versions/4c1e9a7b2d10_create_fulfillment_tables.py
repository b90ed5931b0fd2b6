"""create fulfillment tables

Revision ID: 4c1e9a7b2d10
Revises:
Create Date: 2026-02-20 10:14:32.118204

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '4c1e9a7b2d10'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('counters',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('seq', sa.BigInteger(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table('orders',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('display_order_id', sa.String(length=32), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=True),
        sa.Column('subtotal', sa.BigInteger(), nullable=False),
        sa.Column('shipping_cost', sa.BigInteger(), nullable=False),
        sa.Column('discount', sa.BigInteger(), nullable=False),
        sa.Column('total', sa.BigInteger(), nullable=False),
        sa.Column('shipping_address', sa.JSON(), nullable=True),
        sa.Column('payment_method', sa.String(length=20), nullable=False),
        sa.Column('payment_status', sa.String(length=20), nullable=False),
        sa.Column('payment_transaction_id', sa.String(length=255), nullable=True),
        sa.Column('carrier_order_id', sa.String(length=64), nullable=True),
        sa.Column('carrier_shipment_id', sa.String(length=64), nullable=True),
        sa.Column('awb_code', sa.String(length=64), nullable=True),
        sa.Column('courier_name', sa.String(length=255), nullable=True),
        sa.Column('tracking_id', sa.String(length=255), nullable=True),
        sa.Column('tracking_url', sa.String(length=1024), nullable=True),
        sa.Column('current_carrier_status', sa.String(length=255), nullable=True),
        sa.Column('last_tracking_update', sa.DateTime(timezone=True), nullable=True),
        sa.Column('lifecycle_status', sa.String(length=50), nullable=False),
        sa.Column('shipment_creation_attempted', sa.Boolean(), nullable=False),
        sa.Column('shipment_created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('manual_review_required', sa.Boolean(), nullable=False),
        sa.Column('review_reason', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('display_order_id')
    )
    with op.batch_alter_table('orders', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_orders_awb_code'), ['awb_code'], unique=False)
        batch_op.create_index(batch_op.f('ix_orders_carrier_shipment_id'), ['carrier_shipment_id'], unique=False)

    op.create_table('order_items',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('order_id', sa.String(length=36), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=500), nullable=True),
        sa.Column('size', sa.String(length=50), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.BigInteger(), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('order_items', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_order_items_order_id'), ['order_id'], unique=False)

    op.create_table('webhook_logs',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('event_id', sa.String(length=255), nullable=False),
        sa.Column('event_type', sa.String(length=255), nullable=False),
        sa.Column('carrier_order_id', sa.String(length=64), nullable=True),
        sa.Column('shipment_id', sa.String(length=64), nullable=True),
        sa.Column('awb_code', sa.String(length=64), nullable=True),
        sa.Column('order_id', sa.String(length=36), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('result', sa.Text(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('retry_count', sa.Integer(), nullable=False),
        sa.Column('max_retries', sa.Integer(), nullable=False),
        sa.Column('next_retry_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('request_ip', sa.String(length=64), nullable=True),
        sa.Column('request_headers', sa.JSON(), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('webhook_logs', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_webhook_logs_event_id'), ['event_id'], unique=False)
        # At most one non-duplicate ledger row per provider event id
        batch_op.create_index(
            'uq_webhook_logs_event_id_primary', ['event_id'], unique=True,
            sqlite_where=sa.text("status != 'duplicate'"),
            postgresql_where=sa.text("status != 'duplicate'"),
        )

    op.create_table('tracking_entries',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.String(length=36), nullable=False),
        sa.Column('status', sa.String(length=255), nullable=False),
        sa.Column('lifecycle_status', sa.String(length=50), nullable=True),
        sa.Column('location', sa.String(length=255), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('carrier_timestamp', sa.String(length=64), nullable=True),
        sa.Column('source', sa.String(length=20), nullable=False),
        sa.Column('webhook_log_id', sa.String(length=36), nullable=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['webhook_log_id'], ['webhook_logs.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('tracking_entries', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_tracking_entries_order_id'), ['order_id'], unique=False)

    op.create_table('audit_events',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('order_id', sa.String(length=36), nullable=True),
        sa.Column('actor', sa.String(length=255), nullable=True),
        sa.Column('action', sa.String(length=255), nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('audit_events', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_audit_events_order_id'), ['order_id'], unique=False)


def downgrade():
    with op.batch_alter_table('audit_events', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_audit_events_order_id'))
    op.drop_table('audit_events')

    with op.batch_alter_table('tracking_entries', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_tracking_entries_order_id'))
    op.drop_table('tracking_entries')

    with op.batch_alter_table('webhook_logs', schema=None) as batch_op:
        batch_op.drop_index('uq_webhook_logs_event_id_primary')
        batch_op.drop_index(batch_op.f('ix_webhook_logs_event_id'))
    op.drop_table('webhook_logs')

    with op.batch_alter_table('order_items', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_order_items_order_id'))
    op.drop_table('order_items')

    with op.batch_alter_table('orders', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_orders_carrier_shipment_id'))
        batch_op.drop_index(batch_op.f('ix_orders_awb_code'))
    op.drop_table('orders')

    op.drop_table('counters')
