"""Add query indexes for the board, customer history and retry sweep.

Keep in step with DECLARED_INDEXES in fulfillment/services/index_service.py;
`flask reconcile-indexes` reports drift between the two.

Revision ID: add_query_indexes
Revises: 4c1e9a7b2d10
Create Date: 2026-02-21

"""

from alembic import op
import sqlalchemy as sa


revision = "add_query_indexes"
down_revision = "4c1e9a7b2d10"
branch_labels = None
depends_on = None


def upgrade():
    # Orders - customer history and board columns
    op.create_index("ix_orders_user_id_created_at", "orders", ["user_id", "created_at"])
    op.create_index("ix_orders_status_created_at", "orders", ["status", "created_at"])
    op.create_index("ix_orders_user_id_status", "orders", ["user_id", "status"])
    op.create_index("ix_orders_lifecycle_status", "orders", ["lifecycle_status"])
    op.create_index("ix_orders_payment_status", "orders", ["payment_status"])
    op.create_index("ix_orders_carrier_order_id", "orders", ["carrier_order_id"])
    op.create_index(
        "ix_orders_manual_review_required_created_at",
        "orders",
        ["manual_review_required", "created_at"],
    )

    # Tracking history - read per order in receipt order
    op.create_index(
        "ix_tracking_entries_order_id_id", "tracking_entries", ["order_id", "id"]
    )

    # Webhook ledger - retry sweep, failed view, correlation
    op.create_index("ix_webhook_logs_status", "webhook_logs", ["status"])
    op.create_index(
        "ix_webhook_logs_status_next_retry_at",
        "webhook_logs",
        ["status", "next_retry_at"],
    )
    op.create_index("ix_webhook_logs_awb_code", "webhook_logs", ["awb_code"])
    op.create_index("ix_webhook_logs_order_id", "webhook_logs", ["order_id"])

    # Audit
    op.create_index(
        "ix_audit_events_order_id_created_at",
        "audit_events",
        ["order_id", "created_at"],
    )
    op.create_index("ix_audit_events_action", "audit_events", ["action"])

    # Counters - purge job scans by age
    op.create_index("ix_counters_created_at", "counters", ["created_at"])


def downgrade():
    op.drop_index("ix_counters_created_at", "counters")
    op.drop_index("ix_audit_events_action", "audit_events")
    op.drop_index("ix_audit_events_order_id_created_at", "audit_events")
    op.drop_index("ix_webhook_logs_order_id", "webhook_logs")
    op.drop_index("ix_webhook_logs_awb_code", "webhook_logs")
    op.drop_index("ix_webhook_logs_status_next_retry_at", "webhook_logs")
    op.drop_index("ix_webhook_logs_status", "webhook_logs")
    op.drop_index("ix_tracking_entries_order_id_id", "tracking_entries")
    op.drop_index("ix_orders_manual_review_required_created_at", "orders")
    op.drop_index("ix_orders_carrier_order_id", "orders")
    op.drop_index("ix_orders_payment_status", "orders")
    op.drop_index("ix_orders_lifecycle_status", "orders")
    op.drop_index("ix_orders_user_id_status", "orders")
    op.drop_index("ix_orders_status_created_at", "orders")
    op.drop_index("ix_orders_user_id_created_at", "orders")
