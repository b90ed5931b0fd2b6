"""Webhook ledger model.

Every inbound carrier event is recorded here by its provider event id
before anything else happens. At most one row per event id is ever
non-"duplicate" (enforced by a partial unique index); later deliveries of
the same id are recorded as "duplicate" rows for audit.

Status lifecycle:
    pending -> processed
    pending -> pending (retry scheduled, retry_count + 1)
    pending -> failed (malformed, or retries exhausted; manual replay only)
    pending -> duplicate (event is behind the order's lifecycle position)

A processed row is immutable.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import event, inspect, text

from fulfillment.extensions import db


class WebhookLog(db.Model):
    __tablename__ = "webhook_logs"

    STATUSES = ["pending", "processed", "failed", "duplicate"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    event_id = db.Column(db.String(255), nullable=False, index=True)
    event_type = db.Column(db.String(255), nullable=False)

    # --- Correlation (copied out of the payload for lookup) ---
    carrier_order_id = db.Column(db.String(64), nullable=True)
    shipment_id = db.Column(db.String(64), nullable=True)
    awb_code = db.Column(db.String(64), nullable=True)
    order_id = db.Column(
        db.String(36), db.ForeignKey("orders.id"), nullable=True
    )  # resolved internal order id

    payload = db.Column(db.JSON, default=dict)
    status = db.Column(
        db.String(20), nullable=False, default="pending"
    )  # pending | processed | failed | duplicate
    result = db.Column(db.Text, nullable=True)
    error = db.Column(db.Text, nullable=True)

    # --- Retry bookkeeping ---
    retry_count = db.Column(db.Integer, nullable=False, default=0)
    max_retries = db.Column(db.Integer, nullable=False, default=5)
    next_retry_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # --- Audit ---
    request_ip = db.Column(db.String(64), nullable=True)
    request_headers = db.Column(db.JSON, default=dict)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    # Receipt time; set client-side for sub-second ordering of the sweep.
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __table_args__ = (
        db.Index(
            "uq_webhook_logs_event_id_primary",
            "event_id",
            unique=True,
            sqlite_where=text("status != 'duplicate'"),
            postgresql_where=text("status != 'duplicate'"),
        ),
    )

    @property
    def retries_exhausted(self):
        return self.retry_count >= self.max_retries

    def to_dict(self):
        return {
            "id": self.id,
            "event_id": self.event_id,
            "event_type": self.event_type,
            "awb_code": self.awb_code,
            "shipment_id": self.shipment_id,
            "carrier_order_id": self.carrier_order_id,
            "order_id": self.order_id,
            "status": self.status,
            "result": self.result,
            "error": self.error,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "next_retry_at": (
                self.next_retry_at.isoformat() if self.next_retry_at else None
            ),
            "processed_at": (
                self.processed_at.isoformat() if self.processed_at else None
            ),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<WebhookLog {self.event_id} ({self.status})>"


@event.listens_for(WebhookLog, "before_update")
def _processed_entries_are_immutable(mapper, connection, target):
    state = inspect(target)
    history = state.attrs.status.history
    previous = (history.deleted or history.unchanged or [None])[0]
    if previous == "processed" and state.session.is_modified(
        target, include_collections=False
    ):
        raise ValueError(f"Webhook log {target.event_id} is processed and immutable")
