"""Order models.

- Order: the aggregate under management. Carries the payment and shipping
  sub-records as flat columns and the shipping address as JSON.
- OrderItem: ordered line items (product reference, quantity, unit price).
- TrackingEntry: append-only shipment history, ordered by receipt.

Status and lifecycle_status are only ever changed through
services/order_state.py, which enforces the transition tables below.
"""

import uuid

from sqlalchemy import event, inspect
from sqlalchemy.orm import validates

from fulfillment.extensions import db


class Order(db.Model):
    __tablename__ = "orders"

    # -- Coarse fulfillment statuses --
    STATUSES = ["confirmed", "processing", "shipped", "delivered", "cancelled"]

    # -- Valid status transitions (enforced in order_state) --
    VALID_TRANSITIONS = {
        "confirmed": ["processing", "cancelled"],
        "processing": ["shipped", "cancelled"],
        "shipped": ["delivered"],
        "delivered": [],
        "cancelled": [],
    }

    TERMINAL_STATUSES = ["delivered", "cancelled"]

    # -- Carrier-level lifecycle, finer than status --
    LIFECYCLE_STATUSES = [
        "ready_to_ship",
        "shipment_created",
        "pickup_scheduled",
        "picked_up",
        "in_transit",
        "out_for_delivery",
        "delivered",
        "failed_delivery",
        "rto_initiated",
        "rto_delivered",
        "cancelled",
    ]

    PAYMENT_METHODS = ["cod", "razorpay", "stripe"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    display_order_id = db.Column(
        db.String(32), unique=True, nullable=False
    )  # e.g. "ORD-260220-1023"
    user_id = db.Column(db.String(36), nullable=True)

    # --- Totals (minor currency units) ---
    subtotal = db.Column(db.BigInteger, nullable=False, default=0)
    shipping_cost = db.Column(db.BigInteger, nullable=False, default=0)
    discount = db.Column(db.BigInteger, nullable=False, default=0)
    total = db.Column(db.BigInteger, nullable=False, default=0)

    shipping_address = db.Column(db.JSON, default=dict)

    # --- Payment sub-record ---
    payment_method = db.Column(db.String(20), nullable=False)  # cod | razorpay | stripe
    payment_status = db.Column(
        db.String(20), nullable=False, default="pending"
    )  # pending | paid | failed
    payment_transaction_id = db.Column(db.String(255), nullable=True)

    # --- Shipping sub-record ---
    carrier_order_id = db.Column(db.String(64), nullable=True)
    carrier_shipment_id = db.Column(db.String(64), nullable=True, index=True)
    awb_code = db.Column(db.String(64), nullable=True, index=True)
    courier_name = db.Column(db.String(255), nullable=True)
    tracking_id = db.Column(db.String(255), nullable=True)
    tracking_url = db.Column(db.String(1024), nullable=True)
    current_carrier_status = db.Column(db.String(255), nullable=True)
    last_tracking_update = db.Column(db.DateTime(timezone=True), nullable=True)
    lifecycle_status = db.Column(
        db.String(50), nullable=False, default="ready_to_ship"
    )
    shipment_creation_attempted = db.Column(db.Boolean, nullable=False, default=False)
    shipment_created_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # --- Risk gate outcome (findings themselves are never stored) ---
    manual_review_required = db.Column(db.Boolean, nullable=False, default=False)
    review_reason = db.Column(db.Text, nullable=True)

    status = db.Column(
        db.String(20), nullable=False, default="confirmed"
    )  # confirmed | processing | shipped | delivered | cancelled
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    items = db.relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
    )
    tracking_history = db.relationship(
        "TrackingEntry",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="TrackingEntry.id",
    )
    audit_events = db.relationship(
        "AuditEvent",
        back_populates="order",
        lazy="dynamic",
    )

    @validates("display_order_id")
    def _validate_display_order_id(self, key, value):
        if self.display_order_id is not None and value != self.display_order_id:
            raise ValueError("display_order_id is immutable once assigned")
        return value

    @property
    def is_terminal(self):
        return self.status in self.TERMINAL_STATUSES

    def to_snapshot(self):
        """Plain-dict view of the order, the shape the risk analyzer reads."""
        return {
            "id": self.id,
            "display_order_id": self.display_order_id,
            "total": self.total,
            "shipping_address": dict(self.shipping_address or {}),
            "payment": {
                "method": self.payment_method,
                "status": self.payment_status,
                "transaction_id": self.payment_transaction_id,
            },
            "shipping": {
                "lifecycle_status": self.lifecycle_status,
                "tracking_history": [t.to_dict() for t in self.tracking_history],
            },
            "status": self.status,
        }

    def to_dict(self):
        return {
            "id": self.id,
            "display_order_id": self.display_order_id,
            "user_id": self.user_id,
            "status": self.status,
            "allowed_statuses": list(self.VALID_TRANSITIONS.get(self.status, [])),
            "items": [i.to_dict() for i in self.items],
            "subtotal": self.subtotal,
            "shipping_cost": self.shipping_cost,
            "discount": self.discount,
            "total": self.total,
            "shipping_address": self.shipping_address or {},
            "payment": {
                "method": self.payment_method,
                "status": self.payment_status,
                "transaction_id": self.payment_transaction_id,
            },
            "shipping": {
                "carrier_order_id": self.carrier_order_id,
                "carrier_shipment_id": self.carrier_shipment_id,
                "awb_code": self.awb_code,
                "courier_name": self.courier_name,
                "tracking_id": self.tracking_id,
                "tracking_url": self.tracking_url,
                "current_status": self.current_carrier_status,
                "lifecycle_status": self.lifecycle_status,
                "shipment_creation_attempted": self.shipment_creation_attempted,
                "shipment_created_at": (
                    self.shipment_created_at.isoformat()
                    if self.shipment_created_at else None
                ),
                "tracking_history": [t.to_dict() for t in self.tracking_history],
            },
            "manual_review_required": self.manual_review_required,
            "review_reason": self.review_reason,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Order {self.display_order_id} ({self.status})>"


class OrderItem(db.Model):
    __tablename__ = "order_items"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    order_id = db.Column(
        db.String(36),
        db.ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position = db.Column(db.Integer, nullable=False, default=0)
    product_id = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(500), nullable=True)
    size = db.Column(db.String(50), nullable=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_price = db.Column(db.BigInteger, nullable=False, default=0)  # minor units

    order = db.relationship("Order", back_populates="items")

    @property
    def line_total(self):
        return self.quantity * self.unit_price

    def to_dict(self):
        return {
            "product_id": self.product_id,
            "name": self.name,
            "size": self.size,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "line_total": self.line_total,
        }

    def __repr__(self):
        return f"<OrderItem {self.product_id} x{self.quantity}>"


class TrackingEntry(db.Model):
    __tablename__ = "tracking_entries"

    # Integer key: insertion order is receipt order.
    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    order_id = db.Column(
        db.String(36),
        db.ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status = db.Column(db.String(255), nullable=False)  # carrier status text
    lifecycle_status = db.Column(db.String(50), nullable=True)
    location = db.Column(db.String(255), nullable=True)
    description = db.Column(db.Text, nullable=True)
    carrier_timestamp = db.Column(db.String(64), nullable=True)  # as reported
    source = db.Column(db.String(20), nullable=False, default="carrier")  # carrier | operator
    webhook_log_id = db.Column(
        db.String(36), db.ForeignKey("webhook_logs.id"), nullable=True
    )
    timestamp = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )  # receipt time

    order = db.relationship("Order", back_populates="tracking_history")

    def to_dict(self):
        return {
            "status": self.status,
            "lifecycle_status": self.lifecycle_status,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "location": self.location,
            "description": self.description,
            "carrier_timestamp": self.carrier_timestamp,
            "source": self.source,
        }

    def __repr__(self):
        return f"<TrackingEntry {self.status}>"


@event.listens_for(TrackingEntry, "before_update")
def _tracking_entries_are_append_only(mapper, connection, target):
    state = inspect(target)
    if state.session is not None and state.session.is_modified(
        target, include_collections=False
    ):
        raise ValueError("Tracking history entries are append-only")
