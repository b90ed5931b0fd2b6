"""Audit event model.

Logs every accepted order status / lifecycle change, review hold and
webhook replay, with the actor that caused it.
"""

import uuid

from fulfillment.extensions import db


class AuditEvent(db.Model):
    __tablename__ = "audit_events"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    order_id = db.Column(
        db.String(36), db.ForeignKey("orders.id"), nullable=True, index=True
    )
    actor = db.Column(db.String(255), nullable=True)  # operator id, "carrier", "system"
    action = db.Column(db.String(255), nullable=False)  # e.g. "order.status_changed"
    metadata_ = db.Column(
        "metadata", db.JSON, default=dict
    )  # extra context, named metadata_ to avoid the declarative attribute clash
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    order = db.relationship("Order", back_populates="audit_events")

    def __repr__(self):
        return f"<AuditEvent {self.action}>"
