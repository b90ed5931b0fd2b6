"""Order service — creation, shipment gate, operator helpers.

Responsible for:
- Creating orders at checkout completion (display id allocated first)
- The shipment-creation gate: risk analysis before carrier hand-off,
  parking risky orders in the manual-review queue
- Operator edits of carrier identifiers
- Board / review-queue read models for the operator API

Functions flush but do NOT commit — the caller commits.
"""

import logging
from datetime import datetime, timezone

import bleach
from flask import current_app

from fulfillment.exceptions import TransitionRejected
from fulfillment.extensions import db
from fulfillment.models.audit import AuditEvent
from fulfillment.models.order import Order, OrderItem
from fulfillment.services import order_state
from fulfillment.services.order_id_service import generate_display_order_id
from fulfillment.services.risk_service import HIGH, analyze_order_risks

logger = logging.getLogger(__name__)

ADDRESS_FIELDS = [
    "full_name",
    "phone",
    "address_line1",
    "address_line2",
    "city",
    "state",
    "postal_code",
    "country",
]


def _sanitize(text):
    """Strip all HTML tags from user input."""
    if text is None:
        return text
    return bleach.clean(str(text), tags=[], strip=True).strip()


def _clean_address(address):
    cleaned = {name: _sanitize(address.get(name)) for name in ADDRESS_FIELDS}
    if "verified_delivery" in address:
        cleaned["verified_delivery"] = address["verified_delivery"]
    return cleaned


def get_order(order_id):
    """Look up an order by internal id or display id. Returns None if absent."""
    order = db.session.get(Order, order_id)
    if order is None:
        order = Order.query.filter_by(display_order_id=order_id).first()
    return order


# ─── Creation ─────────────────────────────────────────────────────

def create_order(items, shipping_address, payment_method, payment_status,
                 user_id=None, payment_transaction_id=None,
                 shipping_cost=0, discount=0, now=None):
    """Create a confirmed order at checkout completion.

    Args:
        items: list of dicts with product_id, quantity, unit_price (minor
            units) and optional name / size.
        shipping_address: dict with the ADDRESS_FIELDS keys (already
            validated upstream).
        payment_method: one of Order.PAYMENT_METHODS.
        payment_status: must be "paid" unless payment_method is "cod".

    Returns:
        The created Order.

    Raises:
        ValueError: on empty items, unknown method or unconfirmed payment.
        Any store error from id generation propagates: no id, no order.
    """
    if not items:
        raise ValueError("An order needs at least one line item.")
    if payment_method not in Order.PAYMENT_METHODS:
        raise ValueError(
            f"Invalid payment method '{payment_method}'. "
            f"Must be one of: {', '.join(Order.PAYMENT_METHODS)}"
        )
    if payment_method != "cod" and payment_status != "paid":
        raise ValueError("Payment must be confirmed before an order is created.")

    # Display id first, before any other write.
    display_order_id = generate_display_order_id(now)

    line_items = []
    for position, item in enumerate(items):
        quantity = int(item.get("quantity", 1))
        unit_price = int(item.get("unit_price", 0))
        if quantity < 1 or unit_price < 0:
            raise ValueError(f"Invalid line item at position {position}.")
        line_items.append(OrderItem(
            position=position,
            product_id=str(item["product_id"]),
            name=_sanitize(item.get("name")),
            size=_sanitize(item.get("size")),
            quantity=quantity,
            unit_price=unit_price,
        ))

    subtotal = sum(li.line_total for li in line_items)
    total = max(subtotal + int(shipping_cost) - int(discount), 0)

    order = Order(
        display_order_id=display_order_id,
        user_id=user_id,
        items=line_items,
        subtotal=subtotal,
        shipping_cost=int(shipping_cost),
        discount=int(discount),
        total=total,
        shipping_address=_clean_address(shipping_address or {}),
        payment_method=payment_method,
        payment_status=payment_status,
        payment_transaction_id=payment_transaction_id,
        status="confirmed",
        lifecycle_status="ready_to_ship",
    )
    db.session.add(order)
    db.session.flush()

    db.session.add(AuditEvent(
        order_id=order.id,
        actor=user_id or "checkout",
        action="order.created",
        metadata_={"display_order_id": display_order_id, "total": total},
    ))
    db.session.flush()

    logger.info(f"Created order {display_order_id} ({payment_method}, total={total})")
    return order


# ─── Risk gate ────────────────────────────────────────────────────

def analyze(order):
    """Risk analysis for an Order, using the configured COD threshold."""
    return analyze_order_risks(
        order.to_snapshot(),
        high_cod_threshold=current_app.config["HIGH_COD_THRESHOLD_MINOR"],
    )


def request_shipment(order, actor, force=False, carrier_order_id=None,
                     carrier_shipment_id=None, awb_code=None, courier_name=None):
    """Gate an order before carrier hand-off.

    Records that shipment creation was attempted. When the analysis has
    high-severity findings (and the gate is enabled and not forced), the
    order is parked for manual review instead. Otherwise the lifecycle
    moves to shipment_created, which also promotes confirmed -> processing.

    Returns (created: bool, analysis: RiskAnalysis).
    Raises TransitionRejected if a shipment can't be created from the
    order's current state.
    """
    if order.lifecycle_status != "ready_to_ship":
        raise TransitionRejected(
            order.lifecycle_status, "shipment_created", field="lifecycle_status",
            reason="shipment already requested",
        )
    order_state.plan_lifecycle_change(order, "shipment_created")

    analysis = analyze(order)
    order.shipment_creation_attempted = True

    block = current_app.config["RISK_GATE_BLOCK_ON_HIGH"]
    if block and analysis.high_severity_count > 0 and not force:
        reasons = [r.message for r in analysis.risks if r.severity == HIGH]
        order.manual_review_required = True
        order.review_reason = "; ".join(reasons)
        db.session.add(AuditEvent(
            order_id=order.id,
            actor=actor,
            action="order.review_hold",
            metadata_={"risks": [r.to_dict() for r in analysis.risks]},
        ))
        db.session.flush()
        logger.warning(
            f"Order {order.display_order_id} held for manual review: {order.review_reason}"
        )
        return False, analysis

    if carrier_order_id:
        order.carrier_order_id = _sanitize(carrier_order_id)
    if carrier_shipment_id:
        order.carrier_shipment_id = _sanitize(carrier_shipment_id)
    if awb_code:
        order.awb_code = _sanitize(awb_code)
    if courier_name:
        order.courier_name = _sanitize(courier_name)

    order_state.advance_lifecycle(
        order, "shipment_created", actor,
        description="Shipment created" + (" (risk override)" if force else ""),
        source="operator",
    )
    order.shipment_created_at = datetime.now(timezone.utc)
    order.manual_review_required = False
    order.review_reason = None
    db.session.flush()

    return True, analysis


# ─── Operator edits ───────────────────────────────────────────────

def update_shipping_info(order, courier_name=None, tracking_id=None, awb_code=None,
                         tracking_url=None, carrier_shipment_id=None):
    """Set carrier identifiers. Only provided (non-None) values are changed."""
    changes = {
        "courier_name": courier_name,
        "tracking_id": tracking_id,
        "awb_code": awb_code,
        "tracking_url": tracking_url,
        "carrier_shipment_id": carrier_shipment_id,
    }
    for key, value in changes.items():
        if value is not None:
            setattr(order, key, _sanitize(value))
    db.session.flush()
    return order


# ─── Read models ──────────────────────────────────────────────────

def board_columns():
    """Orders grouped by coarse status, in the drag-and-drop board's order."""
    orders = Order.query.order_by(Order.created_at.desc(), Order.display_order_id.desc()).all()
    grouped = {status: [] for status in Order.STATUSES}
    for order in orders:
        grouped.setdefault(order.status, []).append(order)

    return [
        {
            "status": status,
            "allowed_targets": list(Order.VALID_TRANSITIONS[status]),
            "orders": [_card_dict(o) for o in grouped[status]],
        }
        for status in Order.STATUSES
    ]


def review_queue():
    return (
        Order.query
        .filter_by(manual_review_required=True)
        .order_by(Order.created_at.asc())
        .all()
    )


def _card_dict(order):
    address = order.shipping_address or {}
    return {
        "id": order.id,
        "display_order_id": order.display_order_id,
        "status": order.status,
        "lifecycle_status": order.lifecycle_status,
        "total": order.total,
        "payment_method": order.payment_method,
        "customer": address.get("full_name"),
        "city": address.get("city"),
        "manual_review_required": order.manual_review_required,
    }
