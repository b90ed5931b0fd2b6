"""Orders blueprint — /admin/orders

Operator JSON API behind the fulfillment board. Bearer-token auth
(OPS_API_KEY); the acting operator is taken from X-Actor.

Rejected transitions surface as 409 through the app-level
TransitionRejected handler.
"""

import logging

from flask import Blueprint, g, jsonify, request

from fulfillment.extensions import db
from fulfillment.decorators import ops_api_required
from fulfillment.services import order_service, order_state, webhook_service

logger = logging.getLogger(__name__)

orders_bp = Blueprint("orders", __name__, url_prefix="/admin/orders")


def _load_order(order_id):
    order = order_service.get_order(order_id)
    if order is None:
        return None, (jsonify({"error": "Order not found"}), 404)
    return order, None


# ─── Board API ───────────────────────────────────────────────────

@orders_bp.route("/api/board")
@ops_api_required
def api_board():
    return jsonify(order_service.board_columns())


@orders_bp.route("/api/review-queue")
@ops_api_required
def api_review_queue():
    return jsonify([o.to_dict() for o in order_service.review_queue()])


# ─── Order API ───────────────────────────────────────────────────

@orders_bp.route("/api/orders/<order_id>")
@ops_api_required
def api_order_detail(order_id):
    order, error = _load_order(order_id)
    if error:
        return error
    data = order.to_dict()
    data["risk_analysis"] = order_service.analyze(order).to_dict()
    return jsonify(data)


@orders_bp.route("/api/orders/<order_id>/status", methods=["PUT"])
@ops_api_required
def api_update_status(order_id):
    """Drag-and-drop target: move an order to a new coarse status."""
    order, error = _load_order(order_id)
    if error:
        return error

    data = request.get_json(force=True, silent=True) or {}
    target = data.get("status")
    if not target:
        return jsonify({"error": "status is required"}), 400

    order_state.transition(order, target, g.actor)
    db.session.commit()
    return jsonify(order.to_dict())


@orders_bp.route("/api/orders/<order_id>/lifecycle", methods=["PUT"])
@ops_api_required
def api_update_lifecycle(order_id):
    order, error = _load_order(order_id)
    if error:
        return error

    data = request.get_json(force=True, silent=True) or {}
    target = data.get("lifecycle_status")
    if not target:
        return jsonify({"error": "lifecycle_status is required"}), 400

    order_state.advance_lifecycle(
        order,
        target,
        g.actor,
        carrier_status=data.get("status_text"),
        location=data.get("location"),
        description=data.get("description"),
        source="operator",
    )
    db.session.commit()
    return jsonify(order.to_dict())


@orders_bp.route("/api/orders/<order_id>/shipping", methods=["PUT"])
@ops_api_required
def api_update_shipping(order_id):
    order, error = _load_order(order_id)
    if error:
        return error

    data = request.get_json(force=True, silent=True) or {}
    order_service.update_shipping_info(
        order,
        courier_name=data.get("courier_name"),
        tracking_id=data.get("tracking_id"),
        awb_code=data.get("awb_code"),
        tracking_url=data.get("tracking_url"),
        carrier_shipment_id=data.get("carrier_shipment_id"),
    )
    db.session.commit()
    return jsonify(order.to_dict())


@orders_bp.route("/api/orders/<order_id>/shipment", methods=["POST"])
@ops_api_required
def api_create_shipment(order_id):
    """Shipment gate. ?force=1 overrides a manual-review hold."""
    order, error = _load_order(order_id)
    if error:
        return error

    data = request.get_json(force=True, silent=True) or {}
    force = request.args.get("force") in ("1", "true", "yes")

    created, analysis = order_service.request_shipment(
        order,
        g.actor,
        force=force,
        carrier_order_id=data.get("carrier_order_id"),
        carrier_shipment_id=data.get("carrier_shipment_id"),
        awb_code=data.get("awb_code"),
        courier_name=data.get("courier_name"),
    )
    db.session.commit()

    return jsonify({
        "created": created,
        "manual_review_required": order.manual_review_required,
        "risk_analysis": analysis.to_dict(),
        "order": order.to_dict(),
    })


# ─── Webhook ledger API ──────────────────────────────────────────

@orders_bp.route("/api/webhooks/failed")
@ops_api_required
def api_failed_webhooks():
    limit = request.args.get("limit", 100, type=int)
    return jsonify([e.to_dict() for e in webhook_service.failed_events(limit)])


@orders_bp.route("/api/webhooks/<entry_id>/replay", methods=["POST"])
@ops_api_required
def api_replay_webhook(entry_id):
    try:
        entry = webhook_service.replay(entry_id, g.actor)
    except ValueError as e:
        return jsonify({"error": str(e)}), 409
    if entry is None:
        return jsonify({"error": "Webhook event not found"}), 404
    return jsonify(entry.to_dict())
