"""Webhooks blueprint — /carrier/webhooks

Receives carrier shipment-status events. Token-authenticated (X-Api-Key),
rate-limited.
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from fulfillment.decorators import carrier_token_required
from fulfillment.exceptions import MalformedPayload
from fulfillment.extensions import limiter
from fulfillment.services.webhook_service import derive_event_id, ingest

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/carrier")

# Request headers kept on the ledger entry for audit.
AUDIT_HEADERS = ["User-Agent", "Content-Type", "X-Event-Id", "X-Forwarded-For"]


@webhooks_bp.route("/webhooks", methods=["POST"])
@limiter.limit(lambda: current_app.config["WEBHOOK_RATE_LIMIT"])
@carrier_token_required
def carrier_webhook():
    """Receive one carrier event.

    1. Parse the JSON body
    2. Derive the provider event id (dedup key)
    3. Record + apply via webhook_service.ingest (idempotent)
    4. Return 200 once recorded, whatever the outcome; the retry sweep
       handles failures so the carrier does not need to
    """
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        logger.warning("Carrier webhook with invalid JSON body")
        return jsonify({"error": "Invalid JSON"}), 400

    event_id = derive_event_id(payload, request.headers.get("X-Event-Id"))
    if not event_id:
        logger.warning("Carrier webhook without an event id or awb/status/timestamp")
        return jsonify({"error": "Missing event id"}), 400

    source_meta = {
        "ip": request.headers.get("X-Forwarded-For", request.remote_addr),
        "headers": {h: request.headers[h] for h in AUDIT_HEADERS if h in request.headers},
    }
    event_type = str(payload.get("event") or "shipment.status")

    try:
        entry = ingest(event_id, event_type, payload, source_meta)
    except MalformedPayload as e:
        logger.warning(f"Carrier webhook rejected: {e}")
        return jsonify({"error": str(e)}), 400

    return jsonify({"status": entry.status, "id": entry.id, "event_id": entry.event_id}), 200
