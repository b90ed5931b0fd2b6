"""
Custom route decorators for access control.

- ops_api_required: operator API, Bearer token matching OPS_API_KEY.
- carrier_token_required: carrier webhooks, X-Api-Key matching
  CARRIER_WEBHOOK_TOKEN.

Both compare in constant time and answer 401 JSON on mismatch.
"""

import hmac
import logging
from functools import wraps

from flask import current_app, g, jsonify, request

logger = logging.getLogger(__name__)


def _token_matches(supplied, expected):
    if not supplied or not expected:
        return False
    return hmac.compare_digest(supplied.encode(), expected.encode())


def ops_api_required(f):
    """Require a Bearer token matching OPS_API_KEY. Sets g.actor."""

    @wraps(f)
    def decorated(*args, **kwargs):
        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return jsonify({"error": "Unauthorized"}), 401

        token = auth_header[7:]
        if not _token_matches(token, current_app.config.get("OPS_API_KEY") or ""):
            return jsonify({"error": "Invalid API key"}), 401

        g.actor = request.headers.get("X-Actor", "").strip() or "ops"
        return f(*args, **kwargs)

    return decorated


def carrier_token_required(f):
    """Require the shared carrier token in the X-Api-Key header."""

    @wraps(f)
    def decorated(*args, **kwargs):
        token = request.headers.get("X-Api-Key", "")
        if not _token_matches(token, current_app.config.get("CARRIER_WEBHOOK_TOKEN") or ""):
            logger.warning(f"Carrier webhook rejected: bad token from {request.remote_addr}")
            return jsonify({"error": "Invalid token"}), 401
        return f(*args, **kwargs)

    return decorated
