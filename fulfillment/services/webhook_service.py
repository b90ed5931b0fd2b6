"""Carrier webhook service — ingestion, dedup ledger, retries.

Responsible for:
- Validating carrier payloads and mapping carrier status text onto the
  order lifecycle
- Recording every inbound event in webhook_logs BEFORE touching the order
- Idempotency by provider event id (the only dedup key)
- Applying events through services/order_state
- Bounded exponential backoff for events that fail to apply, a periodic
  sweep that re-attempts due entries, and manual replay of failed ones

Pipeline per delivery: dedup -> record pending -> resolve order ->
transition -> record outcome. The ledger row is committed before the
order is touched; the order mutation and the "processed" mark are then
committed together, so a crash in between at worst causes a retry, and a
retry of an already-applied event is recognised by lifecycle ordering.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from flask import current_app
from sqlalchemy import and_, or_, text
from sqlalchemy.exc import IntegrityError, OperationalError

from fulfillment.exceptions import (
    MalformedPayload,
    OrderNotFound,
    TransientError,
    TransitionRejected,
)
from fulfillment.extensions import db
from fulfillment.models.audit import AuditEvent
from fulfillment.models.order import Order
from fulfillment.models.webhook_log import WebhookLog
from fulfillment.services import order_state

logger = logging.getLogger(__name__)

CARRIER_ACTOR = "carrier"

# Pending entries with no retry time are picked up by the sweep only after
# this long, so a sweep never races the request that is still applying them.
PENDING_GRACE = timedelta(minutes=5)

# Carrier status text (upper-cased) -> lifecycle status.
CARRIER_STATUS_MAP = {
    "NEW": "shipment_created",
    "AWB ASSIGNED": "shipment_created",
    "LABEL GENERATED": "shipment_created",
    "PICKUP SCHEDULED": "pickup_scheduled",
    "PICKUP GENERATED": "pickup_scheduled",
    "PICKUP QUEUED": "pickup_scheduled",
    "OUT FOR PICKUP": "pickup_scheduled",
    "PICKED UP": "picked_up",
    "SHIPPED": "in_transit",
    "IN TRANSIT": "in_transit",
    "REACHED AT DESTINATION HUB": "in_transit",
    "OUT FOR DELIVERY": "out_for_delivery",
    "DELIVERED": "delivered",
    "UNDELIVERED": "failed_delivery",
    "FAILED DELIVERY": "failed_delivery",
    "CUSTOMER REFUSED": "failed_delivery",
    "RTO INITIATED": "rto_initiated",
    "RTO IN TRANSIT": "rto_initiated",
    "RTO DELIVERED": "rto_delivered",
    "CANCELED": "cancelled",
    "CANCELLED": "cancelled",
}


class StaleEvent(Exception):
    """The event's lifecycle state is behind the order's. Not an error."""


@dataclass(frozen=True)
class CarrierEvent:
    status_text: str
    lifecycle_status: str
    awb_code: str = None
    shipment_id: str = None
    order_ref: str = None
    carrier_order_id: str = None
    courier_name: str = None
    location: str = None
    description: str = None
    carrier_timestamp: str = None


# ─── Payload parsing ──────────────────────────────────────────────

def _str_or_none(value):
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def map_carrier_status(status_text):
    """Map carrier status text onto a lifecycle status.

    Raises MalformedPayload for text we do not recognise.
    """
    key = " ".join(str(status_text or "").upper().replace("_", " ").split())
    lifecycle = CARRIER_STATUS_MAP.get(key)
    if lifecycle is None:
        raise MalformedPayload(f"Unrecognised carrier status: {status_text!r}")
    return lifecycle


def extract_correlation(payload):
    """Correlation ids from a payload, tolerating any shape."""
    if not isinstance(payload, dict):
        return {"awb_code": None, "shipment_id": None, "carrier_order_id": None}
    return {
        "awb_code": _str_or_none(payload.get("awb") or payload.get("awb_code")),
        "shipment_id": _str_or_none(payload.get("shipment_id")),
        "carrier_order_id": _str_or_none(payload.get("sr_order_id")),
    }


def parse_carrier_event(payload):
    """Validate a carrier payload. Raises MalformedPayload."""
    if not isinstance(payload, dict):
        raise MalformedPayload("Payload must be a JSON object")

    status_text = _str_or_none(
        payload.get("current_status") or payload.get("shipment_status")
    )
    if status_text is None:
        raise MalformedPayload("Payload has no current_status")
    lifecycle = map_carrier_status(status_text)

    correlation = extract_correlation(payload)
    order_ref = _str_or_none(payload.get("order_id"))
    if not (correlation["awb_code"] or correlation["shipment_id"]
            or correlation["carrier_order_id"] or order_ref):
        raise MalformedPayload("Payload has no awb, shipment_id or order_id")

    # The latest scan, when present, carries location and activity text.
    location = _str_or_none(payload.get("location"))
    description = _str_or_none(payload.get("description"))
    scans = payload.get("scans")
    if isinstance(scans, list) and scans and isinstance(scans[-1], dict):
        location = location or _str_or_none(scans[-1].get("location"))
        description = description or _str_or_none(scans[-1].get("activity"))

    return CarrierEvent(
        status_text=status_text,
        lifecycle_status=lifecycle,
        awb_code=correlation["awb_code"],
        shipment_id=correlation["shipment_id"],
        carrier_order_id=correlation["carrier_order_id"],
        order_ref=order_ref,
        courier_name=_str_or_none(payload.get("courier_name")),
        location=location,
        description=description,
        carrier_timestamp=_str_or_none(
            payload.get("current_timestamp") or payload.get("timestamp")
        ),
    )


def derive_event_id(payload, header_event_id=None):
    """Provider event id: explicit id, else header, else awb:status:timestamp.

    Returns None when no stable id can be derived.
    """
    if isinstance(payload, dict) and _str_or_none(payload.get("event_id")):
        return _str_or_none(payload.get("event_id"))
    if _str_or_none(header_event_id):
        return _str_or_none(header_event_id)
    if not isinstance(payload, dict):
        return None

    awb = _str_or_none(payload.get("awb") or payload.get("awb_code"))
    status = _str_or_none(
        payload.get("current_status_id") or payload.get("current_status")
    )
    timestamp = _str_or_none(payload.get("current_timestamp") or payload.get("timestamp"))
    if awb and status and timestamp:
        return f"{awb}:{status}:{timestamp}"
    return None


# ─── Retry policy ─────────────────────────────────────────────────

def retry_delay_seconds(retry_count, base_seconds, max_seconds):
    """Backoff after the `retry_count`-th failure: base, 2*base, 4*base ... capped."""
    return min(base_seconds * (2 ** max(retry_count - 1, 0)), max_seconds)


def _schedule_retry(entry, error, now):
    config = current_app.config
    entry.retry_count = min(entry.retry_count + 1, entry.max_retries)
    entry.error = str(error)

    if entry.retry_count >= entry.max_retries:
        entry.status = "failed"
        entry.next_retry_at = None
        logger.error(
            f"Webhook {entry.event_id} failed after {entry.retry_count} attempts: {error}"
        )
        return

    delay = retry_delay_seconds(
        entry.retry_count,
        config["WEBHOOK_RETRY_BASE_SECONDS"],
        config["WEBHOOK_RETRY_MAX_SECONDS"],
    )
    entry.status = "pending"
    entry.next_retry_at = now + timedelta(seconds=delay)
    logger.warning(
        f"Webhook {entry.event_id} attempt {entry.retry_count} failed ({error}); "
        f"retrying in {delay}s"
    )


# ─── Applying events ──────────────────────────────────────────────

def _apply_lookup_timeout():
    """Bound the order lookup so a slow store becomes a retry, not a hang."""
    if db.engine.dialect.name == "postgresql":
        timeout_ms = int(current_app.config["WEBHOOK_LOOKUP_TIMEOUT_MS"])
        db.session.execute(text(f"SET LOCAL statement_timeout = {timeout_ms}"))


def find_order(event):
    """Resolve the target order from the event's correlation fields."""
    _apply_lookup_timeout()

    if event.awb_code:
        order = Order.query.filter_by(awb_code=event.awb_code).first()
        if order:
            return order
    if event.shipment_id:
        order = Order.query.filter_by(carrier_shipment_id=event.shipment_id).first()
        if order:
            return order
    if event.carrier_order_id:
        order = Order.query.filter_by(carrier_order_id=event.carrier_order_id).first()
        if order:
            return order
    if event.order_ref:
        return Order.query.filter_by(display_order_id=event.order_ref).first()
    return None


def _apply(entry):
    """Apply one ledger entry to its order. Returns a result message."""
    event = parse_carrier_event(entry.payload)

    try:
        order = find_order(event)
    except OperationalError as e:
        raise TransientError(f"Order lookup failed: {e.orig}") from e
    if order is None:
        raise OrderNotFound(
            f"No order for awb={event.awb_code} shipment={event.shipment_id} "
            f"order={event.order_ref or event.carrier_order_id}"
        )

    before = order.lifecycle_status
    if order_state.lifecycle_is_stale(before, event.lifecycle_status):
        raise StaleEvent(
            f"Stale event: {event.lifecycle_status} is behind {before} "
            f"for order {order.display_order_id}"
        )

    order_state.advance_lifecycle(
        order,
        event.lifecycle_status,
        CARRIER_ACTOR,
        carrier_status=event.status_text,
        location=event.location,
        description=event.description,
        carrier_timestamp=event.carrier_timestamp,
        source="carrier",
        webhook_log_id=entry.id,
    )

    # Fill identifiers the carrier knows and we don't yet.
    if event.awb_code and not order.awb_code:
        order.awb_code = event.awb_code
    if event.shipment_id and not order.carrier_shipment_id:
        order.carrier_shipment_id = event.shipment_id
    if event.carrier_order_id and not order.carrier_order_id:
        order.carrier_order_id = event.carrier_order_id
    if event.courier_name and not order.courier_name:
        order.courier_name = event.courier_name

    entry.order_id = order.id
    return (
        f"Order {order.display_order_id} lifecycle {before} -> "
        f"{order.lifecycle_status}, status {order.status}"
    )


def attempt(entry, now=None):
    """Try to apply a pending ledger entry and record the outcome. Commits.

    The order mutation runs inside a SAVEPOINT. A failure rolls back only
    the savepoint, so a row lock taken by the sweep's claim is held until
    the outcome is committed.
    """
    now = now or datetime.now(timezone.utc)
    event_id = entry.event_id

    try:
        with db.session.begin_nested():
            result = _apply(entry)
    except StaleEvent as e:
        entry.status = "duplicate"
        entry.result = str(e)
        entry.next_retry_at = None
        entry.processed_at = now
        logger.info(f"Webhook {event_id} discarded: {e}")
    except MalformedPayload as e:
        entry.status = "failed"
        entry.error = str(e)
        entry.next_retry_at = None
        logger.error(f"Webhook {event_id} malformed, not retrying: {e}")
    except (OrderNotFound, TransitionRejected, TransientError) as e:
        _schedule_retry(entry, e, now)
    except OperationalError as e:
        _schedule_retry(entry, TransientError(str(e.orig)), now)
    except Exception as e:
        logger.error(f"Error applying webhook {event_id}: {e}", exc_info=True)
        _schedule_retry(entry, e, now)
    else:
        entry.status = "processed"
        entry.result = result
        entry.error = None
        entry.next_retry_at = None
        entry.processed_at = now
        logger.info(f"Webhook {event_id} processed: {result}")

    db.session.commit()
    return entry


# ─── Ingestion ────────────────────────────────────────────────────

def _record_duplicate(provider_event_id, event_type, payload, source_meta, original, now):
    duplicate = WebhookLog(
        event_id=provider_event_id,
        event_type=event_type,
        payload=payload if isinstance(payload, (dict, list)) else {"raw": payload},
        status="duplicate",
        result=f"Duplicate of {original.id} ({original.status})" if original else "Duplicate",
        order_id=original.order_id if original else None,
        max_retries=current_app.config["WEBHOOK_MAX_RETRIES"],
        request_ip=source_meta.get("ip"),
        request_headers=source_meta.get("headers") or {},
        processed_at=now,
        **extract_correlation(payload),
    )
    db.session.add(duplicate)
    db.session.commit()
    logger.info(f"Duplicate webhook event {provider_event_id}, skipping")
    return duplicate


def ingest(provider_event_id, event_type, payload, source_meta=None, now=None):
    """Record and apply one carrier event.

    Returns the ledger entry written for this delivery: a new duplicate
    row when the event id was already seen, otherwise the primary entry
    with its outcome (processed / pending with a retry / failed /
    duplicate when stale).
    """
    now = now or datetime.now(timezone.utc)
    source_meta = source_meta or {}

    if not provider_event_id:
        raise MalformedPayload("Webhook has no provider event id")

    seen = (
        WebhookLog.query
        .filter_by(event_id=provider_event_id)
        .order_by(WebhookLog.created_at.asc())
        .all()
    )
    primary = next((e for e in seen if e.status != "duplicate"), None)

    # A pending primary is either being applied right now or waiting on a
    # retry; the sweep owns it either way.
    if seen:
        return _record_duplicate(
            provider_event_id, event_type, payload, source_meta, primary or seen[0], now
        )

    entry = WebhookLog(
        event_id=provider_event_id,
        event_type=event_type,
        payload=payload if isinstance(payload, (dict, list)) else {"raw": payload},
        status="pending",
        max_retries=current_app.config["WEBHOOK_MAX_RETRIES"],
        request_ip=source_meta.get("ip"),
        request_headers=source_meta.get("headers") or {},
        **extract_correlation(payload),
    )
    db.session.add(entry)
    try:
        db.session.commit()
    except IntegrityError:
        # A concurrent delivery of the same id won the insert.
        db.session.rollback()
        original = (
            WebhookLog.query
            .filter_by(event_id=provider_event_id)
            .filter(WebhookLog.status != "duplicate")
            .first()
        )
        return _record_duplicate(
            provider_event_id, event_type, payload, source_meta, original, now
        )

    return attempt(entry, now)


# ─── Retry sweep / operator views ─────────────────────────────────

def due_entry_ids(now=None, limit=None):
    """Ids of pending entries whose retry time has come, oldest receipt first."""
    now = now or datetime.now(timezone.utc)
    limit = limit or current_app.config["WEBHOOK_SWEEP_BATCH_SIZE"]
    rows = (
        db.session.query(WebhookLog.id)
        .filter(WebhookLog.status == "pending")
        .filter(or_(
            WebhookLog.next_retry_at <= now,
            and_(
                WebhookLog.next_retry_at.is_(None),
                WebhookLog.created_at <= now - PENDING_GRACE,
            ),
        ))
        .order_by(WebhookLog.created_at.asc(), WebhookLog.id.asc())
        .limit(limit)
        .all()
    )
    return [row.id for row in rows]


def _claim(entry_id):
    """Lock one pending entry for this sweep; None if another worker has it."""
    return (
        WebhookLog.query
        .filter_by(id=entry_id, status="pending")
        .with_for_update(skip_locked=True)
        .first()
    )


def process_due_retries(now=None, limit=None):
    """One pass of the retry sweep. Returns counts by resulting status."""
    now = now or datetime.now(timezone.utc)
    summary = {"attempted": 0, "processed": 0, "pending": 0, "failed": 0, "duplicate": 0}

    for entry_id in due_entry_ids(now, limit):
        entry = _claim(entry_id)
        if entry is None:
            continue
        attempt(entry, now)
        summary["attempted"] += 1
        summary[entry.status] += 1

    if summary["attempted"]:
        logger.info(f"Webhook retry sweep: {summary}")
    return summary


def failed_events(limit=100):
    """Entries that exhausted retries or were malformed, newest first."""
    return (
        WebhookLog.query
        .filter_by(status="failed")
        .order_by(WebhookLog.updated_at.desc())
        .limit(limit)
        .all()
    )


def replay(entry_id, actor, now=None):
    """Manually re-run a failed entry with a fresh retry budget.

    Returns the entry, or None if not found.
    Raises ValueError if the entry isn't failed.
    """
    entry = db.session.get(WebhookLog, entry_id)
    if entry is None:
        return None
    if entry.status != "failed":
        raise ValueError(
            f"Only failed webhook events can be replayed (this one is {entry.status})."
        )

    entry.status = "pending"
    entry.retry_count = 0
    entry.next_retry_at = None
    entry.error = None
    db.session.add(AuditEvent(
        order_id=entry.order_id,
        actor=actor,
        action="webhook.replayed",
        metadata_={"webhook_log_id": entry.id, "event_id": entry.event_id},
    ))
    db.session.commit()

    logger.info(f"Webhook {entry.event_id} replayed by {actor}")
    return attempt(entry, now)
