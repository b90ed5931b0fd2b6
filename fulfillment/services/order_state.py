"""Order status state machine.

The single place allowed to change Order.status and Order.lifecycle_status.

- Coarse status follows Order.VALID_TRANSITIONS. Asking for the current
  status is a no-op, anything else outside the table raises
  TransitionRejected naming both states.
- Lifecycle status is ranked. Carriers skip steps, so any forward move on
  the main line is accepted. Moves behind the current position are
  rejected as stale. failed_delivery and out_for_delivery share a rank and
  may alternate (re-attempts). The RTO branch leaves the main line after
  pickup and never returns to it.
- Every lifecycle update appends one TrackingEntry and may promote the
  coarse status at fixed checkpoints.

Writes are compare-and-set UPDATEs on the expected current value, so two
concurrent callers cannot both apply a transition from the same state.

Functions flush but do NOT commit — the caller commits.
"""

import logging
from datetime import datetime, timezone

import bleach
from sqlalchemy import update

from fulfillment.exceptions import TransitionRejected
from fulfillment.extensions import db
from fulfillment.models.audit import AuditEvent
from fulfillment.models.order import Order, TrackingEntry

logger = logging.getLogger(__name__)

# Forward path used when a lifecycle checkpoint promotes the coarse status.
STATUS_PATH = ["confirmed", "processing", "shipped", "delivered"]

LIFECYCLE_RANK = {
    "ready_to_ship": 0,
    "shipment_created": 1,
    "pickup_scheduled": 2,
    "picked_up": 3,
    "in_transit": 4,
    "out_for_delivery": 5,
    "failed_delivery": 5,
    "delivered": 6,
    "rto_initiated": 7,
    "rto_delivered": 8,
}

LIFECYCLE_TERMINAL = ["delivered", "rto_delivered", "cancelled"]

# Cancelling is only possible before the parcel leaves the warehouse.
LIFECYCLE_CANCELLABLE = ["ready_to_ship", "shipment_created", "pickup_scheduled"]

RTO_ENTRY_POINTS = ["picked_up", "in_transit", "out_for_delivery", "failed_delivery"]

# Coarse status each lifecycle checkpoint promotes the order to.
LIFECYCLE_PROMOTES_TO = {
    "shipment_created": "processing",
    "pickup_scheduled": "processing",
    "picked_up": "shipped",
    "in_transit": "shipped",
    "out_for_delivery": "shipped",
    "failed_delivery": "shipped",
    "delivered": "delivered",
    "cancelled": "cancelled",
}


def _sanitize(text):
    """Strip all HTML tags from carrier/operator supplied text."""
    if text is None:
        return text
    return bleach.clean(str(text), tags=[], strip=True).strip()


# ─── Coarse status ────────────────────────────────────────────────

def can_transition(current, target):
    return target in Order.VALID_TRANSITIONS.get(current, [])


def transition(order, target_status, actor):
    """Move `order` to `target_status` if the transition table allows it.

    Returns the order. Raises TransitionRejected otherwise, including when
    another writer changed the status between read and write.
    """
    current = order.status

    if target_status not in Order.STATUSES:
        raise TransitionRejected(current, target_status, reason="unknown status")
    if target_status == current:
        return order
    if not can_transition(current, target_status):
        raise TransitionRejected(current, target_status)

    result = db.session.execute(
        update(Order)
        .where(Order.id == order.id, Order.status == current)
        .values(status=target_status, updated_at=datetime.now(timezone.utc))
    )
    if result.rowcount != 1:
        db.session.refresh(order)
        raise TransitionRejected(
            current, target_status,
            reason=f"order was concurrently moved to {order.status}",
        )

    db.session.refresh(order, ["status", "updated_at"])

    db.session.add(AuditEvent(
        order_id=order.id,
        actor=actor,
        action="order.status_changed",
        metadata_={"from": current, "to": target_status},
    ))
    db.session.flush()

    logger.info(f"Order {order.display_order_id}: {current} -> {target_status} by {actor}")
    return order


def status_steps_to(current, target):
    """Statuses to step through to promote `current` up to `target`.

    Returns [] when nothing needs to change. Raises TransitionRejected when
    `target` cannot be reached through the table from `current`.
    """
    if current == target:
        return []
    if target == "cancelled":
        if not can_transition(current, "cancelled"):
            raise TransitionRejected(current, target)
        return ["cancelled"]
    if current not in STATUS_PATH or target not in STATUS_PATH:
        raise TransitionRejected(current, target)

    here = STATUS_PATH.index(current)
    there = STATUS_PATH.index(target)
    if there < here:
        # Already further along; a checkpoint never demotes.
        return []
    return STATUS_PATH[here + 1:there + 1]


# ─── Lifecycle status ─────────────────────────────────────────────

def lifecycle_is_stale(current, target):
    """True when `target` is behind the order's current lifecycle position."""
    if current in LIFECYCLE_TERMINAL:
        return target != current
    if target == "cancelled":
        return False
    if current in ("rto_initiated", "rto_delivered"):
        return target not in ("rto_initiated", "rto_delivered")
    return LIFECYCLE_RANK[target] < LIFECYCLE_RANK[current]


def can_advance_lifecycle(current, target):
    """Whether lifecycle may move from `current` to `target` (not equal)."""
    if target not in Order.LIFECYCLE_STATUSES or current == target:
        return False
    if current in LIFECYCLE_TERMINAL:
        return False
    if target == "cancelled":
        return current in LIFECYCLE_CANCELLABLE
    if target == "rto_initiated":
        return current in RTO_ENTRY_POINTS
    if target == "rto_delivered":
        return current == "rto_initiated"
    if current == "rto_initiated":
        return False
    if {current, target} == {"out_for_delivery", "failed_delivery"}:
        return True
    return LIFECYCLE_RANK[target] > LIFECYCLE_RANK[current]


def plan_lifecycle_change(order, target_lifecycle):
    """Validate a lifecycle move without touching the order.

    Returns the list of coarse statuses that will be stepped through.
    Raises TransitionRejected if either the lifecycle move or the implied
    coarse promotion is not allowed.
    """
    current = order.lifecycle_status
    if target_lifecycle not in Order.LIFECYCLE_STATUSES:
        raise TransitionRejected(
            current, target_lifecycle, field="lifecycle_status",
            reason="unknown lifecycle status",
        )
    if target_lifecycle != current and not can_advance_lifecycle(current, target_lifecycle):
        raise TransitionRejected(current, target_lifecycle, field="lifecycle_status")

    promote_to = LIFECYCLE_PROMOTES_TO.get(target_lifecycle)
    if promote_to is None:
        return []
    return status_steps_to(order.status, promote_to)


def advance_lifecycle(order, target_lifecycle, actor, carrier_status=None,
                      location=None, description=None, carrier_timestamp=None,
                      source="operator", webhook_log_id=None):
    """Apply a lifecycle update, append tracking history, promote status.

    A repeat of the current lifecycle status is accepted: it still appends
    a tracking entry (e.g. another in-transit scan at a new hub).

    Returns the appended TrackingEntry.
    """
    current = order.lifecycle_status
    steps = plan_lifecycle_change(order, target_lifecycle)
    now = datetime.now(timezone.utc)

    if target_lifecycle != current:
        result = db.session.execute(
            update(Order)
            .where(Order.id == order.id, Order.lifecycle_status == current)
            .values(lifecycle_status=target_lifecycle, updated_at=now)
        )
        if result.rowcount != 1:
            db.session.refresh(order)
            raise TransitionRejected(
                current, target_lifecycle, field="lifecycle_status",
                reason=f"order was concurrently moved to {order.lifecycle_status}",
            )
        db.session.refresh(order, ["lifecycle_status", "updated_at"])

        db.session.add(AuditEvent(
            order_id=order.id,
            actor=actor,
            action="order.lifecycle_changed",
            metadata_={"from": current, "to": target_lifecycle},
        ))

    entry = TrackingEntry(
        order_id=order.id,
        status=_sanitize(carrier_status) or target_lifecycle.upper().replace("_", " "),
        lifecycle_status=target_lifecycle,
        location=_sanitize(location),
        description=_sanitize(description),
        carrier_timestamp=carrier_timestamp,
        source=source,
        webhook_log_id=webhook_log_id,
    )
    order.tracking_history.append(entry)
    order.last_tracking_update = now
    if carrier_status:
        order.current_carrier_status = _sanitize(carrier_status)
    db.session.flush()

    for step in steps:
        transition(order, step, actor)

    return entry
