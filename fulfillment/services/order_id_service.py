"""Display order id generator.

Format: PREFIX-YYMMDD-#### (e.g. ORD-260220-1023).

- One counter per UTC day, keyed "orders-YYMMDD", so the suffix resets
  automatically at UTC midnight.
- The suffix is ORDER_SEQUENCE_OFFSET + seq, so the first order of a day
  reads 1001. It is zero-padded to ORDER_SEQUENCE_MIN_DIGITS and simply
  grows past 9999 orders/day (10999 renders as 5 digits).
- Uniqueness comes from date prefix + atomic per-day counter. If the
  counter store fails, the error propagates and order creation aborts.
"""

from datetime import datetime, timezone

from flask import current_app

from fulfillment.services import counter_service

COUNTER_NAME = "orders"


def today_date_str(now=None):
    """Return the UTC calendar date as YYMMDD, e.g. "260220"."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return now.strftime("%y%m%d")


def counter_key(date_str):
    return f"{COUNTER_NAME}-{date_str}"


def format_display_order_id(prefix, date_str, seq, offset=1000, min_digits=4):
    display_seq = offset + seq
    return f"{prefix}-{date_str}-{display_seq:0{min_digits}d}"


def generate_display_order_id(now=None):
    """Atomically allocate the next display order id for the current UTC day."""
    config = current_app.config
    date_str = today_date_str(now)

    seq = counter_service.increment(counter_key(date_str))

    return format_display_order_id(
        config["ORDER_ID_PREFIX"],
        date_str,
        seq,
        offset=config["ORDER_SEQUENCE_OFFSET"],
        min_digits=config["ORDER_SEQUENCE_MIN_DIGITS"],
    )
