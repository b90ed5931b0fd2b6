"""Counter service — atomic per-day sequences.

increment() is a single INSERT ... ON CONFLICT DO UPDATE ... RETURNING
statement: the row is created at 1 on the first call for a key and
bumped by 1 on every later call. The database linearizes concurrent
callers on the row, so N simultaneous increments observe exactly
v+1 .. v+N. No counter value is ever held in process memory.

Functions flush but do NOT commit — the caller commits.
"""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from fulfillment.exceptions import ConfigurationError
from fulfillment.extensions import db
from fulfillment.models.counter import Counter

logger = logging.getLogger(__name__)

_UPSERT_BY_DIALECT = {
    "postgresql": postgresql_insert,
    "sqlite": sqlite_insert,
}


def _upsert_for_bind():
    dialect = db.engine.dialect.name
    upsert = _UPSERT_BY_DIALECT.get(dialect)
    if upsert is None:
        raise ConfigurationError(
            f"Atomic counters are not supported on the '{dialect}' dialect"
        )
    return upsert


def increment(key):
    """Atomically add 1 to the counter `key` and return the new value.

    Creates the counter on first use (so the first call returns 1).
    Errors from the store propagate; callers must not fall back.
    """
    upsert = _upsert_for_bind()
    stmt = upsert(Counter).values(id=key, seq=1)
    stmt = stmt.on_conflict_do_update(
        index_elements=[Counter.id],
        set_={"seq": Counter.seq + 1, "updated_at": db.func.now()},
    ).returning(Counter.seq)
    return db.session.execute(stmt).scalar_one()


def current_value(key):
    """Read-only peek at a counter. Returns 0 for unknown keys."""
    counter = db.session.get(Counter, key)
    return counter.seq if counter else 0


def key_date(key):
    """The UTC date stamped in a counter key ("orders-260220"), or None."""
    _, _, stamp = key.rpartition("-")
    try:
        return datetime.strptime(stamp, "%y%m%d").date()
    except ValueError:
        return None


def purge_stale_counters(retention_days, now=None, dry_run=False):
    """Delete counters whose key date is more than `retention_days` old.

    A key without a date stamp falls back to the row's created_at.
    Returns the list of purged (or would-be-purged) counter keys.
    """
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=retention_days)
    cutoff_date = cutoff.astimezone(timezone.utc).date()

    stale = []
    for counter in Counter.query.order_by(Counter.id).all():
        stamped = key_date(counter.id)
        if stamped is not None:
            if stamped < cutoff_date:
                stale.append(counter)
        elif counter.created_at is not None and _as_utc(counter.created_at) < cutoff:
            stale.append(counter)
    keys = [c.id for c in stale]

    if not dry_run:
        for counter in stale:
            db.session.delete(counter)
        db.session.flush()
        logger.info(f"Purged {len(keys)} stale counter(s) older than {retention_days} days")

    return keys


def _as_utc(value):
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
