"""Index reconciliation — bring live indexes in line with a declared set.

Responsible for:
- Declaring the query indexes the order/webhook/audit read paths rely on
- Comparing them against what the database actually has, by key shape
- Creating the missing ones (apply mode) or only reporting them (dry-run)

Safe to re-run: an index whose column tuple already exists on the table
(under any name, including unique constraints) is left alone. Each missing
index is created in its own transaction; one failure is recorded and the
rest are still attempted.
"""

import logging
from dataclasses import dataclass, field

import sqlalchemy as sa

from fulfillment.extensions import db

logger = logging.getLogger(__name__)

CHECKED = "ok"
MISSING = "missing"
CREATED = "created"
FAILED = "failed"


@dataclass(frozen=True)
class IndexSpec:
    table: str
    columns: tuple
    unique: bool = False
    name: str = None

    @property
    def index_name(self):
        return self.name or f"ix_{self.table}_{'_'.join(self.columns)}"

    @property
    def key(self):
        return normalize_key(self.columns)

    def describe(self):
        unique = " UNIQUE" if self.unique else ""
        return f"{self.table}({', '.join(self.columns)}){unique}"


DECLARED_INDEXES = [
    # orders: customer history, board columns, carrier lookups, review queue
    IndexSpec("orders", ("display_order_id",), unique=True),
    IndexSpec("orders", ("user_id", "created_at")),
    IndexSpec("orders", ("status", "created_at")),
    IndexSpec("orders", ("user_id", "status")),
    IndexSpec("orders", ("lifecycle_status",)),
    IndexSpec("orders", ("payment_status",)),
    IndexSpec("orders", ("awb_code",)),
    IndexSpec("orders", ("carrier_shipment_id",)),
    IndexSpec("orders", ("carrier_order_id",)),
    IndexSpec("orders", ("manual_review_required", "created_at")),
    # tracking history is read per order in receipt order
    IndexSpec("tracking_entries", ("order_id", "id")),
    # webhook ledger: dedup, retry sweep, failed view, correlation
    IndexSpec("webhook_logs", ("event_id",)),
    IndexSpec("webhook_logs", ("status",)),
    IndexSpec("webhook_logs", ("status", "next_retry_at")),
    IndexSpec("webhook_logs", ("awb_code",)),
    IndexSpec("webhook_logs", ("order_id",)),
    IndexSpec("audit_events", ("order_id", "created_at")),
    IndexSpec("audit_events", ("action",)),
    # counter purge scans by age
    IndexSpec("counters", ("created_at",)),
]


@dataclass
class IndexResult:
    index: IndexSpec
    outcome: str
    error: str = None


@dataclass
class ReconcileReport:
    apply: bool
    results: list = field(default_factory=list)

    @property
    def checked(self):
        return len(self.results)

    @property
    def missing(self):
        return sum(1 for r in self.results if r.outcome != CHECKED)

    @property
    def applied(self):
        return sum(1 for r in self.results if r.outcome == CREATED)

    @property
    def failed(self):
        return [r for r in self.results if r.outcome == FAILED]

    @property
    def still_missing(self):
        """Indexes absent after this run (not created, or failed)."""
        return sum(1 for r in self.results if r.outcome in (MISSING, FAILED))

    def summary(self):
        return f"{self.checked} checked, {self.missing} missing, {self.applied} applied"

    def to_dict(self):
        return {
            "checked": self.checked,
            "missing": self.missing,
            "applied": self.applied,
            "failed": [
                {"index": r.index.index_name, "error": r.error} for r in self.failed
            ],
        }


def normalize_key(columns):
    """Key shape used for comparison: the ordered tuple of column names."""
    return tuple(str(c).lower() for c in columns if c is not None)


def existing_index_keys(connection, table_name):
    """Key shapes of every index and unique constraint on `table_name`.

    A table that does not exist has no indexes.
    """
    inspector = sa.inspect(connection)
    if not inspector.has_table(table_name):
        return set()

    keys = set()
    for index in inspector.get_indexes(table_name):
        keys.add(normalize_key(index.get("column_names") or []))
    for constraint in inspector.get_unique_constraints(table_name):
        keys.add(normalize_key(constraint.get("column_names") or []))
    pk = inspector.get_pk_constraint(table_name) or {}
    if pk.get("constrained_columns"):
        keys.add(normalize_key(pk["constrained_columns"]))
    keys.discard(())
    return keys


def create_index(connection, index):
    table = sa.Table(index.table, sa.MetaData(), autoload_with=connection)
    ddl = sa.Index(
        index.index_name,
        *[table.c[column] for column in index.columns],
        unique=index.unique,
    )
    ddl.create(connection)


def reconcile(desired=None, apply=False, engine=None):
    """Audit `desired` indexes and optionally create the missing ones.

    Returns a ReconcileReport. Creation failures are collected in the
    report, never raised.
    """
    desired = DECLARED_INDEXES if desired is None else desired
    engine = engine or db.engine
    report = ReconcileReport(apply=apply)

    with engine.connect() as connection:
        existing = {}
        for index in desired:
            if index.table not in existing:
                existing[index.table] = existing_index_keys(connection, index.table)

    for index in desired:
        if index.key in existing[index.table]:
            report.results.append(IndexResult(index, CHECKED))
            continue

        if not apply:
            report.results.append(IndexResult(index, MISSING))
            continue

        try:
            with engine.begin() as connection:
                create_index(connection, index)
        except Exception as e:
            logger.error(f"Failed to create index {index.index_name}: {e}")
            report.results.append(IndexResult(index, FAILED, error=str(e)))
            continue

        existing[index.table].add(index.key)
        logger.info(f"Created index {index.index_name} on {index.describe()}")
        report.results.append(IndexResult(index, CREATED))

    logger.info(f"Index reconciliation ({'apply' if apply else 'dry-run'}): {report.summary()}")
    return report
