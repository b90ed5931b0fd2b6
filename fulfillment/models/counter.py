"""Counter model — atomic daily sequences.

One row per named sequence per UTC day, keyed as "<name>-<YYMMDD>"
(e.g. "orders-260220"). The row is created by the first increment of the
day and only ever moves forward; see services/counter_service.py.
"""

from fulfillment.extensions import db


class Counter(db.Model):
    __tablename__ = "counters"

    id = db.Column(db.String(64), primary_key=True)  # e.g. "orders-260220"
    seq = db.Column(db.BigInteger, nullable=False, default=0)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self):
        return f"<Counter {self.id}={self.seq}>"
