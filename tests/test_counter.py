"""Tests for the sequence counter store.

Covers:
- First increment creates the counter at 1, later ones step by 1
- Independent keys don't interfere
- Concurrent increments from many threads return distinct, gap-free values
- Purging counters whose key date is past the retention window
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timedelta, timezone

from fulfillment import create_app
from fulfillment.extensions import db
from fulfillment.models.counter import Counter
from fulfillment.services import counter_service


class TestIncrement:
    """Tests for counter_service.increment."""

    def test_first_increment_returns_one(self, app):
        with app.app_context():
            assert counter_service.increment("orders-260220") == 1
            db.session.commit()
            assert counter_service.current_value("orders-260220") == 1

    def test_increments_step_by_one(self, app):
        with app.app_context():
            values = [counter_service.increment("orders-260220") for _ in range(5)]
            db.session.commit()
        assert values == [1, 2, 3, 4, 5]

    def test_keys_are_independent(self, app):
        with app.app_context():
            counter_service.increment("orders-260220")
            counter_service.increment("orders-260220")
            assert counter_service.increment("orders-260221") == 1
            db.session.commit()

    def test_unknown_key_reads_zero(self, app):
        with app.app_context():
            assert counter_service.current_value("orders-991231") == 0


class TestConcurrentIncrement:
    """Many writers against one file-backed database."""

    def test_concurrent_increments_are_distinct_and_gap_free(self, tmp_path):
        app = create_app("testing", overrides={
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'counters.db'}",
            "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"timeout": 30}},
        })
        with app.app_context():
            db.create_all()

        def bump(_):
            with app.app_context():
                value = counter_service.increment("orders-260220")
                db.session.commit()
                return value

        total = 200
        with ThreadPoolExecutor(max_workers=16) as pool:
            values = list(pool.map(bump, range(total)))

        assert len(values) == total
        assert set(values) == set(range(1, total + 1))

        with app.app_context():
            assert counter_service.current_value("orders-260220") == total
            db.session.remove()
            db.engine.dispose()


class TestPurge:
    """Tests for purge_stale_counters."""

    def _seed(self, key, created_at):
        db.session.add(Counter(id=key, seq=3, created_at=created_at))

    def test_purges_only_counters_past_retention(self, app):
        now = datetime(2026, 2, 20, 12, 0, tzinfo=timezone.utc)
        with app.app_context():
            self._seed("orders-260201", now - timedelta(days=19))
            self._seed("orders-260212", now - timedelta(days=8))
            self._seed("orders-260219", now - timedelta(days=1))
            db.session.commit()

            purged = counter_service.purge_stale_counters(7, now=now)
            db.session.commit()

            assert purged == ["orders-260201", "orders-260212"]
            assert [c.id for c in Counter.query.all()] == ["orders-260219"]

    def test_dry_run_deletes_nothing(self, app):
        now = datetime(2026, 2, 20, 12, 0, tzinfo=timezone.utc)
        with app.app_context():
            self._seed("orders-260201", now - timedelta(days=19))
            db.session.commit()

            purged = counter_service.purge_stale_counters(7, now=now, dry_run=True)
            db.session.commit()

            assert purged == ["orders-260201"]
            assert Counter.query.count() == 1

    def test_key_date_wins_over_created_at(self, app):
        now = datetime(2026, 2, 20, 12, 0, tzinfo=timezone.utc)
        with app.app_context():
            # Rebuilt yesterday from an old key, and an old row for today's key
            self._seed("orders-260110", now - timedelta(days=1))
            self._seed("orders-260220", now - timedelta(days=40))
            db.session.commit()

            purged = counter_service.purge_stale_counters(7, now=now)
            db.session.commit()

            assert purged == ["orders-260110"]

    def test_undated_key_falls_back_to_created_at(self, app):
        now = datetime(2026, 2, 20, 12, 0, tzinfo=timezone.utc)
        with app.app_context():
            self._seed("returns", now - timedelta(days=30))
            self._seed("exchanges", now - timedelta(days=2))
            db.session.commit()

            assert counter_service.purge_stale_counters(7, now=now, dry_run=True) == ["returns"]

    def test_key_date_parsing(self):
        assert counter_service.key_date("orders-260220") == date(2026, 2, 20)
        assert counter_service.key_date("orders-261340") is None
        assert counter_service.key_date("returns") is None
