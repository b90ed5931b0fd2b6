"""Tests for the maintenance CLI commands.

Covers:
- flask reconcile-indexes (dry-run exit status, --apply, re-run)
- flask retry-webhooks
- flask purge-counters (--dry-run, --days)
"""

from datetime import datetime, timedelta, timezone

from fulfillment.extensions import db
from fulfillment.models.counter import Counter
from fulfillment.models.webhook_log import WebhookLog
from fulfillment.services.index_service import DECLARED_INDEXES
from fulfillment.services.webhook_service import ingest


class TestReconcileIndexesCommand:
    """Tests for flask reconcile-indexes."""

    def test_dry_run_exits_nonzero_when_missing(self, app):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["reconcile-indexes"])

        assert result.exit_code == 1
        assert "MISSING ix_orders_user_id_created_at" in result.output
        assert "✓ ix_orders_awb_code" in result.output
        assert "Run with --apply" in result.output

    def test_apply_then_rerun(self, app):
        runner = app.test_cli_runner()

        result = runner.invoke(args=["reconcile-indexes", "--apply"])
        assert result.exit_code == 0
        assert "CREATED ix_orders_user_id_created_at" in result.output

        result = runner.invoke(args=["reconcile-indexes", "--apply"])
        assert result.exit_code == 0
        assert f"{len(DECLARED_INDEXES)} checked, 0 missing, 0 applied" in result.output

        result = runner.invoke(args=["reconcile-indexes"])
        assert result.exit_code == 0


class TestRetryWebhooksCommand:
    """Tests for flask retry-webhooks."""

    def test_sweeps_due_entries(self, app):
        an_hour_ago = datetime.now(timezone.utc) - timedelta(hours=1)
        with app.app_context():
            entry_id = ingest(
                "evt-cli", "shipment.status",
                {"awb": "AWB-NONE", "current_status": "IN TRANSIT"},
                now=an_hour_ago,
            ).id

        result = app.test_cli_runner().invoke(args=["retry-webhooks"])

        assert result.exit_code == 0
        assert "1 attempted: 0 processed, 1 rescheduled, 0 failed, 0 stale" in result.output
        db.session.expire_all()
        assert db.session.get(WebhookLog, entry_id).retry_count == 2

    def test_nothing_due(self, app):
        result = app.test_cli_runner().invoke(args=["retry-webhooks"])
        assert result.exit_code == 0
        assert "0 attempted" in result.output


class TestPurgeCountersCommand:
    """Tests for flask purge-counters."""

    def _seed(self):
        now = datetime.now(timezone.utc)
        old_key = f"orders-{(now - timedelta(days=30)):%y%m%d}"
        new_key = f"orders-{now:%y%m%d}"
        db.session.add(Counter(id=old_key, seq=12))
        db.session.add(Counter(id=new_key, seq=3))
        db.session.commit()
        return old_key, new_key

    def test_dry_run_keeps_rows(self, app):
        old_key, _ = self._seed()
        result = app.test_cli_runner().invoke(args=["purge-counters", "--dry-run"])

        assert result.exit_code == 0
        assert f"[DRY RUN] Would purge 1 counter(s): {old_key}" in result.output
        db.session.expire_all()
        assert Counter.query.count() == 2

    def test_purge_with_custom_window(self, app):
        _, new_key = self._seed()
        result = app.test_cli_runner().invoke(args=["purge-counters", "--days", "60"])
        assert "Purged 0 counter(s)." in result.output

        result = app.test_cli_runner().invoke(args=["purge-counters"])
        assert "Purged 1 counter(s)." in result.output
        db.session.expire_all()
        assert [c.id for c in Counter.query.all()] == [new_key]
