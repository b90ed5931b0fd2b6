import os
import logging

import click
from flask import Flask, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from fulfillment.config import config_by_name
from fulfillment.exceptions import ConfigurationError, MalformedPayload, TransitionRejected
from fulfillment.extensions import db, migrate, limiter


def create_app(config_name=None, overrides=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])
    if overrides:
        app.config.update(overrides)

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            raise ConfigurationError(str(e)) from e

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from fulfillment import models  # noqa: F401

        # --- Store connectivity (skip in testing) ---
        if config_name != "testing":
            check_store(app)

    # --- Register blueprints ---
    from fulfillment.blueprints.webhooks import webhooks_bp
    from fulfillment.blueprints.orders import orders_bp

    app.register_blueprint(webhooks_bp)
    app.register_blueprint(orders_bp)

    # --- Error handlers (JSON API only) ---
    @app.errorhandler(TransitionRejected)
    def transition_rejected(e):
        db.session.rollback()
        app.logger.warning(f"Transition rejected: {e}")
        return jsonify(e.to_dict()), 409

    @app.errorhandler(MalformedPayload)
    def malformed_payload(e):
        db.session.rollback()
        return jsonify({"error": str(e)}), 400

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(429)
    def rate_limited(e):
        return jsonify({"error": "Too many requests"}), 429

    @app.errorhandler(500)
    def server_error(e):
        return jsonify({"error": "Internal server error"}), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def check_store(app):
    """Fail fast when the database is unreachable. Needs an app context."""
    try:
        with db.engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        raise ConfigurationError(f"Database unreachable: {e}") from e
    app.logger.info("Database connectivity verified")


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("reconcile-indexes")
    @click.option("--apply", is_flag=True, help="Create missing indexes instead of only reporting them.")
    def reconcile_indexes(apply):
        """Check declared query indexes and optionally create missing ones.

        Exits 1 if any declared index is still missing afterwards.

        Usage:
            flask reconcile-indexes
            flask reconcile-indexes --apply
        """
        from fulfillment.services.index_service import CHECKED, CREATED, MISSING, reconcile

        report = reconcile(apply=apply)

        for result in report.results:
            name = f"{result.index.index_name} on {result.index.describe()}"
            if result.outcome == CHECKED:
                click.echo(f"  ✓ {name}")
            elif result.outcome == MISSING:
                click.echo(f"  MISSING {name}")
            elif result.outcome == CREATED:
                click.echo(f"  CREATED {name}")
            else:
                click.echo(f"  FAILED {name}: {result.error}")

        click.echo("")
        click.echo(report.summary())
        if not apply and report.missing:
            click.echo("Run with --apply to create the missing indexes.")

        if report.still_missing:
            raise SystemExit(1)

    @app.cli.command("retry-webhooks")
    @click.option("--limit", type=int, default=None, help="Max entries to re-attempt this pass.")
    def retry_webhooks(limit):
        """Re-attempt pending carrier webhooks whose retry time has come.

        Meant to run from cron every minute or so.
        """
        from fulfillment.services.webhook_service import process_due_retries

        summary = process_due_retries(limit=limit)
        click.echo(
            f"{summary['attempted']} attempted: {summary['processed']} processed, "
            f"{summary['pending']} rescheduled, {summary['failed']} failed, "
            f"{summary['duplicate']} stale"
        )

    @app.cli.command("purge-counters")
    @click.option("--days", type=int, default=None, help="Retention window in days.")
    @click.option("--dry-run", is_flag=True, help="Show what would be purged without deleting.")
    def purge_counters(days, dry_run):
        """Delete daily sequence counters older than the retention window."""
        from fulfillment.services.counter_service import purge_stale_counters

        days = days if days is not None else app.config["COUNTER_RETENTION_DAYS"]
        keys = purge_stale_counters(days, dry_run=dry_run)
        if dry_run:
            click.echo(f"[DRY RUN] Would purge {len(keys)} counter(s): {', '.join(keys)}")
            return
        db.session.commit()
        click.echo(f"Purged {len(keys)} counter(s).")
