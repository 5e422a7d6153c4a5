import os
import logging

import click
from flask import Flask, jsonify

from app.config import config_by_name
from app.extensions import db, migrate, limiter


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from app import models  # noqa: F401

    # --- Register blueprints ---
    from app.blueprints.webhooks import webhooks_bp
    from app.blueprints.payments import payments_bp

    app.register_blueprint(webhooks_bp)
    app.register_blueprint(payments_bp)

    # --- Health check ---
    @app.route("/health")
    def health():
        return jsonify({"status": "ok"})

    # --- Error handlers (JSON API) ---
    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        headers = {}
        if getattr(e, "valid_methods", None):
            headers["Allow"] = ", ".join(e.valid_methods)
        return jsonify({"error": "Method not allowed"}), 405, headers

    @app.errorhandler(500)
    def server_error(e):
        return jsonify({"error": "Internal server error"}), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"
        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"
        # Control referrer information
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        # JSON only, nothing to embed or execute
        response.headers["Content-Security-Policy"] = (
            "default-src 'none'; frame-ancestors 'none';"
        )
        # Strict Transport Security (only in production)
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("expire-memberships")
    @click.option("--dry-run", is_flag=True, help="List lapsed memberships without changing them.")
    def expire_memberships(dry_run):
        """Mark active memberships whose paid period has ended as expired.

        Usage:
            flask expire-memberships
            flask expire-memberships --dry-run
        """
        from app.services.membership_service import expire_lapsed_memberships

        rows = expire_lapsed_memberships(dry_run=dry_run)
        for row in rows:
            click.echo(
                f"  {row['user_id']}  {row['plan']:<8} sub={row['subscription_id']}"
                f"  ended {row['current_period_end']}"
            )
        verb = "would expire" if dry_run else "expired"
        click.echo(f"{len(rows)} membership(s) {verb}.")

    @app.cli.command("verify-stripe-prices")
    def verify_stripe_prices():
        """Verify configured plan price IDs exist and are usable (same mode as key).

        Uses STRIPE_SECRET_KEY and STRIPE_{BASIC,PREMIUM,PRO}_PRICE_ID from env.
        Run with prod env vars to confirm Live prices; run with test vars for Test mode.
        """
        import stripe as _stripe

        from app.services.stripe_service import PRICE_CONFIG_KEYS

        api_key = app.config.get("STRIPE_SECRET_KEY")
        if not api_key:
            click.echo("ERROR: STRIPE_SECRET_KEY is not set.")
            return
        key_mode = "Live" if api_key.startswith("sk_live_") else "Test"
        click.echo(f"Stripe key mode: {key_mode}")
        click.echo("")

        for plan, config_key in PRICE_CONFIG_KEYS.items():
            price_id = app.config.get(config_key)
            click.echo(f"{config_key} ({plan}):")
            if not price_id:
                click.echo("  (not set)")
                click.echo("")
                continue
            try:
                price = _stripe.Price.retrieve(price_id, api_key=api_key)
                livemode = getattr(price, "livemode", "?")
                recurring = getattr(price, "recurring", None)
                click.echo(f"  {price_id}")
                click.echo(f"    exists=True, livemode={livemode}, recurring={bool(recurring)}")
                if livemode is True and key_mode != "Live":
                    click.echo("    WARNING: This price is Live but your key is Test.")
                elif livemode is False and key_mode == "Live":
                    click.echo("    WARNING: This price is Test but your key is Live.")
            except _stripe.InvalidRequestError as e:
                click.echo(f"  {price_id}")
                click.echo(f"    ERROR: {e}")
            click.echo("")
