import logging

from flask import Flask, jsonify
from sqlalchemy import inspect
from config import Config
from routes import (
    health_bp, catalog_bp, booking_bp, account_bp, content_bp,
    admin_bp, webhook_bp, pay_pages_bp,
)

from models import db
from flask_migrate import Migrate
from core.errors import BookingError, InvariantViolation
from utils.seed import seed_roles
from utils.auth_context import load_current_user

logger = logging.getLogger(__name__)


def create_app(overrides=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger().setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(catalog_bp)
    app.register_blueprint(booking_bp)
    app.register_blueprint(account_bp)
    app.register_blueprint(content_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(webhook_bp)
    app.register_blueprint(pay_pages_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    # Seed default roles once the schema exists (idempotent)
    with app.app_context():
        if inspect(db.engine).has_table("roles"):
            seed_roles()

    @app.before_request
    def _load_user():
        load_current_user()

    @app.errorhandler(BookingError)
    def _booking_error(exc):
        db.session.rollback()
        if isinstance(exc, InvariantViolation):
            logger.critical("Invariant violation: %s %s", exc.message, exc.details or "")
        return jsonify(exc.to_dict()), exc.status_code

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        if resp.mimetype == "application/json":
            resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_cli(app)

    return app

#-------------------------
import click
from models.user import User, Role
from core import events, ledger, orchestrator, reservations
from security.rbac import ROLE_ADMIN
from utils.emailer import send_email, booking_event_email
from utils.seed import seed_catalog

def register_cli(app):
    @app.cli.command("make-admin")
    @click.argument("identifier")
    def make_admin(identifier):
        """Promote a user to ADMIN by email or user id (bootstrap)."""
        identifier = identifier.strip()
        user = db.session.get(User, identifier) or User.query.filter_by(email=identifier.lower()).first()
        if not user:
            click.echo("User not found")
            return

        admin_role = Role.query.filter_by(name=ROLE_ADMIN).first()
        if not admin_role:
            admin_role = Role(name=ROLE_ADMIN)
            db.session.add(admin_role)
            db.session.commit()

        if admin_role not in user.roles:
            user.roles.append(admin_role)
            db.session.commit()

        click.echo(f"{user.email or user.id} promoted to ADMIN")

    @app.cli.command("seed-catalog")
    def seed_catalog_command():
        """Create roles and the default services."""
        seed_roles()
        added = seed_catalog()
        click.echo(f"{added} service(s) added")

    @app.cli.command("sweep-holds")
    def sweep_holds():
        """Release expired holds and expire the drafts that owned them."""
        released = reservations.sweep_expired_holds()
        drafts = orchestrator.expire_stale_drafts()
        click.echo(f"{released} hold(s) released, {drafts} draft(s) expired")

    @app.cli.command("release-unpaid")
    def release_unpaid():
        """Cancel pay-later bookings still unpaid close to their session."""
        released = ledger.release_unpaid_pay_later()
        click.echo(f"{len(released)} pay-later booking(s) released")

    @app.cli.command("dispatch-events")
    @click.option("--limit", default=100, show_default=True)
    def dispatch_events(limit):
        """Email pending booking notifications."""
        def send(event):
            to_email, subject, body = booking_event_email(event)
            return send_email(to_email, subject, body)

        sent = events.dispatch_pending(send, limit=limit)
        click.echo(f"{sent} notification(s) sent")

#-------------------------




if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
