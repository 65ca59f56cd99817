"""
Flask application factory for the PO Tracker.

- JSON API only (no server-rendered pages).
- SQLite for development, any SQLAlchemy URL in production (DATABASE_URL).
- The UI is never trusted; roles are enforced on routes AND inside the core.

Errors:
- Domain errors (po_tracker.errors) become {"error": code, "message": ...}
  with the status code carried by the exception class.
"""

from __future__ import annotations

import logging

import click
from flask import Flask, jsonify

from .errors import POTrackerError
from .extensions import csrf, db, login_manager, migrate
from .models import User
from .security import guest_readonly_guard

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _configure_logging(app: Flask) -> None:
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger("po_tracker").setLevel(level)


def create_app(config_object: str | object = "config.Config") -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)
    _configure_logging(app)

    # Extensions
    db.init_app(app)
    migrate.init_app(app, db)
    csrf.init_app(app)
    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id: str) -> User | None:
        """Load user for Flask-Login; inactive users are treated as logged out."""
        try:
            user = db.session.get(User, int(user_id))
        except ValueError:
            return None
        if user is None or not user.is_active:
            return None
        return user

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"error": "UNAUTHORIZED", "message": "Login required"}), 401

    # ----------------------------------------------------------------------
    # GLOBAL SECURITY NET: guests are read-only (server-side).
    # ----------------------------------------------------------------------
    app.before_request(guest_readonly_guard)

    # ----------------------------------------------------------------------
    # Errors
    # ----------------------------------------------------------------------
    @app.errorhandler(POTrackerError)
    def handle_domain_error(error: POTrackerError):
        db.session.rollback()
        logger.info("%s: %s", error.code, error.message)
        return jsonify(error.to_dict()), error.http_status

    # ----------------------------------------------------------------------
    # Blueprints
    # ----------------------------------------------------------------------
    from .blueprints.auth import auth_bp
    from .blueprints.budgets import budgets_bp
    from .blueprints.dashboard import dashboard_bp
    from .blueprints.notifications import notifications_bp
    from .blueprints.purchase_orders import purchase_orders_bp
    from .blueprints.transactions import transactions_bp
    from .blueprints.users import users_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(purchase_orders_bp)
    app.register_blueprint(budgets_bp)
    app.register_blueprint(transactions_bp)
    app.register_blueprint(notifications_bp)
    app.register_blueprint(dashboard_bp)

    # ----------------------------------------------------------------------
    # CLI
    # ----------------------------------------------------------------------
    @app.cli.command("seed-sub-orgs")
    def seed_sub_orgs_command():
        """Seed the default sub-organizations (idempotent)."""
        from .budgets import seed_default_sub_orgs

        added = seed_default_sub_orgs()
        click.echo(f"Default sub-organizations seeded ({added} added).")

    @app.cli.command("create-admin")
    @click.argument("email")
    @click.argument("display_name")
    @click.argument("password")
    def create_admin_command(email, display_name, password):
        """Create an admin user."""
        from .users import create_admin

        try:
            user = create_admin(email, display_name, password)
        except POTrackerError as exc:
            raise click.ClickException(exc.message) from exc
        click.echo(f"Admin {user.email} created.")

    @app.cli.command("import-transactions")
    @click.argument("path", type=click.Path(exists=True, dir_okay=False))
    def import_transactions_command(path):
        """Import posted debits from an .xlsx or .csv file."""
        from .transactions import import_transactions, read_transaction_rows

        try:
            with open(path, "rb") as fh:
                rows = read_transaction_rows(fh, path)
        except POTrackerError as exc:
            raise click.ClickException(exc.message) from exc

        result = import_transactions(rows)
        click.echo(f"Processed: {result.processed}, skipped: {result.skipped}")
        for message in result.errors:
            click.echo(f"  {message}", err=True)

    @app.cli.command("recalc-budgets")
    @click.option(
        "--include-provisional",
        is_flag=True,
        help="Also count purchased POs that no transaction is linked to.",
    )
    def recalc_budgets_command(include_provisional):
        """Recompute budget_spent for every sub-organization."""
        from .budgets import recalculate_budgets

        spent = recalculate_budgets(include_provisional=include_provisional)
        click.echo(f"Recalculated {len(spent)} sub-organizations.")

    @app.route("/")
    def index():
        return jsonify({"app": app.config.get("APP_NAME", "PO Tracker"), "status": "ok"})

    return app
