"""
app/__init__.py — Flask application factory.

Pattern: create_app(config_name) creates and returns a configured Flask app.
         Nothing is initialised at import time — this enables:
           - Multiple isolated test app instances
           - Clean separation between app creation and app startup
           - Alembic to load metadata without starting the full server

Responsibilities:
  1. Load configuration from config_by_name[config_name]
  2. Set the log level from LOG_LEVEL
  3. Initialise extensions (SQLAlchemy, Marshmallow) via init_app()
  4. Register all route blueprints under /api/v1
  5. Register global error handlers (AppError → JSON, Exception → 500)
  6. Register a custom JSON provider to serialise Decimal as string
  7. Register the `flask scan-delays` command

Note on model imports:
  All model classes are imported inside create_app() so that SQLAlchemy's
  metadata is populated before Alembic or db.create_all() inspects it.
  They are not used directly here — the import side-effect is sufficient.
"""

from __future__ import annotations

import logging
import traceback
from decimal import Decimal

import click
from flask import Flask, jsonify
from flask.json.provider import DefaultJSONProvider
from marshmallow import ValidationError

from splitcredit.config import config_by_name, validate_production_config


# ── Custom JSON provider ───────────────────────────────────────────────────
# Flask's default JSON encoder does not handle Decimal.
# All monetary amounts are serialised as strings to preserve precision.

class DecimalJSONProvider(DefaultJSONProvider):
    """
    Extends Flask's default JSON provider to serialise Decimal as str.

    Example: Decimal("10.50") → "10.50" (not 10.5 or 10.500000001)
    """

    def default(self, o):
        if isinstance(o, Decimal):
            return str(o)
        return super().default(o)


# ── Application factory ────────────────────────────────────────────────────

def create_app(config_name: str = "development") -> Flask:
    """
    Creates and returns a configured Flask application instance.

    Args:
        config_name: One of "development", "testing", "production".
                     Resolved via config_by_name in config.py.
                     Defaults to "development".

    Returns:
        A fully configured Flask app ready to serve requests.
    """
    app = Flask(__name__)
    app.json_provider_class = DecimalJSONProvider
    app.json = DecimalJSONProvider(app)

    # ── Configuration ──────────────────────────────────────────────────────
    config_class = config_by_name.get(config_name, config_by_name["development"])
    app.config.from_object(config_class)

    if config_name == "production":
        validate_production_config(app)  # raises ValueError if misconfigured

    _configure_logging(app)

    # ── Extensions ─────────────────────────────────────────────────────────
    # Import here (not at module top) to avoid circular imports.
    from splitcredit.app.extensions import db, ma
    db.init_app(app)
    ma.init_app(app)

    # ── Model registration ─────────────────────────────────────────────────
    with app.app_context():
        from splitcredit.app.models import (  # noqa: F401
            activity,
            credit_history,
            credit_state,
            expense,
            group,
            membership,
            pending_member,
            settlement,
            split,
            user,
        )

    _register_blueprints(app)
    _register_error_handlers(app)
    _register_commands(app)

    return app


def _configure_logging(app: Flask) -> None:
    """
    Applies LOG_LEVEL to the app logger and to the package loggers.

    Services log through logging.getLogger(__name__), which puts them under
    the "splitcredit" hierarchy.
    """
    level = app.config.get("LOG_LEVEL", "INFO")
    app.logger.setLevel(level)
    logging.getLogger("splitcredit").setLevel(level)


def _register_blueprints(app: Flask) -> None:
    """
    Registers all route blueprints under the /api/v1 prefix.

    The url_prefix is set here so individual route files only specify
    the path relative to their resource.
    """
    from splitcredit.app.routes.balances import balances_bp
    from splitcredit.app.routes.credit import credit_bp
    from splitcredit.app.routes.expenses import expenses_bp
    from splitcredit.app.routes.reconciliation import reconciliation_bp
    from splitcredit.app.routes.settlements import settlements_bp

    # expenses_bp and settlements_bp are registered at /api/v1 because each
    # owns both group-scoped paths (/groups/<id>/...) and item paths
    # (/expenses/<id>, /settlements/<id>/complete).
    app.register_blueprint(expenses_bp,       url_prefix="/api/v1")
    app.register_blueprint(settlements_bp,    url_prefix="/api/v1")
    app.register_blueprint(balances_bp,       url_prefix="/api/v1/groups")
    app.register_blueprint(credit_bp,         url_prefix="/api/v1/credit")
    app.register_blueprint(reconciliation_bp, url_prefix="/api/v1/reconciliation")


def _register_error_handlers(app: Flask) -> None:
    """
    Registers global error handlers.

    Handlers:
      AppError        → structured JSON error envelope with the correct HTTP status
      ValidationError → marshmallow schema errors formatted as MISSING_FIELD /
                        INVALID_FIELD responses (400)
      Exception       → generic INTERNAL_ERROR (500); full traceback logged

    Stack traces never leave the server. The traceback is written to the
    app logger only.
    """
    from splitcredit.app.errors import AppError, ErrorCode

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        """
        Converts an AppError raised anywhere in the request lifecycle
        (middleware, service, route) into the standard error envelope.

        Routes never catch AppError — they let it propagate here.
        """
        if error.http_status >= 500:
            app.logger.error("%r", error)
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        """
        Converts marshmallow ValidationError into the standard error envelope.

        Only the FIRST error is returned: one error, not many. Nested
        messages (e.g. splits.0.amount) are followed down to the first leaf.

        The error code from the ValidationError message is used directly if it
        matches a known ErrorCode constant; otherwise INVALID_FIELD is used.
        """
        field, raw_message = _first_error(error.messages)
        known_codes = set(vars(ErrorCode).values())

        if raw_message in known_codes:
            code = raw_message
        elif str(raw_message).startswith("Missing data for required field"):
            code = ErrorCode.MISSING_FIELD
        else:
            code = ErrorCode.INVALID_FIELD

        response_body = {
            "error": {
                "code": code,
                "message": _code_to_message(code) if raw_message in known_codes
                else raw_message,
            }
        }
        if field is not None:
            response_body["error"]["field"] = field

        return jsonify(response_body), 400

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        """
        Catches all unhandled exceptions and returns a generic 500 response.

        Werkzeug HTTP exceptions (404 for an unknown URL, 405) keep their
        own status and are not logged as failures.
        """
        from werkzeug.exceptions import HTTPException

        if isinstance(error, HTTPException):
            return error

        app.logger.error(
            "Unhandled exception: %s\n%s",
            str(error),
            traceback.format_exc(),
        )
        return jsonify({
            "error": {
                "code": ErrorCode.INTERNAL_ERROR,
                "message": "An unexpected error occurred. Please try again later.",
            }
        }), 500


def _register_commands(app: Flask) -> None:
    """
    `flask scan-delays` — run the delay penalty scan for every debtor.

    Meant for a scheduler (cron, a k8s CronJob). Repeat runs are harmless:
    a tier already charged for a settlement is not charged again.
    """

    @app.cli.command("scan-delays")
    def scan_delays_command():
        from splitcredit.app.extensions import db
        from splitcredit.app.services.credit_score_service import scan_all_pending_delays
        from splitcredit.app.services.transactions import run_in_transaction

        penalties = run_in_transaction(
            db.session,
            lambda: scan_all_pending_delays(db.session),
            attempts=app.config["CONFLICT_RETRY_LIMIT"],
        )
        for penalty in penalties:
            click.echo(
                f"settlement={penalty.settlement_id} days={penalty.days_delayed} "
                f"tier={penalty.tier} score={penalty.score.new_score}"
                + (" (duplicate)" if penalty.score.duplicate else "")
            )
        click.echo(f"{len(penalties)} penalty event(s) processed.")


def _first_error(messages) -> tuple[str | None, str]:
    """
    Walks a marshmallow messages structure to its first leaf.

    {"amount": ["INVALID_AMOUNT_PRECISION"]}      → ("amount", "INVALID_AMOUNT_PRECISION")
    {"splits": {0: {"amount": ["..."]}}}          → ("splits", "...")
    {"_schema": ["..."]}                          → (None, "...")
    """
    field = None
    current = messages
    while True:
        if isinstance(current, dict):
            if not current:
                return field, "Invalid input."
            key, current = next(iter(current.items()))
            if field is None and isinstance(key, str) and key != "_schema":
                field = key
        elif isinstance(current, list):
            if not current:
                return field, "Invalid value."
            current = current[0]
        else:
            return field, str(current)


def _code_to_message(code: str) -> str:
    """
    Returns a human-readable default message for a known error code.
    Used when a ValidationError message IS the error code constant itself
    (e.g. INVALID_AMOUNT_PRECISION raised as ValidationError in schemas).
    """
    _messages = {
        "INVALID_AMOUNT_PRECISION": "Amount must have at most 2 decimal places.",
        "INVALID_CATEGORY": "The category value is not valid.",
        "INVALID_SPLIT_MODE": "split_mode must be 'equal' or 'custom'.",
        "INVALID_CREDIT_REASON": "The credit reason is not a known score event.",
        "SPLITS_SENT_FOR_EQUAL_MODE": "Do not send a splits array when split_mode is 'equal'.",
        "DUPLICATE_SPLIT_PARTICIPANT": "The same participant appears more than once in the splits array.",
    }
    return _messages.get(code, "Invalid input.")
