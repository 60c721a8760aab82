"""
app/__init__.py — Flask application factory.

Pattern: create_app(config_name) creates and returns a configured Flask app.
         Nothing is initialised at import time, so tests can build isolated
         app instances.

Responsibilities:
  1. Load configuration from config_by_name[config_name]
  2. Configure logging from LOG_LEVEL
  3. Initialise extensions (SQLAlchemy, Marshmallow) via init_app()
  4. Register all route blueprints under /api/v1
  5. Register global error handlers (AppError → JSON, Exception → 500)
  6. Serialise Decimal as string (money never travels as a JSON number)
"""

from __future__ import annotations

import logging.config
from decimal import Decimal

from flask import Flask, jsonify, request
from flask.json.provider import DefaultJSONProvider
from marshmallow import ValidationError
from werkzeug.exceptions import HTTPException

from groupledger.config import config_by_name, validate_production_config


# ── Custom JSON provider ───────────────────────────────────────────────────

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
    """
    app = Flask(__name__)
    app.json_provider_class = DecimalJSONProvider
    app.json = DecimalJSONProvider(app)

    # ── Configuration ──────────────────────────────────────────────────────
    config_class = config_by_name.get(config_name, config_by_name["development"])
    app.config.from_object(config_class)

    if config_name == "production":
        validate_production_config(app)  # raises ValueError if misconfigured

    _configure_logging(app.config["LOG_LEVEL"])

    # ── Extensions ─────────────────────────────────────────────────────────
    from groupledger.app.extensions import db, ma
    db.init_app(app)
    ma.init_app(app)

    # ── Model registration ─────────────────────────────────────────────────
    # Populates SQLAlchemy's MetaData so db.create_all() sees every table.
    with app.app_context():
        from groupledger.app.models import (  # noqa: F401
            expense,
            group,
            membership,
            payment,
            split,
            user,
        )

    _register_blueprints(app)
    _register_error_handlers(app)
    _register_cors(app)

    return app


def _configure_logging(level: str) -> None:
    """Root handler on stderr; module loggers propagate to it."""
    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
            },
        },
        "root": {
            "level": level,
            "handlers": ["console"],
        },
    })


def _register_blueprints(app: Flask) -> None:
    """
    Registers all route blueprints under the /api/v1 prefix.

    The url_prefix is set here so individual route files only specify
    the path relative to their resource.
    """
    from groupledger.app.routes.balances import balances_bp
    from groupledger.app.routes.expenses import expenses_bp
    from groupledger.app.routes.groups import groups_bp
    from groupledger.app.routes.payments import payments_bp
    from groupledger.app.routes.users import users_bp

    app.register_blueprint(groups_bp,   url_prefix="/api/v1/groups")
    # expenses_bp owns both /groups/<id>/expenses and /expenses/<id>.
    app.register_blueprint(expenses_bp, url_prefix="/api/v1")
    app.register_blueprint(balances_bp, url_prefix="/api/v1/groups")
    app.register_blueprint(payments_bp, url_prefix="/api/v1/groups")
    app.register_blueprint(users_bp,    url_prefix="/api/v1/users")


def _first_error(messages) -> tuple[str | None, str]:
    """
    Returns (top-level field, first message) from marshmallow's messages,
    descending into nested schemas such as the entries of `splits`.
    """
    field = None
    while True:
        if isinstance(messages, dict) and messages:
            key, messages = next(iter(messages.items()))
            if field is None and isinstance(key, str) and key != "_schema":
                field = key
        elif isinstance(messages, list) and messages:
            if isinstance(messages[0], str):
                return field, messages[0]
            messages = messages[0]
        else:
            return field, str(messages) if messages else "Invalid input."


def _register_error_handlers(app: Flask) -> None:
    """
    Registers global error handlers.

      AppError        → structured JSON error envelope with its HTTP status
      ValidationError → first failing field as MISSING_FIELD / INVALID_FIELD
                        or the registered code the schema raised (400)
      HTTPException   → werkzeug's status with the standard envelope
      Exception       → generic INTERNAL_ERROR (500); traceback logged only
    """
    from groupledger.app.errors import AppError, ErrorCode

    known_codes = {
        value for name, value in vars(ErrorCode).items() if not name.startswith("_")
    }

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        """Routes never catch AppError — they let it propagate here."""
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        field, raw_message = _first_error(error.messages)

        if raw_message in known_codes:
            code = raw_message
            message = _code_to_message(code)
        elif raw_message.startswith("Missing data for required field"):
            code = ErrorCode.MISSING_FIELD
            message = raw_message
        else:
            code = ErrorCode.INVALID_FIELD
            message = raw_message

        response_body = {"error": {"code": code, "message": message}}
        if field is not None:
            response_body["error"]["field"] = field

        return jsonify(response_body), 400

    @app.errorhandler(HTTPException)
    def handle_http_exception(error: HTTPException):
        return jsonify({
            "error": {
                "code": error.name.upper().replace(" ", "_"),
                "message": error.description,
            }
        }), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        """Stack traces never leave the server."""
        app.logger.exception("Unhandled exception: %s", error)
        return jsonify({
            "error": {
                "code": ErrorCode.INTERNAL_ERROR,
                "message": "An unexpected error occurred. Please try again later.",
            }
        }), 500


def _register_cors(app: Flask) -> None:
    """
    Adds CORS headers for browser-based local development when DEBUG or
    TESTING is on.
    """

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allow_all = bool(app.config.get("DEBUG") or app.config.get("TESTING"))

        if allow_all:
            response.headers["Access-Control-Allow-Origin"] = origin if origin else "*"
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, PATCH, DELETE, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"

        return response


def _code_to_message(code: str) -> str:
    """
    Human-readable default message for a registered code raised as a
    ValidationError message by a schema.
    """
    _messages = {
        "INVALID_AMOUNT_PRECISION":    "Amount must have at most 2 decimal places.",
        "INVALID_SPLIT_TYPE":          "split_type must be a string.",
        "UNSUPPORTED_POLICY":          "split_type must be one of 'equal', 'exact', 'percentage', 'share'.",
        "SPLITS_SENT_FOR_EQUAL_SPLIT": "Do not send a splits array when split_type is 'equal'.",
        "SPLITS_REQUIRED":             "A splits array is required for this split_type.",
        "INVALID_WEIGHT":              "Percentages and shares allow at most 4 decimal places.",
    }
    return _messages.get(code, "Invalid input.")
