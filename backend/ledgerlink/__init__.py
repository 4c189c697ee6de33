# backend/ledgerlink/__init__.py
import logging.config
import uuid

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from .config import Config
from .errors import AccessError
from .extensions import db, migrate
from .logging_config import get_logging_config



def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    logging.config.dictConfig(
        get_logging_config(app.config["LOG_LEVEL"], app.config["LOG_FORMAT"])
    )

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Pluggable collaborators; tests replace these before the first request
    from .services import mail_service, throttle_service
    app.extensions.setdefault(mail_service.EXTENSION_KEY, mail_service.build_mailer(app.config))
    app.extensions.setdefault(
        throttle_service.EXTENSION_KEY,
        throttle_service.build_attempt_store(app.config["THROTTLE_BACKEND"]),
    )

    # Register blueprints
    from .routes.system import system_bp
    from .routes.invites import invites_bp
    from .routes.accountant_access import accountant_access_bp
    from .routes.context import context_bp
    from .routes.accountant import accountant_bp
    from .routes.memberships import memberships_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(invites_bp)
    app.register_blueprint(accountant_access_bp)
    app.register_blueprint(context_bp)
    app.register_blueprint(accountant_bp)
    app.register_blueprint(memberships_bp)

    register_error_handlers(app)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = {
            "http://localhost:3000",
            "http://127.0.0.1:3000",
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        }
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Access-Control-Allow-Credentials"] = "true"
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app


def register_error_handlers(app: Flask) -> None:
    """
    Map exceptions to JSON responses.

    - AccessError subclasses: their code and HTTP status
    - Werkzeug HTTP errors (404, 405, ...): their status, code HTTP_<status>
    - Anything else: 500 with a correlation id; details stay in the log
    """

    @app.errorhandler(AccessError)
    def handle_access_error(e: AccessError):
        return jsonify(e.to_dict()), e.http_status

    @app.errorhandler(HTTPException)
    def handle_http_exception(e: HTTPException):
        return jsonify({"error": f"HTTP_{e.code}", "message": e.description}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(e: Exception):
        correlation_id = uuid.uuid4().hex
        db.session.rollback()
        app.logger.exception(
            "Unhandled error on %s %s (correlationId=%s)",
            request.method,
            request.path,
            correlation_id,
        )
        return jsonify({
            "error": "INTERNAL_ERROR",
            "message": "Something went wrong",
            "correlationId": correlation_id,
        }), 500
