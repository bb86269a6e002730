"""
Data Room Governance Engine
Flask Application Factory.

Usage:
    from dataroom import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from dataroom.config import config
from dataroom.core.exceptions import DataRoomError
from dataroom.middleware.logging_config import configure_logging
from dataroom.middleware.rate_limiter import init_rate_limits
from dataroom.middleware.timing import init_request_timing
from dataroom.services.dataroom import DataRoom
from dataroom.utils.errors import error_response

logger = logging.getLogger(__name__)

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit; applied per blueprint
    storage_uri=os.getenv("RATELIMIT_STORAGE_URI", "memory://"),
)


def create_app(config_name=None, *, dataroom=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.
        dataroom:    Pre-built DataRoom (tests inject one with a fake clock
                     and notifier). Built from the app config when omitted.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__)
    # Instantiated so ProductionConfig can refuse to start without its env vars
    app.config.from_object(config[config_name]())

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Governance engine ────────────────────────────────────────────────
    (dataroom or DataRoom.from_config(app.config)).init_app(app)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── Blueprints ───────────────────────────────────────────────────────
    from dataroom.blueprints.approval_bp import approval_bp
    from dataroom.blueprints.audit_bp import audit_bp
    from dataroom.blueprints.document_bp import document_bp
    from dataroom.blueprints.health_bp import health_bp
    from dataroom.blueprints.share_bp import share_bp
    from dataroom.blueprints.share_link_bp import share_link_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(document_bp)
    app.register_blueprint(share_bp)
    app.register_blueprint(share_link_bp)
    app.register_blueprint(approval_bp)
    app.register_blueprint(audit_bp)

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(DataRoomError)
    def governance_error(e):
        return error_response(e)

    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
