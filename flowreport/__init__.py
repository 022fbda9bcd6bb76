"""
Flow Metrics Report
Flask Application Factory.

Usage:
    from flowreport import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, abort, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from flowreport.config import config
from flowreport.core.exceptions import (
    ConflictError,
    DataUnavailableError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)
from flowreport.integrations.pipedrive_gateway import pipedrive_gateway
from flowreport.middleware.logging_config import configure_logging
from flowreport.middleware.rate_limiter import init_rate_limits
from flowreport.middleware.timing import init_request_timing
from flowreport.models import db
from flowreport.services import cache_service
from flowreport.utils.errors import E, api_error

logger = logging.getLogger(__name__)

migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit — apply per-blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def _register_cli(app):
    @app.cli.command("sync-deal-flow")
    @click.option("--mode", type=click.Choice(["full", "incremental"]), default="incremental")
    @click.option("--days-back", type=click.IntRange(1, 365), default=None)
    @click.option("--batch-size", type=click.IntRange(1, 40), default=40)
    def sync_deal_flow_cmd(mode, days_back, batch_size):
        """Bulk-sync Pipedrive deal flow (schedule via cron)."""
        from flowreport.services.deal_flow_service import sync_deals
        run = sync_deals(mode=mode, days_back=days_back, batch_size=batch_size,
                         triggered_by="scheduled")
        logger.info("Sync run %s %s: %d/%d deals, %d failed", run["id"], run["status"],
                    run["successful_deals"], run["total_deals"], run["failed_deals"])


def _register_error_handlers(app):
    """Map domain exceptions and HTTP errors to the JSON error envelope."""

    @app.errorhandler(NotFoundError)
    def _not_found_error(e):
        return api_error(E.NOT_FOUND, str(e))

    @app.errorhandler(ValidationError)
    def _validation_error(e):
        return api_error(E.VALIDATION_INVALID, str(e), details=e.details)

    @app.errorhandler(ConflictError)
    def _conflict_error(e):
        return api_error(E.CONFLICT_DUPLICATE, str(e), details={"field": e.field})

    @app.errorhandler(DataUnavailableError)
    def _data_unavailable(e):
        logger.error("Data unavailable (%s): %s", e.source, e)
        return api_error(E.DATA_UNAVAILABLE, str(e), details={"source": e.source} if e.source else None)

    @app.errorhandler(ExternalServiceError)
    def _external_service(e):
        logger.error("Pipedrive call failed: %s", e)
        details = {"upstream_status": e.status_code} if e.status_code else None
        return api_error(E.EXTERNAL_SERVICE, str(e), details=details)

    @app.errorhandler(404)
    def _http_not_found(e):
        return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})

    @app.errorhandler(405)
    def _method_not_allowed(e):
        return api_error(E.VALIDATION_INVALID, "Method not allowed", status=405)

    @app.errorhandler(415)
    def _unsupported_media(e):
        return api_error(E.VALIDATION_INVALID, e.description, status=415)

    @app.errorhandler(429)
    def _rate_limited(e):
        return api_error(E.VALIDATION_INVALID, "Too many requests", status=429,
                         details={"retry_after": e.description})

    @app.errorhandler(500)
    def _server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    cache_service.init_cache(app)
    pipedrive_gateway.init_app(app)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── Request guards (input length + Content-Type) ─────────────────────
    app.config.setdefault("MAX_CONTENT_LENGTH", 1024 * 1024)  # 1 MB

    @app.before_request
    def _guard_request():
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if request.data and "json" not in ct:
                abort(415, description="Content-Type must be application/json")

    # ── Import all models so Alembic can detect them ─────────────────────
    from flowreport.models import deal_flow as _deal_flow_models        # noqa: F401
    from flowreport.models import flow_metrics as _flow_metrics_models  # noqa: F401
    from flowreport.models import sync_run as _sync_run_models          # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    if config_name != "testing":
        os.makedirs(app.instance_path, exist_ok=True)
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from flowreport.blueprints.cache_bp import cache_bp
    from flowreport.blueprints.flow_bp import flow_bp
    from flowreport.blueprints.flow_config_bp import flow_config_bp
    from flowreport.blueprints.health_bp import health_bp
    from flowreport.blueprints.pipedrive_bp import pipedrive_bp
    from flowreport.blueprints.qr_bp import qr_bp

    app.register_blueprint(flow_bp)
    app.register_blueprint(flow_config_bp)
    app.register_blueprint(pipedrive_bp)
    app.register_blueprint(cache_bp)
    app.register_blueprint(qr_bp)
    app.register_blueprint(health_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    _register_cli(app)

    _register_error_handlers(app)

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
