"""
Certificate Workflow Service
Flask Application Factory.

Usage:
    from certflow import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import atexit
import importlib
import logging
import os

import click
from flask import Flask, abort, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from certflow.config import config
from certflow.middleware.logging_config import configure_logging
from certflow.middleware.rate_limiter import init_rate_limits
from certflow.middleware.timing import init_request_timing
from certflow.models import db
from certflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # per-blueprint limits only
    storage_uri=os.getenv("REDIS_URL", "memory://"),  # Redis in production, memory for dev
)


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

    configure_logging(app)

    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    init_request_timing(app)

    app.config.setdefault("MAX_CONTENT_LENGTH", 1 * 1024 * 1024)  # 1 MB

    @app.before_request
    def _guard_request():
        max_len = app.config.get("MAX_CONTENT_LENGTH")
        if max_len and request.content_length and request.content_length > max_len:
            abort(413, description="Request body too large")
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if request.data and "json" not in ct:
                abort(415, description="Content-Type must be application/json")

    # ── Models (registered on db.metadata) ───────────────────────────────
    from certflow.models import activity as _activity_models          # noqa: F401
    from certflow.models import certificate as _certificate_models    # noqa: F401
    from certflow.models import certificate_request as _request_models  # noqa: F401
    from certflow.models import document as _document_models          # noqa: F401
    from certflow.models import notification as _notification_models  # noqa: F401
    from certflow.models import scheduling as _scheduling_models      # noqa: F401
    from certflow.models import template as _template_models          # noqa: F401

    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite"):
        if "instance" in app.config["SQLALCHEMY_DATABASE_URI"]:
            os.makedirs(app.instance_path, exist_ok=True)
        with app.app_context():
            try:
                db.create_all()
                app.logger.info("db.create_all() completed successfully")
            except Exception as e:
                app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from certflow.blueprints.activity_bp import activity_bp
    from certflow.blueprints.certificate_bp import certificate_bp, verification_bp
    from certflow.blueprints.document_bp import document_bp
    from certflow.blueprints.health_bp import health_bp
    from certflow.blueprints.notification_bp import notification_bp, scheduler_bp
    from certflow.blueprints.request_bp import request_bp
    from certflow.blueprints.template_bp import template_bp

    app.register_blueprint(document_bp)
    app.register_blueprint(template_bp)
    app.register_blueprint(request_bp)
    app.register_blueprint(certificate_bp)
    app.register_blueprint(verification_bp)
    app.register_blueprint(activity_bp)
    app.register_blueprint(notification_bp)
    app.register_blueprint(scheduler_bp)
    app.register_blueprint(health_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("dispatch-notifications")
    @click.option("--limit", default=100, show_default=True, help="Max outbox rows to deliver.")
    def dispatch_notifications_cmd(limit):
        """Deliver queued and retryable notifications from the outbox."""
        from certflow.services.notification import NotificationService
        result = NotificationService.dispatch_pending(limit=limit)
        click.echo(f"sent={result['sent']} failed={result['failed']}")

    @app.cli.command("run-job")
    @click.argument("job_name")
    def run_job_cmd(job_name):
        """Run one registered background job now."""
        from certflow.services.scheduler_service import SchedulerService
        SchedulerService.ensure_jobs_registered()
        result = SchedulerService.run_job(job_name)
        click.echo(f"{job_name}: {result['status']}")

    # ── Health check (short form, detailed version at /health/live) ──────
    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "certflow"}

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})

    @app.errorhandler(405)
    def method_not_allowed(e):
        return api_error(E.VALIDATION_REQUIRED, "Method not allowed", status=405)

    @app.errorhandler(413)
    def too_large(e):
        return api_error(E.VALIDATION_INVALID, "Request body too large", status=413)

    @app.errorhandler(415)
    def unsupported_media(e):
        return api_error(E.VALIDATION_INVALID, "Content-Type must be application/json", status=415)

    @app.errorhandler(429)
    def rate_limited(e):
        return api_error(E.RATE_LIMITED, "Too many requests", details={"retry_after": e.description})

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    # ── Scheduler initialization (import jobs to register them) ──────────
    importlib.import_module("certflow.services.scheduled_jobs")  # registers @register_job handlers
    from certflow.services.scheduler_service import SchedulerService as _SchedulerSvc
    _SchedulerSvc.init_app(app)
    if app.config.get("SCHEDULER_ENABLED"):
        if _SchedulerSvc.start(tick_seconds=app.config.get("SCHEDULER_TICK_SECONDS", 5.0)):
            atexit.register(_SchedulerSvc.stop)

    return app
