"""
Certificate Workflow Service
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for local dev when PostgreSQL is not running
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'certflow_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Generate a random key for development; production MUST use a stable env var
_DEV_SECRET = secrets.token_hex(32)


def _env_flag(name, default):
    return os.getenv(name, "true" if default else "false").lower() in ("1", "true", "yes", "on")


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    DEBUG = False
    TESTING = False

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,   # recycle connections every 5 min
        "pool_timeout": 20,    # wait max 20s for a connection from pool
    }

    # Redis (rate limiter storage)
    REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    # CORS
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # ── Workflow switches ────────────────────────────────────────────────
    # Client approval of a template writes "active" directly
    TEMPLATE_AUTO_ACTIVATE = _env_flag("TEMPLATE_AUTO_ACTIVATE", True)
    # Activating a template mints the source uploader's certificate
    TEMPLATE_AUTO_ISSUE = _env_flag("TEMPLATE_AUTO_ISSUE", True)
    # Approving a request immediately mints its certificate (approved → issued)
    AUTO_ISSUE_ON_APPROVAL = _env_flag("AUTO_ISSUE_ON_APPROVAL", False)

    # ── Request reviewers ────────────────────────────────────────────────
    # CA user ids that submitted requests are assigned to (comma-separated)
    REQUEST_REVIEWERS = [r.strip() for r in os.getenv("REQUEST_REVIEWERS", "").split(",") if r.strip()]
    # Recipient of "new request" notices when no reviewer can be assigned
    REQUEST_REVIEW_QUEUE = os.getenv("REQUEST_REVIEW_QUEUE", "ca-review-queue")

    # ── Notifications ────────────────────────────────────────────────────
    # Deliver outbox rows right after the transition commits
    NOTIFICATION_DISPATCH_INLINE = _env_flag("NOTIFICATION_DISPATCH_INLINE", True)
    NOTIFICATION_MAX_ATTEMPTS = int(os.getenv("NOTIFICATION_MAX_ATTEMPTS", "5"))
    NOTIFICATION_DRAIN_BATCH = int(os.getenv("NOTIFICATION_DRAIN_BATCH", "100"))

    # ── Activity log ─────────────────────────────────────────────────────
    ACTIVITY_QUERY_MAX_LIMIT = int(os.getenv("ACTIVITY_QUERY_MAX_LIMIT", "200"))

    # ── Scheduler ────────────────────────────────────────────────────────
    SCHEDULER_ENABLED = _env_flag("SCHEDULER_ENABLED", False)
    SCHEDULER_TICK_SECONDS = float(os.getenv("SCHEDULER_TICK_SECONDS", "5"))


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = (
        _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else _SQLITE_DEV
    )
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    # In-memory SQLite runs on a single static connection; pool sizing does not apply
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False
    SCHEDULER_ENABLED = False
    TEMPLATE_AUTO_ACTIVATE = True
    TEMPLATE_AUTO_ISSUE = True
    AUTO_ISSUE_ON_APPROVAL = False
    REQUEST_REVIEWERS = []
    REQUEST_REVIEW_QUEUE = "ca-review-queue"
    NOTIFICATION_DISPATCH_INLINE = True
    NOTIFICATION_MAX_ATTEMPTS = 3


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    # Railway/Heroku use postgres:// but SQLAlchemy 2.0 requires postgresql://
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else None
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # Must be set explicitly in production

    # Override engine options with PostgreSQL statement timeout
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
        "connect_args": {
            "options": "-c statement_timeout=30000",  # 30s query timeout
        },
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


# Configuration mapping: environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
