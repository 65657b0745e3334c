"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  : simple 200 for load balancers
    GET /api/v1/health/live   : detailed health (DB, Redis, outbox, audit log)
"""

import logging
import time

from flask import Blueprint, current_app, jsonify

from certflow.models import db
from certflow.models.notification import NotificationOutbox
from certflow.services import activity_log

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Simple readiness check, always 200 if app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Detailed liveness check with dependency status."""
    checks = {}
    overall = True

    # ── Database ─────────────────────────────────────────────────────
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except Exception as exc:
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check: database failed: %s", exc)

    # ── Redis (rate limiter storage) ─────────────────────────────────
    redis_url = current_app.config.get("REDIS_URL", "")
    if redis_url and "redis" in redis_url and not current_app.testing:
        try:
            import redis as redis_lib
            t0 = time.perf_counter()
            r = redis_lib.from_url(redis_url, socket_timeout=2)
            r.ping()
            redis_ms = (time.perf_counter() - t0) * 1000
            checks["redis"] = {"status": "ok", "latency_ms": round(redis_ms, 1)}
        except Exception as exc:
            checks["redis"] = {"status": "error", "detail": str(exc)}
            # Redis is optional; overall health ignores it
    else:
        checks["redis"] = {"status": "skipped", "detail": "no REDIS_URL configured"}

    # ── Notification outbox backlog ──────────────────────────────────
    if checks["database"]["status"] == "ok":
        max_attempts = current_app.config.get("NOTIFICATION_MAX_ATTEMPTS", 5)
        checks["outbox"] = {
            "queued": NotificationOutbox.query.filter_by(status="queued").count(),
            "failed": NotificationOutbox.query.filter_by(status="failed").count(),
            "dead": NotificationOutbox.query.filter(
                NotificationOutbox.status == "failed",
                NotificationOutbox.attempts >= max_attempts,
            ).count(),
        }

    # ── Activity log append failures since start ─────────────────────
    failures = activity_log.append_failure_count()
    checks["activity_log"] = {"status": "ok" if failures == 0 else "degraded",
                              "append_failures": failures}

    checks["app"] = {
        "name": "certflow",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    status_code = 200 if overall else 503
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), status_code
