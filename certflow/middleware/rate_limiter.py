"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in certflow/__init__.py with no default
limits; this module applies granular limits per route category.

Limits are keyed by the calling identity (X-User-Id) when present, so
several users behind one proxy do not share a bucket.

Usage:
    from certflow.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import request as flask_request

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"
VERIFY_LIMIT = "30/minute"


def actor_or_ip_key():
    """Rate limit key: acting user id if supplied, else remote IP."""
    user_id = flask_request.headers.get("X-User-Id")
    if user_id:
        return f"user:{user_id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits:
        - Workflow endpoints:     60/minute (state transitions)
        - Activity / notifications: 200/minute (polling reads)
        - Public verification:    30/minute (anonymous, enumeration guard)
        - Health check:           exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    for bp_name in ("documents", "templates", "requests", "certificates", "jobs"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT, key_func=actor_or_ip_key)(bp)

    for bp_name in ("activities", "notifications"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(READ_LIMIT, key_func=actor_or_ip_key)(bp)

    bp = app.blueprints.get("verification")
    if bp:
        limiter.limit(VERIFY_LIMIT)(bp)

    # Health check is exempt from rate limiting
    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured: workflow: %s, reads: %s, verify: %s",
        WRITE_LIMIT, READ_LIMIT, VERIFY_LIMIT,
    )
