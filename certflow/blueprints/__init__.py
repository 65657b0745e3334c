"""
Certificate Workflow Service
Blueprint registry and shared request helpers.

Identity comes from gateway-supplied headers; the workflow layer never
reads it from globals.  Every route resolves an ``Actor`` explicitly:

    X-User-Id      required
    X-User-Role    required   user | client | ca | admin
    X-User-Status  optional   pending | active | suspended (default active)
    X-User-Name    optional
    X-User-Email   optional
"""

import logging

from flask import jsonify, request

from certflow.core.exceptions import ValidationError, WorkflowError
from certflow.core.identity import ACTOR_STATUSES, ROLES, Actor
from certflow.utils.errors import E, api_error, error_from_exception

logger = logging.getLogger(__name__)


class MissingIdentityError(Exception):
    """Raised when the request carries no usable identity headers."""


def current_actor() -> Actor:
    """Build the calling Actor from request headers (401 when absent)."""
    user_id = (request.headers.get("X-User-Id") or "").strip()
    role = (request.headers.get("X-User-Role") or "").strip().lower()
    if not user_id or not role:
        raise MissingIdentityError("X-User-Id and X-User-Role headers are required")
    if role not in ROLES:
        raise MissingIdentityError(f"Unknown role '{role}'")
    status = (request.headers.get("X-User-Status") or "active").strip().lower()
    if status not in ACTOR_STATUSES:
        raise MissingIdentityError(f"Unknown account status '{status}'")
    return Actor(
        user_id=user_id,
        role=role,
        status=status,
        display_name=request.headers.get("X-User-Name") or None,
        email=request.headers.get("X-User-Email") or None,
    )


def json_body() -> dict:
    """Request JSON object or ValidationError."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def paginate_query(query, default_limit=50, max_limit=200):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit  : max items (default 50, capped at max_limit)
        offset : starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = query.count()
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    limit = max(limit, 1)
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    items = query.limit(limit).offset(offset).all()
    return items, total


def list_response(items, total):
    return jsonify({"items": [i.to_dict() for i in items], "total": total})


def register_error_handlers(bp):
    """Map identity and workflow exceptions to JSON errors for *bp*."""

    @bp.errorhandler(MissingIdentityError)
    def _handle_missing_identity(error):
        return api_error(E.UNAUTHENTICATED, str(error))

    @bp.errorhandler(WorkflowError)
    def _handle_workflow_error(error):
        if error.kind == "unauthorized":
            logger.info("Denied: %s", error, extra={"event_type": "access_denied"})
        return error_from_exception(error)
