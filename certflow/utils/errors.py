"""Standardised API error responses.

Usage
-----
    from certflow.utils.errors import api_error, error_from_exception, E

    return api_error(E.NOT_FOUND, "Document not found")
    return api_error(E.VALIDATION_REQUIRED, "decision is required")
    return error_from_exception(exc)       # any WorkflowError
"""

from __future__ import annotations

from flask import jsonify

from certflow.core.exceptions import (
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
    WorkflowError,
)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention:
     • ERR_  prefix for every code
     • the code tells a client *which* kind of failure it is; the HTTP
       status alone does not distinguish a lost race from a bad request
    """

    # Validation – HTTP 400 (malformed) / 422 (business rule)
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Identity – HTTP 401 / 403
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    FORBIDDEN = "ERR_FORBIDDEN"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    # Throttling – HTTP 429
    RATE_LIMITED = "ERR_RATE_LIMITED"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 422,
    E.UNAUTHENTICATED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.CONFLICT_STATE: 409,
    E.RATE_LIMITED: 429,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}

# ── Workflow exception → error code ──────────────────────────────────
_EXCEPTION_CODES: list[tuple[type, str]] = [
    (UnauthorizedError, E.FORBIDDEN),
    (NotFoundError, E.NOT_FOUND),
    (InvalidStateError, E.CONFLICT_STATE),
    (ValidationError, E.VALIDATION_INVALID),
]


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (field errors, current status, etc.).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def error_from_exception(exc: WorkflowError):
    """Map a workflow exception onto its standard JSON response."""
    code = E.INTERNAL
    for exc_type, mapped in _EXCEPTION_CODES:
        if isinstance(exc, exc_type):
            code = mapped
            break

    details = getattr(exc, "details", None)
    if isinstance(exc, UnauthorizedError):
        details = {"capability": exc.capability, "reason": exc.reason}
    elif isinstance(exc, NotFoundError):
        details = {"resource": exc.resource, "resource_id": exc.resource_id}
    return api_error(code, str(exc), details=details or None)
