"""
Workflow exception hierarchy.

Every workflow operation fails with exactly one of four exception types.
Blueprints register handlers against these types once and get consistent
HTTP status codes everywhere:

    UnauthorizedError  → 403  caller lacks the capability or is not active
    NotFoundError      → 404  referenced entity does not exist
    InvalidStateError  → 409  status precondition failed (incl. lost CAS race)
    ValidationError    → 422  well-formed input that breaks a business rule

The first and last are fixable by the user; InvalidStateError means the
entity changed underneath the caller and should be re-read; NotFoundError
means it is gone.  ``code`` carries the machine-readable variant.

Usage:
    from certflow.core.exceptions import InvalidStateError, NotFoundError

    raise NotFoundError(resource="Document", resource_id=doc_id)
    raise InvalidStateError("Document", doc_id, current="verified", expected={"pending"})
"""


class WorkflowError(Exception):
    """Base class for the four workflow failure kinds."""

    code = "ERR_INTERNAL"
    kind = "internal"


class UnauthorizedError(WorkflowError):
    """Raised when the acting identity may not perform the operation.

    Args:
        actor_id: Identity that attempted the action.
        capability: Operation name that was denied (e.g. "review_document").
        reason: Human-readable detail ("role 'user' not in ['admin', 'ca']").
    """

    code = "ERR_FORBIDDEN"
    kind = "unauthorized"

    def __init__(self, actor_id: str | None, capability: str, reason: str | None = None) -> None:
        self.actor_id = actor_id
        self.capability = capability
        self.reason = reason
        msg = f"Actor {actor_id!r} may not {capability}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class NotFoundError(WorkflowError):
    """Raised when a requested entity does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "Document").
        resource_id: The PK that was looked up.
    """

    code = "ERR_NOT_FOUND"
    kind = "not_found"

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class InvalidStateError(WorkflowError):
    """Raised when the entity's current status does not allow the transition.

    Also raised when a compare-and-swap write finds the status already moved
    by a concurrent writer.

    Args:
        resource: Model name.
        resource_id: PK of the entity.
        current: Status observed (None when unknown after a lost CAS).
        expected: Statuses from which the transition is allowed.
        reason: Optional extra explanation.
    """

    code = "ERR_CONFLICT_STATE"
    kind = "invalid_state"

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None,
        *,
        current: str | None = None,
        expected: set[str] | frozenset[str] | None = None,
        reason: str | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.current_status = current
        self.expected = sorted(expected) if expected else []
        self.reason = reason
        msg = f"{resource} id={resource_id} is in status {current!r}"
        if self.expected:
            msg += f", expected one of {self.expected}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)

    @property
    def details(self) -> dict:
        return {
            "resource": self.resource,
            "resource_id": self.resource_id,
            "current_status": self.current_status,
            "expected": self.expected,
        }


class ValidationError(WorkflowError):
    """Raised when input fails business-rule validation in the service layer.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
                 Keys are field names; values are error descriptions.
    """

    code = "ERR_VALIDATION_INVALID"
    kind = "validation"

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)
