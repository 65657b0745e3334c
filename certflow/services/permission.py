"""
Workflow capability checks.

Maps each workflow operation to the roles allowed to perform it.  An actor
must also be ``active``; pending and suspended identities are refused
whatever their role.

Usage:
    from certflow.services.permission import check_capability

    # Raises UnauthorizedError if not allowed
    check_capability(actor, "review_document")

    # Boolean check
    if has_capability(actor, "review_template"):
        ...
"""

from certflow.core.exceptions import UnauthorizedError
from certflow.core.identity import Actor

# Operation → roles allowed to perform it
CAPABILITY_MATRIX = {
    "upload_document": {"user", "client", "ca", "admin"},
    "review_document": {"ca", "admin"},
    "create_template": {"ca", "admin"},
    "revise_template": {"ca", "admin"},
    "activate_template": {"ca", "admin"},
    "review_template": {"client", "admin"},
    "create_request": {"client", "admin"},
    "update_request": {"client", "admin"},
    "submit_request": {"client", "admin"},
    "cancel_request": {"client", "admin"},
    "review_request": {"ca", "client", "admin"},
    "issue_request_certificate": {"ca", "admin"},
    "issue_certificate": {"ca", "admin"},
    "activate_certificate": {"user", "client", "ca", "admin"},
    "revoke_certificate": {"ca", "admin"},
    "view_all_activity": {"admin"},
    "view_entity_activity": {"ca", "client", "admin"},
    "manage_notifications": {"admin"},
    "manage_jobs": {"admin"},
}


def has_capability(actor: Actor, capability: str) -> bool:
    """True when *actor* is active and its role grants *capability*."""
    if actor is None or not actor.is_active:
        return False
    return actor.role in CAPABILITY_MATRIX.get(capability, set())


def check_capability(actor: Actor, capability: str) -> None:
    """
    Raise UnauthorizedError unless *actor* may perform *capability*.

    The error reason distinguishes an inactive account from a wrong role.
    """
    if actor is None:
        raise UnauthorizedError(None, capability, "no identity supplied")
    if not actor.is_active:
        raise UnauthorizedError(actor.user_id, capability, f"account status is '{actor.status}'")
    allowed = CAPABILITY_MATRIX.get(capability, set())
    if actor.role not in allowed:
        raise UnauthorizedError(
            actor.user_id, capability,
            f"role '{actor.role}' not in {sorted(allowed)}",
        )


def check_owner(actor: Actor, owner_id: str, capability: str) -> None:
    """Non-admin actors may only act on entities they own."""
    if actor.is_admin:
        return
    if actor.user_id != owner_id:
        raise UnauthorizedError(actor.user_id, capability, "actor does not own this entity")


def check_reviewer(actor: Actor, owner_id: str, assigned_id, capability: str) -> None:
    """
    Non-admin reviewers may not review their own entity, and once a
    reviewer is assigned only that reviewer may act.
    """
    if actor.is_admin:
        return
    if actor.user_id == owner_id:
        raise UnauthorizedError(actor.user_id, capability, "actor cannot review own entity")
    if assigned_id and actor.user_id != assigned_id:
        raise UnauthorizedError(actor.user_id, capability,
                                f"entity is assigned to reviewer '{assigned_id}'")
