"""
Shared plumbing for guarded state transitions.

Every workflow transition follows the same shape:

    1. load the entity (NotFoundError) and check the status precondition
    2. compare-and-swap the new status:
           UPDATE ... WHERE id = :id AND status = :expected
       zero rows matched means a concurrent writer won → InvalidStateError
    3. add outbox rows / child rows and commit once
    4. after_commit(): append activity entries (own transaction, best-effort)
       and dispatch the queued notifications (best-effort)

Usage:
    from certflow.services.transitions import after_commit, compare_and_swap, load_or_404

    doc = load_or_404(Document, document_id, "Document")
    compare_and_swap(Document, doc.id, "Document", expected="pending",
                     values={"status": "verified"})
    db.session.commit()
    after_commit(activities=[...], outbox=[...])
"""

import logging

from certflow.core.exceptions import InvalidStateError, NotFoundError
from certflow.models import db
from certflow.services import activity_log
from certflow.services.notification import NotificationService

logger = logging.getLogger(__name__)


def load_or_404(model, entity_id, resource):
    """Fetch *model* by its string primary key or raise NotFoundError."""
    obj = db.session.get(model, entity_id) if isinstance(entity_id, str) and entity_id else None
    if obj is None:
        raise NotFoundError(resource=resource, resource_id=entity_id)
    return obj


def require_status(obj, resource, allowed):
    """Raise InvalidStateError unless ``obj.status`` is in *allowed*."""
    if obj.status not in allowed:
        raise InvalidStateError(resource, obj.id, current=obj.status, expected=set(allowed))


def compare_and_swap(model, entity_id, resource, *, expected, values, version=None,
                     version_column="version"):
    """
    Conditionally update one row; raise InvalidStateError if it moved.

    Args:
        expected: Status the row must still be in.
        values: Column → new value mapping.
        version: When given, the row's version column must also match and
                 is incremented by the update.
        version_column: Name of that column (``version`` unless the model
                 keeps a purpose-specific counter).
    """
    criteria = [model.id == entity_id, model.status == expected]
    if version is not None:
        criteria.append(getattr(model, version_column) == version)
        values = dict(values, **{version_column: version + 1})

    matched = model.query.filter(*criteria).update(values, synchronize_session=False)
    if matched == 0:
        db.session.rollback()
        current = db.session.query(model.status).filter(model.id == entity_id).scalar()
        logger.info(
            "CAS lost on %s %s (expected %s, found %s)", resource, entity_id, expected, current,
            extra={"event_type": "cas_conflict", "entity_type": resource, "entity_id": entity_id},
        )
        raise InvalidStateError(
            resource, entity_id, current=current, expected={expected},
            reason="status changed concurrently" if current == expected else None,
        )


def after_commit(*, activities=(), outbox=()):
    """
    Post-commit side effects of a transition.

    Args:
        activities: Iterable of kwargs dicts for ``activity_log.record``.
        outbox: NotificationOutbox rows committed with the transition.
    """
    for entry in activities:
        activity_log.record(**entry)
    NotificationService.dispatch_after_commit([r for r in outbox if r is not None])
