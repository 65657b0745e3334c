"""
Activity Log Service.

Append-only audit trail of workflow transitions plus its read contract.

Write path:
    record() runs *after* the entity transaction has committed, in its own
    transaction.  A failing append is rolled back, logged at ERROR with
    ``event_type=audit_append_failed`` (picked up by alerting) and counted,
    but never raised: the entity state is authoritative.

Read path:
    Results are ordered by ``timestamp`` at read time, newest first, with
    insertion order (``id``) as the tie-breaker.  Write order is never
    trusted because timestamps can be assigned after the row is queued.

Usage:
    from certflow.services import activity_log

    activity_log.record(actor_id, "document_reviewed", "Approved ...", {"document_id": doc.id})
    entries = activity_log.query_by_actor(actor_id, limit=20)
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime

from flask import current_app

from certflow.core.exceptions import ValidationError
from certflow.models import db
from certflow.models.activity import ActivityEntityRef, ActivityEntry, ENTITY_TYPES, write_activity

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 50

_failure_lock = threading.Lock()
_append_failures = 0


def append_failure_count() -> int:
    """Number of activity appends that failed since process start."""
    return _append_failures


def _note_failure():
    global _append_failures
    with _failure_lock:
        _append_failures += 1


def _clamp_limit(limit) -> int:
    max_limit = current_app.config.get("ACTIVITY_QUERY_MAX_LIMIT", 200)
    try:
        limit = int(limit)
    except (TypeError, ValueError):
        limit = DEFAULT_LIMIT
    return max(1, min(limit, max_limit))


def _newest_first(query):
    return query.order_by(ActivityEntry.timestamp.desc(), ActivityEntry.id.desc())


# ── Write ────────────────────────────────────────────────────────────────────


def record(
    actor_id: str,
    action: str,
    description: str,
    metadata: dict | None = None,
    *,
    timestamp: datetime | None = None,
) -> ActivityEntry | None:
    """
    Append one activity entry and commit it.

    Returns the entry, or None when the append failed (already logged).
    """
    try:
        entry = write_activity(
            actor_id=actor_id,
            action=action,
            description=description,
            metadata=metadata,
            timestamp=timestamp,
        )
        db.session.commit()
        return entry
    except Exception:
        db.session.rollback()
        _note_failure()
        logger.error(
            "Activity append failed: %s by %s", action, actor_id,
            exc_info=True,
            extra={"event_type": "audit_append_failed", "actor_id": actor_id,
                   "action": action},
        )
        return None


# ── Read ─────────────────────────────────────────────────────────────────────


def query_by_actor(actor_id: str, limit: int = DEFAULT_LIMIT) -> list[ActivityEntry]:
    """Entries performed by *actor_id*, newest first."""
    q = ActivityEntry.query.filter(ActivityEntry.actor_id == str(actor_id))
    return _newest_first(q).limit(_clamp_limit(limit)).all()


def query_by_entity(entity_type: str, entity_id: str, limit: int = DEFAULT_LIMIT) -> list[ActivityEntry]:
    """Entries whose metadata references the given entity, newest first."""
    if entity_type not in ENTITY_TYPES:
        raise ValidationError(
            f"entity_type must be one of {sorted(ENTITY_TYPES)}",
            details={"entity_type": entity_type},
        )
    q = (
        ActivityEntry.query
        .join(ActivityEntityRef, ActivityEntityRef.activity_id == ActivityEntry.id)
        .filter(
            ActivityEntityRef.entity_type == entity_type,
            ActivityEntityRef.entity_id == str(entity_id),
        )
    )
    return _newest_first(q).limit(_clamp_limit(limit)).all()


def list_activities(
    *,
    actor_id: str | None = None,
    action: str | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    page: int = 1,
    per_page: int = DEFAULT_LIMIT,
):
    """
    Filtered, paginated activity listing (admin view).

    Returns a Flask-SQLAlchemy Pagination object.
    """
    q = ActivityEntry.query
    if actor_id:
        q = q.filter(ActivityEntry.actor_id == actor_id)
    if action:
        q = q.filter(ActivityEntry.action.startswith(action))
    if entity_type or entity_id:
        q = q.join(ActivityEntityRef, ActivityEntityRef.activity_id == ActivityEntry.id)
        if entity_type:
            q = q.filter(ActivityEntityRef.entity_type == entity_type)
        if entity_id:
            q = q.filter(ActivityEntityRef.entity_id == str(entity_id))
    if since:
        q = q.filter(ActivityEntry.timestamp >= since)
    if until:
        q = q.filter(ActivityEntry.timestamp <= until)

    page = max(1, page)
    per_page = _clamp_limit(per_page)
    return _newest_first(q).paginate(page=page, per_page=per_page, error_out=False)
