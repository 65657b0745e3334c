"""
Certificate Workflow Service
Activity domain model.

Models:
    - ActivityEntry: immutable, append-only record of one workflow transition.
    - ActivityEntityRef: (entity_type, entity_id) index rows for an entry, so
      per-entity queries are answered from the log alone.
"""

import json
from datetime import datetime, timezone

from certflow.models import db

# ── Constants ────────────────────────────────────────────────────────────────

ACTIVITY_ACTIONS = {
    # Document
    "document_uploaded",
    "document_reviewed",
    # Template
    "template_created",
    "template_reviewed",
    "template_activated",
    # Request
    "request_created",
    "request_updated",
    "request_submitted",
    "request_reviewed",
    "request_cancelled",
    "request_issued",
    # Certificate
    "certificate_issued",
    "certificate_activated",
    "certificate_revoked",
}

# metadata key → entity type indexed in activity_entity_refs
ENTITY_REF_KEYS = {
    "document_id": "document",
    "template_id": "template",
    "request_id": "request",
    "certificate_id": "certificate",
}

ENTITY_TYPES = set(ENTITY_REF_KEYS.values())


def extract_entity_refs(metadata):
    """Return [(entity_type, entity_id), ...] referenced by *metadata*."""
    refs = []
    for key, entity_type in ENTITY_REF_KEYS.items():
        value = (metadata or {}).get(key)
        if value:
            refs.append((entity_type, str(value)))
    return refs


class ActivityEntry(db.Model):
    """
    Append-only activity row.

    ``id`` follows insertion order; ``timestamp`` may be supplied by the
    caller and can arrive out of order, so readers sort by timestamp and
    use ``id`` only as the tie-breaker.
    """

    __tablename__ = "activity_entries"
    __table_args__ = (
        db.Index("idx_activity_actor_ts", "actor_id", "timestamp"),
        db.Index("idx_activity_action", "action"),
        db.Index("idx_activity_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    actor_id = db.Column(db.String(64), nullable=False)
    action = db.Column(db.String(60), nullable=False,
                       comment="document_reviewed | template_created | request_reviewed | …")
    description = db.Column(db.Text, nullable=False, default="")
    metadata_json = db.Column(db.Text, default="{}",
                              comment="JSON: entity ids involved plus transition details")
    timestamp = db.Column(db.DateTime(timezone=True), nullable=False,
                          default=lambda: datetime.now(timezone.utc))
    recorded_at = db.Column(db.DateTime(timezone=True), nullable=False,
                            default=lambda: datetime.now(timezone.utc))

    refs = db.relationship("ActivityEntityRef", back_populates="entry", lazy="selectin")

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def entry_metadata(self) -> dict:
        """Deserialise *metadata_json* to a Python dict."""
        try:
            return json.loads(self.metadata_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "actor_id": self.actor_id,
            "action": self.action,
            "description": self.description,
            "metadata": self.entry_metadata,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "recorded_at": self.recorded_at.isoformat() if self.recorded_at else None,
            "entities": [{"type": r.entity_type, "id": r.entity_id} for r in self.refs],
        }

    def __repr__(self):
        return f"<ActivityEntry {self.id}: {self.action} by {self.actor_id}>"


class ActivityEntityRef(db.Model):
    """Index row linking an ActivityEntry to one entity it references."""

    __tablename__ = "activity_entity_refs"
    __table_args__ = (
        db.Index("idx_activity_ref_entity", "entity_type", "entity_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    activity_id = db.Column(
        db.Integer, db.ForeignKey("activity_entries.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    entity_type = db.Column(db.String(30), nullable=False)
    entity_id = db.Column(db.String(64), nullable=False)

    entry = db.relationship("ActivityEntry", back_populates="refs")


# ── Convenience writer ───────────────────────────────────────────────────────

def write_activity(
    *,
    actor_id: str,
    action: str,
    description: str = "",
    metadata: dict | None = None,
    timestamp: datetime | None = None,
) -> ActivityEntry:
    """
    Append a single activity row plus its entity refs.  Uses ``flush`` so
    callers keep transaction control.

    Returns the (flushed) ActivityEntry instance.
    """
    metadata = metadata or {}
    entry = ActivityEntry(
        actor_id=str(actor_id),
        action=action,
        description=description,
        metadata_json=json.dumps(metadata, default=str),
        refs=[
            ActivityEntityRef(entity_type=entity_type, entity_id=entity_id)
            for entity_type, entity_id in extract_entity_refs(metadata)
        ],
    )
    if timestamp is not None:
        entry.timestamp = timestamp
    db.session.add(entry)
    db.session.flush()
    return entry
