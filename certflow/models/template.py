"""
Certificate Workflow Service
Certificate template domain model.

Models:
    - CertificateTemplate: CA-authored blueprint derived from a verified Document.

Status machine (TEMPLATE_TRANSITIONS):
    pending_client_review → client_approved | changes_requested | rejected
    client_approved       → active
    changes_requested, rejected, active → (terminal for this row)

A revision after changes_requested is a *new* row with ``revision_of_id``
pointing at the template it replaces; the old row is kept for audit.
"""

import uuid
from datetime import datetime, timezone

from certflow.models import db

# ── Constants ────────────────────────────────────────────────────────────────

TEMPLATE_STATUSES = {
    "pending_client_review", "client_approved", "changes_requested",
    "rejected", "active",
}

TEMPLATE_TRANSITIONS = {
    "pending_client_review": {"client_approved", "changes_requested", "rejected"},
    "client_approved": {"active"},
    "changes_requested": set(),
    "rejected": set(),
    "active": set(),
}

# Client review action → target status
TEMPLATE_REVIEW_ACTIONS = {
    "client_approved": "client_approved",
    "changes_requested": "changes_requested",
    "rejected": "rejected",
}

# A document may only carry one template in these states at a time
LIVE_TEMPLATE_STATUSES = {"pending_client_review", "client_approved", "active"}


def validate_template_transition(old_status, new_status):
    """Return True if old_status → new_status is a legal template transition."""
    return new_status in TEMPLATE_TRANSITIONS.get(old_status, set())


class CertificateTemplate(db.Model):
    """Certificate blueprint subject to client approval before it can issue."""

    __tablename__ = "certificate_templates"
    __table_args__ = (
        db.Index("ix_templates_source_status", "source_document_id", "status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    certificate_type = db.Column(db.String(30), nullable=False, default="completion")

    source_document_id = db.Column(
        db.String(36), db.ForeignKey("documents.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    revision_of_id = db.Column(
        db.String(36), db.ForeignKey("certificate_templates.id", ondelete="SET NULL"),
        nullable=True,
    )

    created_by = db.Column(db.String(64), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False,
                           default=lambda: datetime.now(timezone.utc))

    status = db.Column(db.String(30), nullable=False, default="pending_client_review",
                       comment="pending_client_review | client_approved | changes_requested | rejected | active")

    # Client review outcome
    client_reviewed_by = db.Column(db.String(64), nullable=True)
    client_reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    client_comments = db.Column(db.Text, nullable=True)
    activated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    source_document = db.relationship("Document", lazy="joined")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "certificate_type": self.certificate_type,
            "source_document_id": self.source_document_id,
            "revision_of_id": self.revision_of_id,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "status": self.status,
            "client_reviewed_by": self.client_reviewed_by,
            "client_reviewed_at": self.client_reviewed_at.isoformat() if self.client_reviewed_at else None,
            "client_comments": self.client_comments,
            "activated_at": self.activated_at.isoformat() if self.activated_at else None,
        }

    def __repr__(self):
        return f"<CertificateTemplate {self.id}: {self.name} [{self.status}]>"
