"""
Certificate Workflow Service
Certificate request domain model.

Models:
    - CertificateRequest: client-originated request for a certificate.
    - ApprovalRecord: immutable, append-only entry in a request's history.

Status machine (REQUEST_TRANSITIONS):
    draft             → submitted
    submitted         → under_review | approved | rejected | changes_requested | cancelled
    under_review      → approved | rejected | changes_requested | cancelled
    changes_requested → submitted          (the only back-edge)
    approved          → issued
    rejected          → (terminal)
    cancelled, issued → (absorbing)

History actions split in two groups:
    STATUS_ACTIONS      : the record's action *is* the new status.
    ANNOTATION_ACTIONS  : appended for the trail, status untouched.
"""

import uuid
from datetime import datetime, timezone

from certflow.models import db

# ── Constants ────────────────────────────────────────────────────────────────

REQUEST_STATUSES = {
    "draft", "submitted", "under_review", "approved", "rejected",
    "changes_requested", "issued", "cancelled",
}

REQUEST_TRANSITIONS = {
    "draft": {"submitted"},
    "submitted": {"under_review", "approved", "rejected", "changes_requested", "cancelled"},
    "under_review": {"approved", "rejected", "changes_requested", "cancelled"},
    "changes_requested": {"submitted"},
    "approved": {"issued"},
    "rejected": set(),
    "issued": set(),
    "cancelled": set(),
}

ABSORBING_STATUSES = {"cancelled", "issued"}

STATUS_ACTIONS = {
    "submitted", "under_review", "approved", "rejected",
    "changes_requested", "cancelled", "issued",
}
ANNOTATION_ACTIONS = {"assigned", "forwarded", "info_requested"}

# Actions a reviewer may pass to review_request()
REVIEW_ACTIONS = {"under_review", "approved", "rejected", "changes_requested"} | ANNOTATION_ACTIONS

# Annotations are only meaningful while the request is in a reviewer's hands
ANNOTATABLE_STATUSES = {"submitted", "under_review", "changes_requested"}

# Client may edit the request body only in these states
EDITABLE_STATUSES = {"draft", "changes_requested"}

CERTIFICATE_TYPES = {
    "academic", "professional", "achievement", "completion",
    "participation", "recognition", "custom",
}

MAX_TITLE_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 1000
DEFAULT_PRIORITY = 3


def validate_request_transition(old_status, new_status):
    """Return True if old_status → new_status is a legal request transition."""
    return new_status in REQUEST_TRANSITIONS.get(old_status, set())


class CertificateRequest(db.Model):
    """
    Client request for a certificate.

    ``status`` is denormalised for querying; it always equals the action of
    the most recent status-changing ApprovalRecord (or draft/submitted
    when the history has none).  ``version`` is bumped on every write and
    used as the compare-and-swap token.
    """

    __tablename__ = "certificate_requests"
    __table_args__ = (
        db.Index("ix_requests_client_status", "client_id", "status"),
        db.Index("ix_requests_status", "status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    client_id = db.Column(db.String(64), nullable=False, index=True)
    client_name = db.Column(db.String(150), nullable=False, default="")
    client_email = db.Column(db.String(255), nullable=False, default="")
    organization_name = db.Column(db.String(200), nullable=False)

    certificate_type = db.Column(db.String(30), nullable=False)
    title = db.Column(db.String(MAX_TITLE_LENGTH), nullable=False)
    description = db.Column(db.Text, nullable=False)
    purpose = db.Column(db.Text, nullable=False)
    requested_data = db.Column(db.JSON, default=dict)
    priority = db.Column(db.Integer, nullable=False, default=DEFAULT_PRIORITY)

    status = db.Column(db.String(30), nullable=False, default="draft",
                       comment="draft | submitted | under_review | approved | rejected | "
                               "changes_requested | issued | cancelled")
    version = db.Column(db.Integer, nullable=False, default=1)

    assigned_reviewer_id = db.Column(db.String(64), nullable=True, index=True)
    certificate_id = db.Column(
        db.String(36), db.ForeignKey("certificates.id", ondelete="SET NULL"), nullable=True,
    )

    created_at = db.Column(db.DateTime(timezone=True), nullable=False,
                           default=lambda: datetime.now(timezone.utc))
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    approval_history = db.relationship(
        "ApprovalRecord",
        order_by="ApprovalRecord.sequence",
        back_populates="request",
        lazy="selectin",
    )

    # ── Helpers ──────────────────────────────────────────────────────────

    def derived_status(self):
        """Status reconstructed from the history alone."""
        for record in reversed(self.approval_history):
            if record.changes_status:
                return record.action
        return self.status if self.status in ("draft", "submitted") else None

    def to_dict(self, include_history=True):
        data = {
            "id": self.id,
            "client_id": self.client_id,
            "client_name": self.client_name,
            "client_email": self.client_email,
            "organization_name": self.organization_name,
            "certificate_type": self.certificate_type,
            "title": self.title,
            "description": self.description,
            "purpose": self.purpose,
            "requested_data": self.requested_data or {},
            "priority": self.priority,
            "status": self.status,
            "version": self.version,
            "assigned_reviewer_id": self.assigned_reviewer_id,
            "certificate_id": self.certificate_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_history:
            data["approval_history"] = [r.to_dict() for r in self.approval_history]
        return data

    def __repr__(self):
        return f"<CertificateRequest {self.id}: {self.title[:40]} [{self.status}]>"


class ApprovalRecord(db.Model):
    """
    One immutable entry in a CertificateRequest's approval history.

    ``sequence`` is the 1-based append position; the unique constraint on
    (request_id, sequence) rejects a second writer racing for the same slot.
    """

    __tablename__ = "request_approval_records"
    __table_args__ = (
        db.UniqueConstraint("request_id", "sequence", name="uq_approval_record_sequence"),
    )

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(
        db.String(36), db.ForeignKey("certificate_requests.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    sequence = db.Column(db.Integer, nullable=False)

    reviewer_id = db.Column(db.String(64), nullable=False)
    reviewer_name = db.Column(db.String(150), nullable=True,
                              comment="Name snapshot captured when the record is appended")
    reviewer_role = db.Column(db.String(20), nullable=True)
    action = db.Column(db.String(30), nullable=False)
    comments = db.Column(db.Text, nullable=True)
    assignee_id = db.Column(db.String(64), nullable=True,
                            comment="Target reviewer for assigned / forwarded")
    timestamp = db.Column(db.DateTime(timezone=True), nullable=False,
                          default=lambda: datetime.now(timezone.utc))

    request = db.relationship("CertificateRequest", back_populates="approval_history")

    @property
    def changes_status(self):
        return self.action in STATUS_ACTIONS

    def to_dict(self):
        return {
            "sequence": self.sequence,
            "reviewer_id": self.reviewer_id,
            "reviewer_name": self.reviewer_name,
            "reviewer_role": self.reviewer_role,
            "action": self.action,
            "comments": self.comments,
            "assignee_id": self.assignee_id,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<ApprovalRecord {self.request_id}#{self.sequence}: {self.action}>"
