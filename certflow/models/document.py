"""
Certificate Workflow Service
Document domain model.

Models:
    - Document: uploaded evidentiary file awaiting CA review.

Status machine (DOCUMENT_TRANSITIONS):
    pending → verified | rejected
    verified, rejected → (terminal)
"""

import uuid
from datetime import datetime, timezone

from certflow.models import db

# ── Constants ────────────────────────────────────────────────────────────────

DOCUMENT_STATUSES = {"pending", "verified", "rejected"}

DOCUMENT_TRANSITIONS = {
    "pending": {"verified", "rejected"},
    "verified": set(),
    "rejected": set(),
}

DOCUMENT_TYPES = {
    "transcript", "diploma", "identity", "employment",
    "training", "license", "other",
}


def validate_document_transition(old_status, new_status):
    """Return True if old_status → new_status is a legal document transition."""
    return new_status in DOCUMENT_TRANSITIONS.get(old_status, set())


class Document(db.Model):
    """
    Evidentiary document uploaded by an end user.

    Rows are never deleted; a rejected document is superseded by a new upload.
    ``template_created`` is a soft link: it records that at least one
    CertificateTemplate was derived from this document.
    ``template_version`` is compare-and-swapped by template creation so two
    authors cannot both pass the one-live-template check.
    """

    __tablename__ = "documents"
    __table_args__ = (
        db.Index("ix_documents_status", "status"),
        db.Index("ix_documents_uploader_status", "uploader_id", "status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    uploader_id = db.Column(db.String(64), nullable=False, index=True)
    uploader_name = db.Column(db.String(150), nullable=True)

    file_name = db.Column(db.String(255), nullable=False)
    mime_type = db.Column(db.String(100), nullable=False, default="application/octet-stream")
    file_size = db.Column(db.Integer, nullable=False, default=0)
    type = db.Column(db.String(30), nullable=False, default="other",
                     comment="transcript | diploma | identity | employment | training | license | other")

    status = db.Column(db.String(20), nullable=False, default="pending",
                       comment="pending | verified | rejected")
    uploaded_at = db.Column(db.DateTime(timezone=True), nullable=False,
                            default=lambda: datetime.now(timezone.utc))

    # Review outcome
    reviewed_by = db.Column(db.String(64), nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    review_comments = db.Column(db.Text, nullable=True)

    template_created = db.Column(db.Boolean, nullable=False, default=False)
    template_version = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self):
        return {
            "id": self.id,
            "uploader_id": self.uploader_id,
            "uploader_name": self.uploader_name,
            "file_name": self.file_name,
            "mime_type": self.mime_type,
            "file_size": self.file_size,
            "type": self.type,
            "status": self.status,
            "uploaded_at": self.uploaded_at.isoformat() if self.uploaded_at else None,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "rejection_reason": self.rejection_reason,
            "review_comments": self.review_comments,
            "template_created": self.template_created,
        }

    def __repr__(self):
        return f"<Document {self.id}: {self.file_name} [{self.status}]>"
