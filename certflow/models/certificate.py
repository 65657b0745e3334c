"""
Certificate Workflow Service
Issued certificate domain model.

Models:
    - Certificate: the final, verifiable artifact.

Status machine (CERTIFICATE_TRANSITIONS):
    issued → active | revoked
    active → revoked
    revoked → (terminal)

Recipient, type and issued_at are frozen once the row exists; only the
status (and the revocation fields that accompany it) ever change.
"""

import uuid
from datetime import datetime, timedelta, timezone

from certflow.models import db

# ── Constants ────────────────────────────────────────────────────────────────

CERTIFICATE_STATUSES = {"issued", "active", "revoked"}

CERTIFICATE_TRANSITIONS = {
    "issued": {"active", "revoked"},
    "active": {"revoked"},
    "revoked": set(),
}

# Types that never expire; "professional" has its own validity period.
NON_EXPIRING_TYPES = {"academic", "completion", "achievement", "participation"}
PROFESSIONAL_VALIDITY = timedelta(days=365 * 3)
DEFAULT_VALIDITY = timedelta(days=365)

VERIFICATION_CODE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
VERIFICATION_CODE_LENGTH = 8


def validate_certificate_transition(old_status, new_status):
    """Return True if old_status → new_status is a legal certificate transition."""
    return new_status in CERTIFICATE_TRANSITIONS.get(old_status, set())


def calculate_expiry(certificate_type, issued_at):
    """Expiry timestamp for a certificate of the given type, or None."""
    if certificate_type in NON_EXPIRING_TYPES:
        return None
    if certificate_type == "professional":
        return issued_at + PROFESSIONAL_VALIDITY
    return issued_at + DEFAULT_VALIDITY


class Certificate(db.Model):
    """Issued certificate."""

    __tablename__ = "certificates"
    __table_args__ = (
        db.Index("ix_certificates_recipient_status", "recipient_id", "status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    recipient_id = db.Column(db.String(64), nullable=False, index=True)
    recipient_name = db.Column(db.String(150), nullable=False)
    recipient_email = db.Column(db.String(255), nullable=True)
    issuer_id = db.Column(db.String(64), nullable=False)

    title = db.Column(db.String(200), nullable=False)
    type = db.Column(db.String(30), nullable=False, default="completion")
    template_id = db.Column(
        db.String(36), db.ForeignKey("certificate_templates.id", ondelete="SET NULL"), nullable=True,
    )
    request_id = db.Column(db.String(36), nullable=True, index=True,
                           comment="CertificateRequest that produced this certificate, if any")

    issued_at = db.Column(db.DateTime(timezone=True), nullable=False,
                          default=lambda: datetime.now(timezone.utc))
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)

    status = db.Column(db.String(20), nullable=False, default="issued",
                       comment="issued | active | revoked")
    verification_code = db.Column(db.String(VERIFICATION_CODE_LENGTH), nullable=False, unique=True)

    # Revocation
    revoked_by = db.Column(db.String(64), nullable=True)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revocation_reason = db.Column(db.Text, nullable=True)

    metadata_json = db.Column("metadata", db.JSON, default=dict)

    def is_expired(self, now=None):
        if self.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        expires_at = self.expires_at
        # SQLite hands back naive datetimes
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at <= now

    def to_dict(self):
        return {
            "id": self.id,
            "recipient_id": self.recipient_id,
            "recipient_name": self.recipient_name,
            "recipient_email": self.recipient_email,
            "issuer_id": self.issuer_id,
            "title": self.title,
            "type": self.type,
            "template_id": self.template_id,
            "request_id": self.request_id,
            "issued_at": self.issued_at.isoformat() if self.issued_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "status": self.status,
            "verification_code": self.verification_code,
            "revoked_by": self.revoked_by,
            "revoked_at": self.revoked_at.isoformat() if self.revoked_at else None,
            "revocation_reason": self.revocation_reason,
            "metadata": self.metadata_json or {},
        }

    def __repr__(self):
        return f"<Certificate {self.id}: {self.title[:40]} [{self.status}]>"
