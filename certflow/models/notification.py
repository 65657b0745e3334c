"""
Certificate Workflow Service
Notification domain models.

Models:
    - NotificationOutbox: queued notification written in the same transaction
      as the workflow change that caused it; drained by the dispatcher.
    - Notification: in-app notification record with read tracking (default
      delivery target of the dispatcher).
"""

from datetime import datetime, timezone

from certflow.models import db


# ── Constants ────────────────────────────────────────────────────────────────

OUTBOX_STATUSES = {"queued", "sent", "failed"}

NOTIFICATION_TYPES = {
    "document_review",
    "template_ready",
    "template_review",
    "certificate_request",
    "certificate_request_update",
    "certificate_request_cancelled",
    "certificate_issued",
    "certificate_revoked",
    "system",
}


class NotificationOutbox(db.Model):
    """
    Pending outbound notification.

    One row per recipient per event.  ``failed`` rows are retried by the
    dispatcher until ``attempts`` reaches NOTIFICATION_MAX_ATTEMPTS.
    """

    __tablename__ = "notification_outbox"
    __table_args__ = (
        db.Index("ix_outbox_status_created", "status", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), nullable=False, index=True)
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    type = db.Column(db.String(40), nullable=False, default="system")
    data = db.Column(db.JSON, default=dict)

    status = db.Column(db.String(20), nullable=False, default="queued",
                       comment="queued | sent | failed")
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def mark_sent(self):
        self.status = "sent"
        self.sent_at = datetime.now(timezone.utc)
        self.attempts += 1
        self.last_error = None

    def mark_failed(self, error):
        self.status = "failed"
        self.attempts += 1
        self.last_error = str(error)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "message": self.message,
            "type": self.type,
            "data": self.data or {},
            "status": self.status,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
        }

    def __repr__(self):
        return f"<NotificationOutbox {self.id}: {self.title[:40]} [{self.status}]>"


class Notification(db.Model):
    """
    In-app notification entity.

    One record per recipient per delivered outbox row.
    """

    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    recipient = db.Column(db.String(64), nullable=False, index=True)
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    type = db.Column(db.String(40), default="system")
    data = db.Column(db.JSON, default=dict)
    outbox_id = db.Column(db.Integer, nullable=True, unique=True,
                          comment="Outbox row this notification was delivered from")

    # Read tracking
    is_read = db.Column(db.Boolean, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def mark_read(self):
        self.is_read = True
        self.read_at = datetime.now(timezone.utc)

    def to_dict(self):
        return {
            "id": self.id,
            "recipient": self.recipient,
            "title": self.title,
            "message": self.message,
            "type": self.type,
            "data": self.data or {},
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.title[:40]}>"
