"""
Certificate Workflow Service
Notification Service.

Outbox-based notification delivery:

    enqueue()           add an outbox row to the *current* transaction, so it
                        commits (or rolls back) together with the workflow
                        change that caused it.
    dispatch_pending()  drain queued/failed rows through the configured sender
                        after commit.  Delivery failures are recorded on the
                        row and retried up to NOTIFICATION_MAX_ATTEMPTS; they
                        are never raised to the caller.

The default sender writes an in-app ``Notification`` row.  Replace it with
``NotificationService.set_sender(fn)``; a sender is called as
``fn(user_id, title, message, notification_type, data, outbox_id=...)``.
"""

import logging
from datetime import datetime, timezone

from flask import current_app

from certflow.models import db
from certflow.models.notification import NOTIFICATION_TYPES, Notification, NotificationOutbox

logger = logging.getLogger(__name__)


def deliver_in_app(user_id, title, message, notification_type, data, *, outbox_id=None):
    """Default sender: persist an in-app notification for *user_id*."""
    notif = Notification(
        recipient=user_id,
        title=title,
        message=message,
        type=notification_type,
        data=data or {},
        outbox_id=outbox_id,
    )
    db.session.add(notif)
    return notif


class NotificationService:
    """Stateless service class for notification operations."""

    _sender = staticmethod(deliver_in_app)

    @classmethod
    def set_sender(cls, sender):
        """Install *sender* as the delivery function; returns the previous one."""
        previous = cls._sender
        cls._sender = staticmethod(sender)
        return previous

    @classmethod
    def get_sender(cls):
        return cls._sender

    # ── Outbox ────────────────────────────────────────────────────────────

    @staticmethod
    def enqueue(*, user_id, title, message="", notification_type="system", data=None):
        """
        Queue a notification in the current session (no commit).

        Returns:
            The pending NotificationOutbox row, or None when there is no recipient.
        """
        if not user_id:
            return None
        if notification_type not in NOTIFICATION_TYPES:
            notification_type = "system"
        row = NotificationOutbox(
            user_id=str(user_id),
            title=title[:300],
            message=message,
            type=notification_type,
            data=data or {},
            status="queued",
            attempts=0,
        )
        db.session.add(row)
        return row

    @classmethod
    def dispatch_pending(cls, limit=100, ids=None):
        """
        Deliver queued and retryable failed outbox rows.

        Args:
            limit: Maximum rows handled in this pass.
            ids: Restrict the pass to these outbox ids (inline dispatch).

        Returns:
            Dict with sent / failed counts.
        """
        max_attempts = current_app.config.get("NOTIFICATION_MAX_ATTEMPTS", 5)
        q = NotificationOutbox.query.filter(
            NotificationOutbox.status.in_(("queued", "failed")),
            NotificationOutbox.attempts < max_attempts,
        )
        if ids is not None:
            if not ids:
                return {"sent": 0, "failed": 0}
            q = q.filter(NotificationOutbox.id.in_(list(ids)))
        row_ids = [
            r.id for r in q.order_by(NotificationOutbox.created_at, NotificationOutbox.id).limit(limit)
        ]

        sent = failed = 0
        sender = cls.get_sender()
        for row_id in row_ids:
            row = db.session.get(NotificationOutbox, row_id)
            if row is None:
                continue
            try:
                sender(row.user_id, row.title, row.message, row.type, row.data or {},
                       outbox_id=row.id)
                row.mark_sent()
                db.session.commit()
                sent += 1
            except Exception as exc:
                db.session.rollback()
                failed += 1
                logger.warning(
                    "Notification delivery failed for outbox %s: %s", row_id, exc,
                    extra={"event_type": "notification_failed", "entity_id": row_id},
                )
                try:
                    row = db.session.get(NotificationOutbox, row_id)
                    row.mark_failed(exc)
                    db.session.commit()
                except Exception:
                    db.session.rollback()
                    logger.exception("Could not record delivery failure for outbox %s", row_id)

        if row_ids:
            logger.info("Notification dispatch: %d sent, %d failed", sent, failed)
        return {"sent": sent, "failed": failed}

    @classmethod
    def dispatch_after_commit(cls, rows):
        """
        Deliver the given freshly committed outbox rows when inline dispatch
        is enabled; otherwise leave them to the drain job.
        """
        if not current_app.config.get("NOTIFICATION_DISPATCH_INLINE", True):
            return None
        ids = [r.id for r in rows if r is not None and r.id is not None]
        if not ids:
            return None
        try:
            return cls.dispatch_pending(limit=len(ids), ids=ids)
        except Exception:
            db.session.rollback()
            logger.exception("Inline notification dispatch failed")
            return None

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_recipient(recipient, unread_only=False, limit=50, offset=0):
        """
        Retrieve notifications for a recipient, newest first.
        """
        q = Notification.query.filter(Notification.recipient == recipient)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def unread_count(recipient):
        """Return count of unread notifications."""
        return Notification.query.filter_by(recipient=recipient, is_read=False).count()

    @staticmethod
    def list_outbox(status=None, limit=50):
        q = NotificationOutbox.query
        if status:
            q = q.filter_by(status=status)
        return q.order_by(NotificationOutbox.created_at.desc()).limit(limit).all()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, recipient):
        """Mark a single notification as read. Only the recipient may do so."""
        notif = db.session.get(Notification, notification_id)
        if notif is None or notif.recipient != recipient:
            return None
        notif.mark_read()
        db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(recipient):
        """Mark all notifications for a recipient as read."""
        now = datetime.now(timezone.utc)
        count = (
            Notification.query.filter_by(recipient=recipient, is_read=False)
            .update({"is_read": True, "read_at": now}, synchronize_session="fetch")
        )
        db.session.commit()
        return count
