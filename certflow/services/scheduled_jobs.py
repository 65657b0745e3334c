"""
Certificate Workflow Service
Scheduled Jobs.

Jobs:
    - notification_outbox_drain: delivers queued / retryable outbox rows
    - stale_notification_cleanup: deletes read in-app notifications older than 30 days
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from certflow.models import db
from certflow.models.notification import Notification
from certflow.services.notification import NotificationService
from certflow.services.scheduler_service import register_job

logger = logging.getLogger(__name__)


@register_job("notification_outbox_drain", interval_seconds=30)
def drain_notification_outbox(app) -> dict[str, Any]:
    """Deliver queued and retryable failed notifications."""
    batch = app.config.get("NOTIFICATION_DRAIN_BATCH", 100)
    return NotificationService.dispatch_pending(limit=batch)


@register_job("stale_notification_cleanup", interval_seconds=24 * 3600)
def cleanup_stale_notifications(app) -> dict[str, Any]:
    """Delete read notifications older than 30 days."""
    cutoff = datetime.now(timezone.utc) - timedelta(days=30)

    deleted = Notification.query.filter(
        Notification.is_read.is_(True),
        Notification.read_at < cutoff,
    ).delete(synchronize_session="fetch")

    db.session.commit()
    logger.info("Stale notification cleanup: deleted %d old read notifications", deleted)
    return {"deleted": deleted, "cutoff": cutoff.isoformat()}
