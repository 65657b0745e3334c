"""
Certificate Workflow Service
Notification & Scheduling Blueprint.

Provides:
    - In-app notifications for the caller (list, unread count, mark read)
    - Outbox inspection and manual dispatch (Admin)
    - Scheduled job management: list, trigger, toggle (Admin)
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from certflow.blueprints import current_actor, json_body, register_error_handlers
from certflow.core.exceptions import NotFoundError, ValidationError
from certflow.models.notification import OUTBOX_STATUSES
from certflow.services.notification import NotificationService
from certflow.services.permission import check_capability
from certflow.services.scheduler_service import SchedulerService

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notifications", __name__, url_prefix="/api/v1/notifications")
register_error_handlers(notification_bp)

scheduler_bp = Blueprint("jobs", __name__, url_prefix="/api/v1/scheduler")
register_error_handlers(scheduler_bp)


# ═══════════════════════════════════════════════════════════════════════════
#  IN-APP NOTIFICATIONS
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("", methods=["GET"])
def list_notifications():
    """Caller's notifications, newest first."""
    actor = current_actor()
    unread_only = request.args.get("unread_only", "false").lower() in ("1", "true", "yes")
    limit = min(request.args.get("limit", 50, type=int), 200)
    offset = max(request.args.get("offset", 0, type=int), 0)
    items, total = NotificationService.list_for_recipient(
        actor.user_id, unread_only=unread_only, limit=limit, offset=offset,
    )
    return jsonify({"items": [n.to_dict() for n in items], "total": total})


@notification_bp.route("/unread-count", methods=["GET"])
def unread_count():
    actor = current_actor()
    return jsonify({"unread_count": NotificationService.unread_count(actor.user_id)})


@notification_bp.route("/<int:notification_id>/read", methods=["POST"])
def mark_read(notification_id):
    actor = current_actor()
    notif = NotificationService.mark_read(notification_id, actor.user_id)
    if notif is None:
        raise NotFoundError("Notification", notification_id)
    return jsonify(notif.to_dict())


@notification_bp.route("/read-all", methods=["POST"])
def mark_all_read():
    actor = current_actor()
    return jsonify({"marked": NotificationService.mark_all_read(actor.user_id)})


# ═══════════════════════════════════════════════════════════════════════════
#  OUTBOX (Admin)
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/outbox", methods=["GET"])
def list_outbox():
    actor = current_actor()
    check_capability(actor, "manage_notifications")
    status = request.args.get("status")
    if status and status not in OUTBOX_STATUSES:
        raise ValidationError(f"status must be one of {sorted(OUTBOX_STATUSES)}")
    rows = NotificationService.list_outbox(status=status, limit=min(request.args.get("limit", 50, type=int), 200))
    return jsonify({"items": [r.to_dict() for r in rows], "total": len(rows)})


@notification_bp.route("/dispatch", methods=["POST"])
def dispatch_outbox():
    actor = current_actor()
    check_capability(actor, "manage_notifications")
    limit = json_body().get("limit", 100)
    return jsonify(NotificationService.dispatch_pending(limit=int(limit)))


# ═══════════════════════════════════════════════════════════════════════════
#  SCHEDULED JOBS MANAGEMENT
# ═══════════════════════════════════════════════════════════════════════════

@scheduler_bp.route("/jobs", methods=["GET"])
def list_scheduled_jobs():
    """List all registered jobs with their status."""
    check_capability(current_actor(), "manage_jobs")
    SchedulerService.ensure_jobs_registered()
    jobs = SchedulerService.list_jobs()
    return jsonify({"jobs": jobs, "total": len(jobs)})


@scheduler_bp.route("/jobs/<job_name>", methods=["GET"])
def get_job_status(job_name):
    """Get status of a specific scheduled job."""
    check_capability(current_actor(), "manage_jobs")
    job = SchedulerService.get_job_status(job_name)
    if not job:
        raise NotFoundError("ScheduledJob", job_name)
    return jsonify(job)


@scheduler_bp.route("/jobs/<job_name>/trigger", methods=["POST"])
def trigger_job(job_name):
    """Manually trigger a scheduled job."""
    check_capability(current_actor(), "manage_jobs")
    SchedulerService.ensure_jobs_registered()
    result = SchedulerService.run_job(job_name)
    if result.get("status") == "error" and "Unknown job" in result.get("error", ""):
        return jsonify(result), 404
    return jsonify(result)


@scheduler_bp.route("/jobs/<job_name>/toggle", methods=["PATCH"])
def toggle_job_status(job_name):
    """Enable or disable a scheduled job."""
    check_capability(current_actor(), "manage_jobs")
    enabled = json_body().get("enabled")
    if enabled is None:
        raise ValidationError("'enabled' field is required (true/false)", details={"enabled": "required"})

    SchedulerService.ensure_jobs_registered()
    result = SchedulerService.toggle_job(job_name, bool(enabled))
    if not result:
        raise NotFoundError("ScheduledJob", job_name)
    return jsonify(result)
