"""
Certificate Workflow Service
Activity Log Blueprint.

Endpoints:
    GET /api/v1/activities                                  filtered listing (Admin)
    GET /api/v1/activities/me                               caller's own entries
    GET /api/v1/activities/actor/<actor_id>                 per-actor (self or Admin)
    GET /api/v1/activities/entity/<entity_type>/<entity_id> per-entity (CA/Client/Admin)

All results are newest first by timestamp.
"""

from datetime import datetime

from flask import Blueprint, jsonify, request

from certflow.blueprints import current_actor, register_error_handlers
from certflow.core.exceptions import ValidationError
from certflow.services import activity_log
from certflow.services.permission import check_capability

activity_bp = Blueprint("activities", __name__, url_prefix="/api/v1/activities")
register_error_handlers(activity_bp)


def _parse_dt(name):
    raw = request.args.get(name)
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 timestamp", details={name: raw})


def _limit():
    return request.args.get("limit", activity_log.DEFAULT_LIMIT)


def _entries(entries):
    return jsonify({"items": [e.to_dict() for e in entries], "total": len(entries)})


@activity_bp.route("", methods=["GET"])
def list_activities():
    actor = current_actor()
    check_capability(actor, "view_all_activity")
    page = activity_log.list_activities(
        actor_id=request.args.get("actor_id"),
        action=request.args.get("action"),
        entity_type=request.args.get("entity_type"),
        entity_id=request.args.get("entity_id"),
        since=_parse_dt("since"),
        until=_parse_dt("until"),
        page=request.args.get("page", 1, type=int),
        per_page=request.args.get("per_page", activity_log.DEFAULT_LIMIT, type=int),
    )
    return jsonify({
        "items": [e.to_dict() for e in page.items],
        "total": page.total,
        "page": page.page,
        "pages": page.pages,
    })


@activity_bp.route("/me", methods=["GET"])
def my_activities():
    actor = current_actor()
    return _entries(activity_log.query_by_actor(actor.user_id, _limit()))


@activity_bp.route("/actor/<actor_id>", methods=["GET"])
def actor_activities(actor_id):
    actor = current_actor()
    if actor_id != actor.user_id:
        check_capability(actor, "view_all_activity")
    return _entries(activity_log.query_by_actor(actor_id, _limit()))


@activity_bp.route("/entity/<entity_type>/<entity_id>", methods=["GET"])
def entity_activities(entity_type, entity_id):
    actor = current_actor()
    check_capability(actor, "view_entity_activity")
    return _entries(activity_log.query_by_entity(entity_type, entity_id, _limit()))
