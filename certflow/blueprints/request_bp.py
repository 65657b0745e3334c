"""
Certificate Workflow Service
Certificate Request Blueprint.

Endpoints:
    POST  /api/v1/requests                  create draft (Client/Admin)
    GET   /api/v1/requests                  list (own, or all for CA/Admin)
    GET   /api/v1/requests/<id>             detail with approval history
    PATCH /api/v1/requests/<id>             edit body (draft / changes_requested)
    POST  /api/v1/requests/<id>/submit      draft | changes_requested → submitted
    POST  /api/v1/requests/<id>/review      reviewer action / annotation
    POST  /api/v1/requests/<id>/cancel      submitted | under_review → cancelled
    POST  /api/v1/requests/<id>/issue       approved → issued (CA/Admin)
"""

from flask import Blueprint, jsonify, request

from certflow.blueprints import (
    current_actor,
    json_body,
    paginate_query,
    register_error_handlers,
)
from certflow.services import request_lifecycle

request_bp = Blueprint("requests", __name__, url_prefix="/api/v1/requests")
register_error_handlers(request_bp)


def _detail(req):
    data = req.to_dict()
    data["available_transitions"] = request_lifecycle.get_available_transitions(req)
    return data


@request_bp.route("", methods=["POST"])
def create_request():
    actor = current_actor()
    data = json_body()
    fields = {k: data[k] for k in request_lifecycle.EDITABLE_FIELDS if k in data}
    req = request_lifecycle.create_request(actor, **fields)
    return jsonify(_detail(req)), 201


@request_bp.route("", methods=["GET"])
def list_requests():
    actor = current_actor()
    q = request_lifecycle.list_requests(
        actor,
        status=request.args.get("status"),
        client_id=request.args.get("client_id"),
        assigned_reviewer_id=request.args.get("assigned_reviewer_id"),
    )
    items, total = paginate_query(q)
    return jsonify({"items": [r.to_dict(include_history=False) for r in items], "total": total})


@request_bp.route("/<request_id>", methods=["GET"])
def get_request(request_id):
    actor = current_actor()
    return jsonify(_detail(request_lifecycle.get_request(request_id, actor)))


@request_bp.route("/<request_id>", methods=["PATCH"])
def update_request(request_id):
    actor = current_actor()
    req = request_lifecycle.update_request(request_id, actor, json_body())
    return jsonify(_detail(req))


@request_bp.route("/<request_id>/submit", methods=["POST"])
def submit_request(request_id):
    actor = current_actor()
    return jsonify(_detail(request_lifecycle.submit_request(request_id, actor)))


@request_bp.route("/<request_id>/review", methods=["POST"])
def review_request(request_id):
    actor = current_actor()
    data = json_body()
    req = request_lifecycle.review_request(
        request_id,
        actor,
        data.get("action"),
        comments=data.get("comments"),
        assignee_id=data.get("assignee_id"),
    )
    return jsonify(_detail(req))


@request_bp.route("/<request_id>/cancel", methods=["POST"])
def cancel_request(request_id):
    actor = current_actor()
    data = json_body()
    req = request_lifecycle.cancel_request(request_id, actor, reason=data.get("reason"))
    return jsonify(_detail(req))


@request_bp.route("/<request_id>/issue", methods=["POST"])
def issue_request_certificate(request_id):
    actor = current_actor()
    return jsonify(_detail(request_lifecycle.issue_request_certificate(request_id, actor)))
