"""
Certificate Workflow Service
Certificate Template Blueprint.

Endpoints:
    POST /api/v1/templates                  create from a verified document (CA/Admin)
    GET  /api/v1/templates                  list (?status, ?document_id, ?created_by)
    GET  /api/v1/templates/<id>             detail
    POST /api/v1/templates/<id>/revise      new revision after changes_requested (CA/Admin)
    POST /api/v1/templates/<id>/review      client decision (Client/Admin)
    POST /api/v1/templates/<id>/activate    client_approved → active (CA/Admin)
"""

from flask import Blueprint, jsonify, request

from certflow.blueprints import (
    current_actor,
    json_body,
    list_response,
    paginate_query,
    register_error_handlers,
)
from certflow.models.template import CertificateTemplate
from certflow.services import template_lifecycle
from certflow.services.transitions import load_or_404

template_bp = Blueprint("templates", __name__, url_prefix="/api/v1/templates")
register_error_handlers(template_bp)


@template_bp.route("", methods=["POST"])
def create_template():
    actor = current_actor()
    data = json_body()
    tpl = template_lifecycle.create_template(
        data.get("document_id"),
        actor,
        name=data.get("name"),
        description=data.get("description", ""),
        certificate_type=data.get("certificate_type", "completion"),
    )
    return jsonify(tpl.to_dict()), 201


@template_bp.route("", methods=["GET"])
def list_templates():
    current_actor()
    q = template_lifecycle.list_templates(
        status=request.args.get("status"),
        document_id=request.args.get("document_id"),
        created_by=request.args.get("created_by"),
    )
    return list_response(*paginate_query(q))


@template_bp.route("/<template_id>", methods=["GET"])
def get_template(template_id):
    current_actor()
    tpl = load_or_404(CertificateTemplate, template_id, "CertificateTemplate")
    return jsonify(tpl.to_dict())


@template_bp.route("/<template_id>/revise", methods=["POST"])
def revise_template(template_id):
    actor = current_actor()
    data = json_body()
    tpl = template_lifecycle.revise_template(
        template_id,
        actor,
        name=data.get("name"),
        description=data.get("description"),
        certificate_type=data.get("certificate_type"),
    )
    return jsonify(tpl.to_dict()), 201


@template_bp.route("/<template_id>/review", methods=["POST"])
def review_template(template_id):
    actor = current_actor()
    data = json_body()
    tpl = template_lifecycle.review_template(
        template_id, actor, data.get("action"), comments=data.get("comments"),
    )
    return jsonify(tpl.to_dict())


@template_bp.route("/<template_id>/activate", methods=["POST"])
def activate_template(template_id):
    actor = current_actor()
    tpl = template_lifecycle.activate_template(template_id, actor)
    return jsonify(tpl.to_dict())
