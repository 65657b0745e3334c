"""
Certificate Workflow Service
Certificate Blueprint.

Endpoints:
    POST /api/v1/certificates                   direct issue (CA/Admin)
    GET  /api/v1/certificates                   list (own, or all for CA/Admin)
    GET  /api/v1/certificates/<id>              detail
    POST /api/v1/certificates/<id>/activate     issued → active
    POST /api/v1/certificates/<id>/revoke       → revoked (CA/Admin, reason required)

    GET  /api/v1/verify/<code>                  public verification (no identity)
"""

from flask import Blueprint, jsonify, request

from certflow.blueprints import (
    current_actor,
    json_body,
    list_response,
    paginate_query,
    register_error_handlers,
)
from certflow.models.certificate import Certificate
from certflow.services import certificate_service
from certflow.services.permission import check_owner
from certflow.services.transitions import load_or_404

certificate_bp = Blueprint("certificates", __name__, url_prefix="/api/v1/certificates")
register_error_handlers(certificate_bp)

verification_bp = Blueprint("verification", __name__, url_prefix="/api/v1/verify")


@certificate_bp.route("", methods=["POST"])
def issue_certificate():
    actor = current_actor()
    data = json_body()
    cert = certificate_service.issue_certificate(
        actor,
        recipient_id=data.get("recipient_id"),
        recipient_name=data.get("recipient_name"),
        recipient_email=data.get("recipient_email"),
        title=data.get("title"),
        certificate_type=data.get("type", "completion"),
        metadata=data.get("metadata") if isinstance(data.get("metadata"), dict) else None,
    )
    return jsonify(cert.to_dict()), 201


@certificate_bp.route("", methods=["GET"])
def list_certificates():
    actor = current_actor()
    q = certificate_service.list_certificates(
        actor,
        recipient_id=request.args.get("recipient_id"),
        status=request.args.get("status"),
    )
    return list_response(*paginate_query(q))


@certificate_bp.route("/<certificate_id>", methods=["GET"])
def get_certificate(certificate_id):
    actor = current_actor()
    cert = load_or_404(Certificate, certificate_id, "Certificate")
    if actor.role not in ("ca", "admin"):
        check_owner(actor, cert.recipient_id, "view_certificate")
    return jsonify(cert.to_dict())


@certificate_bp.route("/<certificate_id>/activate", methods=["POST"])
def activate_certificate(certificate_id):
    actor = current_actor()
    cert = certificate_service.activate_certificate(certificate_id, actor)
    return jsonify(cert.to_dict())


@certificate_bp.route("/<certificate_id>/revoke", methods=["POST"])
def revoke_certificate(certificate_id):
    actor = current_actor()
    data = json_body()
    cert = certificate_service.revoke_certificate(certificate_id, actor, data.get("reason"))
    return jsonify(cert.to_dict())


@verification_bp.route("/<code>", methods=["GET"])
def verify_certificate(code):
    return jsonify(certificate_service.verify_certificate(code))
