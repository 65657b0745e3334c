"""
Certificate Workflow Service
Document Blueprint.

Endpoints:
    POST /api/v1/documents                  register an uploaded document
    GET  /api/v1/documents                  list (own, or all for CA/Admin)
    GET  /api/v1/documents/<id>             detail
    POST /api/v1/documents/<id>/review      approve / reject (CA/Admin)
"""

from flask import Blueprint, jsonify, request

from certflow.blueprints import (
    current_actor,
    json_body,
    list_response,
    paginate_query,
    register_error_handlers,
)
from certflow.models.document import Document
from certflow.services import document_review
from certflow.services.permission import check_owner
from certflow.services.transitions import load_or_404

document_bp = Blueprint("documents", __name__, url_prefix="/api/v1/documents")
register_error_handlers(document_bp)


@document_bp.route("", methods=["POST"])
def upload_document():
    actor = current_actor()
    data = json_body()
    doc = document_review.register_upload(
        actor,
        file_name=data.get("file_name"),
        mime_type=data.get("mime_type") or "application/octet-stream",
        file_size=data.get("file_size", 0),
        document_type=data.get("type", "other"),
    )
    return jsonify(doc.to_dict()), 201


@document_bp.route("", methods=["GET"])
def list_documents():
    actor = current_actor()
    q = document_review.list_documents(
        actor,
        status=request.args.get("status"),
        uploader_id=request.args.get("uploader_id"),
    )
    return list_response(*paginate_query(q))


@document_bp.route("/<document_id>", methods=["GET"])
def get_document(document_id):
    actor = current_actor()
    doc = load_or_404(Document, document_id, "Document")
    if actor.role not in ("ca", "admin"):
        check_owner(actor, doc.uploader_id, "view_document")
    return jsonify(doc.to_dict())


@document_bp.route("/<document_id>/review", methods=["POST"])
def review_document(document_id):
    actor = current_actor()
    data = json_body()
    doc = document_review.review_document(
        document_id,
        actor,
        data.get("decision"),
        reason=data.get("reason"),
        comments=data.get("comments"),
    )
    return jsonify(doc.to_dict())
