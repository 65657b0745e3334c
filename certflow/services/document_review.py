"""
Document Review Service.

Registers uploaded documents and runs the CA review transition:

    pending → verified   (approve)
    pending → rejected   (reject, reason required)

Usage:
    from certflow.services.document_review import review_document

    doc = review_document(doc_id, reviewer, "approve", comments="Looks good")
"""

import logging
from datetime import datetime, timezone

from certflow.core.exceptions import InvalidStateError, ValidationError
from certflow.core.identity import Actor
from certflow.models import db
from certflow.models.document import DOCUMENT_TYPES, Document, validate_document_transition
from certflow.services.notification import NotificationService
from certflow.services.permission import check_capability
from certflow.services.transitions import after_commit, compare_and_swap, load_or_404
from certflow.utils.helpers import clean_text, is_choice

logger = logging.getLogger(__name__)

# Review decision → target status
REVIEW_DECISIONS = {
    "approve": "verified",
    "reject": "rejected",
}

MAX_FILE_NAME_LENGTH = 255


def register_upload(uploader: Actor, *, file_name, mime_type="application/octet-stream",
                    file_size=0, document_type="other"):
    """
    Record a document the uploader has stored externally.  Starts ``pending``.
    """
    check_capability(uploader, "upload_document")

    errors = {}
    file_name = clean_text(file_name, "file_name")
    mime_type = clean_text(mime_type, "mime_type")
    if not file_name:
        errors["file_name"] = "required"
    elif len(file_name) > MAX_FILE_NAME_LENGTH:
        errors["file_name"] = f"must be at most {MAX_FILE_NAME_LENGTH} characters"
    if not is_choice(document_type, DOCUMENT_TYPES):
        errors["type"] = f"must be one of {sorted(DOCUMENT_TYPES)}"
    try:
        file_size = int(file_size or 0)
        if file_size < 0:
            errors["file_size"] = "must be >= 0"
    except (TypeError, ValueError):
        errors["file_size"] = "must be an integer"
    if errors:
        raise ValidationError("Invalid document upload", details=errors)

    doc = Document(
        uploader_id=uploader.user_id,
        uploader_name=uploader.name,
        file_name=file_name,
        mime_type=mime_type or "application/octet-stream",
        file_size=file_size,
        type=document_type,
        status="pending",
    )
    db.session.add(doc)
    db.session.commit()
    logger.info("Document %s uploaded by %s", doc.id, uploader.user_id,
                extra={"entity_type": "document", "entity_id": doc.id})

    after_commit(activities=[{
        "actor_id": uploader.user_id,
        "action": "document_uploaded",
        "description": f"Uploaded document {doc.file_name}",
        "metadata": {"document_id": doc.id, "type": doc.type},
    }])
    return doc


def review_document(document_id, reviewer: Actor, decision, reason=None, comments=None):
    """
    Approve or reject a pending document.

    Raises:
        UnauthorizedError: reviewer is not an active CA/Admin.
        NotFoundError: no such document.
        ValidationError: unknown decision, or reject without reason.
        InvalidStateError: document is not pending (including a lost race).
    """
    check_capability(reviewer, "review_document")

    if not is_choice(decision, REVIEW_DECISIONS):
        raise ValidationError(
            f"decision must be one of {sorted(REVIEW_DECISIONS)}",
            details={"decision": f"must be one of {sorted(REVIEW_DECISIONS)}"},
        )
    target = REVIEW_DECISIONS[decision]
    reason = clean_text(reason, "reason")
    comments = clean_text(comments, "comments")
    if target == "rejected" and not reason:
        raise ValidationError("A rejection reason is required", details={"reason": "required"})

    doc = load_or_404(Document, document_id, "Document")
    if not validate_document_transition(doc.status, target):
        raise InvalidStateError("Document", doc.id, current=doc.status, expected={"pending"})

    now = datetime.now(timezone.utc)
    compare_and_swap(Document, doc.id, "Document", expected="pending", values={
        "status": target,
        "reviewed_by": reviewer.user_id,
        "reviewed_at": now,
        "rejection_reason": reason if target == "rejected" else None,
        "review_comments": comments,
    })

    outbox = []
    if target == "verified":
        outbox.append(NotificationService.enqueue(
            user_id=doc.uploader_id,
            title="Document approved",
            message=f"Your document {doc.file_name} has been verified.",
            notification_type="document_review",
            data={"document_id": doc.id, "status": target},
        ))
        outbox.append(NotificationService.enqueue(
            user_id=reviewer.user_id,
            title="Ready for template creation",
            message=f"Document {doc.file_name} is verified and ready for a certificate template.",
            notification_type="template_ready",
            data={"document_id": doc.id},
        ))
    else:
        outbox.append(NotificationService.enqueue(
            user_id=doc.uploader_id,
            title="Document rejected",
            message=f"Your document {doc.file_name} was rejected: {reason}",
            notification_type="document_review",
            data={"document_id": doc.id, "status": target, "reason": reason},
        ))
    db.session.commit()
    logger.info("Document %s %s by %s", document_id, target, reviewer.user_id,
                extra={"entity_type": "document", "entity_id": document_id})

    metadata = {"document_id": document_id, "decision": decision, "status": target}
    if reason:
        metadata["reason"] = reason
    after_commit(activities=[{
        "actor_id": reviewer.user_id,
        "action": "document_reviewed",
        "description": f"{'Approved' if target == 'verified' else 'Rejected'} document "
                       f"{doc.file_name}",
        "metadata": metadata,
    }], outbox=outbox)
    return db.session.get(Document, document_id)


def list_documents(actor: Actor, *, status=None, uploader_id=None):
    """Documents visible to *actor*: own uploads, or all for CA/Admin."""
    q = Document.query
    if actor.role in ("ca", "admin"):
        if uploader_id:
            q = q.filter_by(uploader_id=uploader_id)
    else:
        q = q.filter_by(uploader_id=actor.user_id)
    if status:
        q = q.filter_by(status=status)
    return q.order_by(Document.uploaded_at.desc())
