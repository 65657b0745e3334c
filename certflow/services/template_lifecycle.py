"""
Template Lifecycle Service.

CA-authored certificate templates and their client review:

    create_template    verified Document → new pending_client_review template
    revise_template    changes_requested template → new revision (old row kept)
    review_template    pending_client_review → client_approved | changes_requested | rejected
    activate_template  client_approved → active

With TEMPLATE_AUTO_ACTIVATE (default on) a client approval writes ``active``
directly.  When a template becomes active and TEMPLATE_AUTO_ISSUE is on, a
certificate is minted for the source document's uploader in the same
transaction.

Usage:
    from certflow.services.template_lifecycle import create_template, review_template

    tpl = create_template(doc_id, ca_actor, name="BSc Transcript")
    tpl = review_template(tpl.id, client_actor, "client_approved")
"""

import logging
from datetime import datetime, timezone

from flask import current_app

from certflow.core.exceptions import InvalidStateError, ValidationError
from certflow.core.identity import Actor
from certflow.models import db
from certflow.models.certificate import Certificate
from certflow.models.certificate_request import CERTIFICATE_TYPES
from certflow.models.document import Document
from certflow.models.template import (
    LIVE_TEMPLATE_STATUSES,
    TEMPLATE_REVIEW_ACTIONS,
    CertificateTemplate,
    validate_template_transition,
)
from certflow.services.certificate_service import mint_certificate
from certflow.services.notification import NotificationService
from certflow.services.permission import check_capability
from certflow.services.transitions import (
    after_commit,
    compare_and_swap,
    load_or_404,
    require_status,
)
from certflow.utils.helpers import clean_text, is_choice

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 200

# Review actions that must explain themselves
_COMMENT_REQUIRED = {"changes_requested", "rejected"}


def _validate_fields(name, description, certificate_type):
    errors = {}
    if name is not None and not isinstance(name, str):
        errors["name"] = "must be a string"
    elif not (name or "").strip():
        errors["name"] = "required"
    elif len(name.strip()) > MAX_NAME_LENGTH:
        errors["name"] = f"must be at most {MAX_NAME_LENGTH} characters"
    if description is not None and not isinstance(description, str):
        errors["description"] = "must be a string"
    if not is_choice(certificate_type, CERTIFICATE_TYPES):
        errors["certificate_type"] = f"must be one of {sorted(CERTIFICATE_TYPES)}"
    if errors:
        raise ValidationError("Invalid template data", details=errors)


def _live_template(document_id):
    return (
        CertificateTemplate.query
        .filter(
            CertificateTemplate.source_document_id == document_id,
            CertificateTemplate.status.in_(LIVE_TEMPLATE_STATUSES),
        )
        .first()
    )


def _new_template(author, document, *, name, description, certificate_type, revision_of_id):
    """
    Flag the document and insert the template row.

    The document write is version-checked, so of two authors who both saw
    no live template only the first gets past it.
    """
    existing = _live_template(document.id)
    if existing is not None:
        raise InvalidStateError(
            "Document", document.id, current=document.status,
            reason=f"template {existing.id} is already {existing.status}",
        )
    compare_and_swap(Document, document.id, "Document", expected="verified",
                     values={"template_created": True},
                     version=document.template_version, version_column="template_version")

    tpl = CertificateTemplate(
        name=name.strip(),
        description=(description or "").strip(),
        certificate_type=certificate_type,
        source_document_id=document.id,
        revision_of_id=revision_of_id,
        created_by=author.user_id,
        status="pending_client_review",
    )
    db.session.add(tpl)
    db.session.flush()
    return tpl


def _template_created_activity(author, tpl):
    metadata = {"template_id": tpl.id, "document_id": tpl.source_document_id}
    if tpl.revision_of_id:
        metadata["revision_of_id"] = tpl.revision_of_id
    return {
        "actor_id": author.user_id,
        "action": "template_created",
        "description": f'Created template "{tpl.name}"'
                       + (" (revision)" if tpl.revision_of_id else ""),
        "metadata": metadata,
    }


# ═════════════════════════════════════════════════════════════════════════════
# Authoring
# ═════════════════════════════════════════════════════════════════════════════


def create_template(document_id, author: Actor, *, name, description="",
                    certificate_type="completion"):
    """
    Create a template from a verified document.

    When earlier templates of the document are in changes_requested, the new
    one is recorded as a revision of the latest of them.
    """
    check_capability(author, "create_template")
    _validate_fields(name, description, certificate_type)

    doc = load_or_404(Document, document_id, "Document")
    require_status(doc, "Document", {"verified"})

    previous = (
        CertificateTemplate.query
        .filter_by(source_document_id=doc.id, status="changes_requested")
        .order_by(CertificateTemplate.created_at.desc())
        .first()
    )
    tpl = _new_template(
        author, doc, name=name, description=description,
        certificate_type=certificate_type,
        revision_of_id=previous.id if previous else None,
    )
    db.session.commit()
    logger.info("Template %s created from document %s by %s", tpl.id, doc.id, author.user_id,
                extra={"entity_type": "template", "entity_id": tpl.id})

    after_commit(activities=[_template_created_activity(author, tpl)])
    return tpl


def revise_template(template_id, author: Actor, *, name=None, description=None,
                    certificate_type=None):
    """
    Create a new revision of a template the client sent back.

    The original row stays in changes_requested for the audit trail.
    Rejected templates cannot be revised; start over with create_template.
    """
    check_capability(author, "revise_template")
    old = load_or_404(CertificateTemplate, template_id, "CertificateTemplate")
    require_status(old, "CertificateTemplate", {"changes_requested"})
    if old.source_document_id is None:
        raise InvalidStateError("CertificateTemplate", old.id, current=old.status,
                                reason="source document no longer exists")

    name = name if name is not None else old.name
    description = description if description is not None else old.description
    certificate_type = certificate_type or old.certificate_type
    _validate_fields(name, description, certificate_type)

    doc = load_or_404(Document, old.source_document_id, "Document")
    tpl = _new_template(
        author, doc, name=name, description=description,
        certificate_type=certificate_type, revision_of_id=old.id,
    )
    db.session.commit()
    logger.info("Template %s revised as %s by %s", old.id, tpl.id, author.user_id,
                extra={"entity_type": "template", "entity_id": tpl.id})

    after_commit(activities=[_template_created_activity(author, tpl)])
    return tpl


# ═════════════════════════════════════════════════════════════════════════════
# Review & activation
# ═════════════════════════════════════════════════════════════════════════════


def _issue_from_template(tpl):
    """Mint the uploader's certificate for a template that just went active."""
    if not current_app.config.get("TEMPLATE_AUTO_ISSUE", True):
        return None, None
    doc = tpl.source_document
    if doc is None:
        return None, None
    already = Certificate.query.filter_by(template_id=tpl.id, recipient_id=doc.uploader_id).first()
    if already is not None:
        return None, None
    return mint_certificate(
        issuer_id=tpl.created_by,
        recipient_id=doc.uploader_id,
        recipient_name=doc.uploader_name or doc.uploader_id,
        title=tpl.name,
        certificate_type=tpl.certificate_type,
        template_id=tpl.id,
        metadata={"document_id": doc.id},
    )


def review_template(template_id, reviewer: Actor, action, comments=None):
    """
    Client decision on a template awaiting review.

    Raises:
        ValidationError: unknown action, or changes/rejection without comments.
        InvalidStateError: template not pending_client_review (or lost race).
    """
    check_capability(reviewer, "review_template")

    if not is_choice(action, TEMPLATE_REVIEW_ACTIONS):
        raise ValidationError(
            f"action must be one of {sorted(TEMPLATE_REVIEW_ACTIONS)}",
            details={"action": f"must be one of {sorted(TEMPLATE_REVIEW_ACTIONS)}"},
        )
    target = TEMPLATE_REVIEW_ACTIONS[action]
    comments = clean_text(comments, "comments")
    if action in _COMMENT_REQUIRED and not comments:
        raise ValidationError(f"Comments are required for {action}", details={"comments": "required"})

    tpl = load_or_404(CertificateTemplate, template_id, "CertificateTemplate")
    require_status(tpl, "CertificateTemplate", {"pending_client_review"})

    now = datetime.now(timezone.utc)
    activate = target == "client_approved" and current_app.config.get("TEMPLATE_AUTO_ACTIVATE", True)
    values = {
        "status": "active" if activate else target,
        "client_reviewed_by": reviewer.user_id,
        "client_reviewed_at": now,
        "client_comments": comments,
    }
    if activate:
        values["activated_at"] = now
    compare_and_swap(CertificateTemplate, tpl.id, "CertificateTemplate",
                     expected="pending_client_review", values=values)

    outbox = [NotificationService.enqueue(
        user_id=tpl.created_by,
        title=f"Template {target.replace('_', ' ')}",
        message=f'Client review of "{tpl.name}": {target.replace("_", " ")}'
                + (f" ({comments})" if comments else ""),
        notification_type="template_review",
        data={"template_id": tpl.id, "status": values["status"]},
    )]
    cert = None
    if activate:
        cert, cert_outbox = _issue_from_template(tpl)
        outbox.append(cert_outbox)
    db.session.commit()
    logger.info("Template %s reviewed by %s: %s", template_id, reviewer.user_id, values["status"],
                extra={"entity_type": "template", "entity_id": template_id})

    metadata = {"template_id": template_id, "action": action,
                "reviewer_role": "client", "status": values["status"]}
    if cert is not None:
        metadata["certificate_id"] = cert.id
    after_commit(activities=[{
        "actor_id": reviewer.user_id,
        "action": "template_reviewed",
        "description": f'Client review of template "{tpl.name}": {action}',
        "metadata": metadata,
    }], outbox=outbox)
    return db.session.get(CertificateTemplate, template_id)


def activate_template(template_id, actor: Actor):
    """client_approved → active (used when auto-activation is off)."""
    check_capability(actor, "activate_template")
    tpl = load_or_404(CertificateTemplate, template_id, "CertificateTemplate")
    if not validate_template_transition(tpl.status, "active"):
        raise InvalidStateError("CertificateTemplate", tpl.id, current=tpl.status,
                                expected={"client_approved"})

    compare_and_swap(CertificateTemplate, tpl.id, "CertificateTemplate",
                     expected="client_approved",
                     values={"status": "active", "activated_at": datetime.now(timezone.utc)})
    cert, outbox = _issue_from_template(tpl)
    db.session.commit()
    logger.info("Template %s activated by %s", template_id, actor.user_id,
                extra={"entity_type": "template", "entity_id": template_id})

    metadata = {"template_id": tpl.id, "status": "active"}
    if cert is not None:
        metadata["certificate_id"] = cert.id
    after_commit(activities=[{
        "actor_id": actor.user_id,
        "action": "template_activated",
        "description": f'Template "{tpl.name}" is active',
        "metadata": metadata,
    }], outbox=[outbox])
    return db.session.get(CertificateTemplate, template_id)


def list_templates(*, status=None, document_id=None, created_by=None):
    q = CertificateTemplate.query
    if status:
        q = q.filter_by(status=status)
    if document_id:
        q = q.filter_by(source_document_id=document_id)
    if created_by:
        q = q.filter_by(created_by=created_by)
    return q.order_by(CertificateTemplate.created_at.desc())
