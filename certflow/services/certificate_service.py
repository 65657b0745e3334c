"""
Certificate Service.

Minting, activation, revocation and public verification of certificates.

A certificate comes into existence in exactly three ways:
    - issue_certificate(): direct CA/Admin creation
    - a template becoming active (template_lifecycle, auto-issue to the
      source document's uploader)
    - a request moving approved → issued (request_lifecycle)

The latter two call mint_certificate() inside their own transaction so the
certificate and the status change commit together.
"""

import logging
import secrets
from datetime import datetime, timezone

from certflow.core.exceptions import InvalidStateError, UnauthorizedError, ValidationError
from certflow.core.identity import Actor
from certflow.models import db
from certflow.models.certificate import (
    VERIFICATION_CODE_ALPHABET,
    VERIFICATION_CODE_LENGTH,
    Certificate,
    calculate_expiry,
    validate_certificate_transition,
)
from certflow.models.certificate_request import CERTIFICATE_TYPES
from certflow.services.notification import NotificationService
from certflow.services.permission import check_capability
from certflow.services.transitions import after_commit, compare_and_swap, load_or_404
from certflow.utils.helpers import clean_text, is_choice

logger = logging.getLogger(__name__)

_MAX_CODE_ATTEMPTS = 10


def generate_verification_code() -> str:
    """Random 8-character A-Z0-9 code not yet used by any certificate."""
    for _ in range(_MAX_CODE_ATTEMPTS):
        code = "".join(
            secrets.choice(VERIFICATION_CODE_ALPHABET) for _ in range(VERIFICATION_CODE_LENGTH)
        )
        if not Certificate.query.filter_by(verification_code=code).first():
            return code
    raise RuntimeError("Could not generate a unique verification code")


def mint_certificate(
    *,
    issuer_id,
    recipient_id,
    recipient_name,
    title,
    certificate_type="completion",
    recipient_email=None,
    template_id=None,
    request_id=None,
    metadata=None,
    issued_at=None,
):
    """
    Add a new ``issued`` certificate and its recipient notification to the
    current session (no commit).

    Returns:
        (certificate, outbox_row)
    """
    issued_at = issued_at or datetime.now(timezone.utc)
    cert = Certificate(
        recipient_id=recipient_id,
        recipient_name=recipient_name or recipient_id,
        recipient_email=recipient_email,
        issuer_id=issuer_id,
        title=title,
        type=certificate_type,
        template_id=template_id,
        request_id=request_id,
        issued_at=issued_at,
        expires_at=calculate_expiry(certificate_type, issued_at),
        status="issued",
        verification_code=generate_verification_code(),
        metadata_json=metadata or {},
    )
    db.session.add(cert)
    db.session.flush()

    outbox = NotificationService.enqueue(
        user_id=recipient_id,
        title="Certificate issued",
        message=f'Your certificate "{title}" has been issued.',
        notification_type="certificate_issued",
        data={"certificate_id": cert.id, "verification_code": cert.verification_code},
    )
    return cert, outbox


def _issued_activity(actor_id, cert):
    """Activity kwargs describing the issue of *cert*."""
    metadata = {"certificate_id": cert.id, "recipient_id": cert.recipient_id, "type": cert.type}
    if cert.template_id:
        metadata["template_id"] = cert.template_id
    if cert.request_id:
        metadata["request_id"] = cert.request_id
    return {
        "actor_id": actor_id,
        "action": "certificate_issued",
        "description": f'Issued certificate "{cert.title}" to {cert.recipient_name}',
        "metadata": metadata,
    }


# ═════════════════════════════════════════════════════════════════════════════
# Operations
# ═════════════════════════════════════════════════════════════════════════════


def issue_certificate(
    issuer: Actor,
    *,
    recipient_id,
    recipient_name,
    title,
    certificate_type="completion",
    recipient_email=None,
    metadata=None,
):
    """Direct certificate creation by a CA or Admin."""
    check_capability(issuer, "issue_certificate")

    recipient_id = clean_text(recipient_id, "recipient_id")
    recipient_name = clean_text(recipient_name, "recipient_name")
    recipient_email = clean_text(recipient_email, "recipient_email")
    title = clean_text(title, "title")

    errors = {}
    for field, value in (("recipient_id", recipient_id), ("recipient_name", recipient_name),
                         ("title", title)):
        if not value:
            errors[field] = "required"
    if not is_choice(certificate_type, CERTIFICATE_TYPES):
        errors["certificate_type"] = f"must be one of {sorted(CERTIFICATE_TYPES)}"
    if errors:
        raise ValidationError("Invalid certificate data", details=errors)

    cert, outbox = mint_certificate(
        issuer_id=issuer.user_id,
        recipient_id=recipient_id,
        recipient_name=recipient_name,
        recipient_email=recipient_email,
        title=title,
        certificate_type=certificate_type,
        metadata=metadata,
    )
    db.session.commit()
    logger.info("Certificate %s issued to %s by %s", cert.id, cert.recipient_id, issuer.user_id,
                extra={"entity_type": "certificate", "entity_id": cert.id})

    after_commit(activities=[_issued_activity(issuer.user_id, cert)], outbox=[outbox])
    return cert


def activate_certificate(certificate_id, actor: Actor):
    """issued → active.  The recipient, or a CA/Admin, may activate."""
    check_capability(actor, "activate_certificate")
    cert = load_or_404(Certificate, certificate_id, "Certificate")
    if actor.role not in ("ca", "admin") and actor.user_id != cert.recipient_id:
        raise UnauthorizedError(actor.user_id, "activate_certificate", "not the recipient")
    if not validate_certificate_transition(cert.status, "active"):
        raise InvalidStateError("Certificate", cert.id, current=cert.status, expected={"issued"})

    compare_and_swap(Certificate, cert.id, "Certificate", expected="issued",
                     values={"status": "active"})
    db.session.commit()

    after_commit(activities=[{
        "actor_id": actor.user_id,
        "action": "certificate_activated",
        "description": f'Activated certificate "{cert.title}"',
        "metadata": {"certificate_id": cert.id},
    }])
    return db.session.get(Certificate, cert.id)


def revoke_certificate(certificate_id, actor: Actor, reason):
    """issued | active → revoked.  A reason is mandatory."""
    check_capability(actor, "revoke_certificate")
    cert = load_or_404(Certificate, certificate_id, "Certificate")
    reason = clean_text(reason, "reason")
    if not reason:
        raise ValidationError("A revocation reason is required", details={"reason": "required"})
    if not validate_certificate_transition(cert.status, "revoked"):
        raise InvalidStateError("Certificate", cert.id, current=cert.status,
                                expected={"issued", "active"})

    previous = cert.status
    compare_and_swap(Certificate, cert.id, "Certificate", expected=previous, values={
        "status": "revoked",
        "revoked_by": actor.user_id,
        "revoked_at": datetime.now(timezone.utc),
        "revocation_reason": reason,
    })
    outbox = NotificationService.enqueue(
        user_id=cert.recipient_id,
        title="Certificate revoked",
        message=f'Your certificate "{cert.title}" was revoked: {reason}',
        notification_type="certificate_revoked",
        data={"certificate_id": cert.id},
    )
    db.session.commit()
    logger.warning("Certificate %s revoked by %s", cert.id, actor.user_id,
                   extra={"entity_type": "certificate", "entity_id": cert.id})

    after_commit(activities=[{
        "actor_id": actor.user_id,
        "action": "certificate_revoked",
        "description": f'Revoked certificate "{cert.title}"',
        "metadata": {"certificate_id": cert.id, "previous_status": previous,
                     "reason": reason},
    }], outbox=[outbox])
    return db.session.get(Certificate, cert.id)


def verify_certificate(verification_code):
    """
    Public verification lookup.

    Returns:
        {"valid": bool, "reason": str|None, "certificate": dict|None}
    """
    code = (verification_code or "").strip().upper()
    if len(code) != VERIFICATION_CODE_LENGTH:
        return {"valid": False, "reason": "malformed_code", "certificate": None}

    cert = Certificate.query.filter_by(verification_code=code).first()
    if cert is None:
        return {"valid": False, "reason": "not_found", "certificate": None}

    summary = {
        "id": cert.id,
        "recipient_name": cert.recipient_name,
        "title": cert.title,
        "type": cert.type,
        "issued_at": cert.issued_at.isoformat() if cert.issued_at else None,
        "expires_at": cert.expires_at.isoformat() if cert.expires_at else None,
        "status": cert.status,
    }
    if cert.status == "revoked":
        return {"valid": False, "reason": "revoked", "certificate": summary}
    if cert.is_expired():
        return {"valid": False, "reason": "expired", "certificate": summary}
    return {"valid": True, "reason": None, "certificate": summary}


def list_certificates(actor: Actor, *, recipient_id=None, status=None):
    """Certificates visible to *actor*: own ones, or all for CA/Admin."""
    q = Certificate.query
    if actor.role in ("ca", "admin"):
        if recipient_id:
            q = q.filter_by(recipient_id=recipient_id)
    else:
        q = q.filter_by(recipient_id=actor.user_id)
    if status:
        q = q.filter_by(status=status)
    return q.order_by(Certificate.issued_at.desc())
