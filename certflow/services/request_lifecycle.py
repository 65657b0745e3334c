"""
Certificate Request Lifecycle Service.

Manages request status transitions with:
  - Transition validation (REQUEST_TRANSITIONS)
  - Capability and ownership checks
  - Append-only approval history (ApprovalRecord)
  - Version-checked compare-and-swap on every write
  - Activity trail and client notifications after commit

Client operations:   create_request, update_request, submit_request, cancel_request
Reviewer operations: review_request
System / CA:         issue_request_certificate

Usage:
    from certflow.services.request_lifecycle import review_request

    req = review_request(request_id, reviewer, "changes_requested",
                         comments="add organization name")
"""

import logging
from datetime import datetime, timezone

from flask import current_app

from certflow.core.exceptions import InvalidStateError, ValidationError
from certflow.core.identity import Actor
from certflow.models import db
from certflow.models.certificate_request import (
    ABSORBING_STATUSES,
    ANNOTATABLE_STATUSES,
    ANNOTATION_ACTIONS,
    CERTIFICATE_TYPES,
    DEFAULT_PRIORITY,
    EDITABLE_STATUSES,
    MAX_DESCRIPTION_LENGTH,
    MAX_TITLE_LENGTH,
    REQUEST_TRANSITIONS,
    REVIEW_ACTIONS,
    ApprovalRecord,
    CertificateRequest,
    validate_request_transition,
)
from certflow.services.certificate_service import mint_certificate
from certflow.services.notification import NotificationService
from certflow.services.permission import check_capability, check_owner, check_reviewer
from certflow.services.transitions import after_commit, compare_and_swap, load_or_404
from certflow.utils.helpers import clean_text, is_choice

logger = logging.getLogger(__name__)

RESOURCE = "CertificateRequest"

# Review actions that must carry reviewer comments
_COMMENT_REQUIRED = {"rejected", "changes_requested"}

# Annotations that hand the request to another reviewer
_ASSIGNING_ACTIONS = {"assigned", "forwarded"}

# Statuses that count toward a reviewer's queue
OPEN_STATUSES = ("submitted", "under_review")

# Fields a client may set on create / update
EDITABLE_FIELDS = (
    "organization_name", "certificate_type", "title", "description",
    "purpose", "requested_data", "priority", "client_name", "client_email",
)

TEXT_FIELDS = (
    "organization_name", "title", "description", "purpose", "client_name", "client_email",
)


# ═════════════════════════════════════════════════════════════════════════════
# Helpers
# ═════════════════════════════════════════════════════════════════════════════


def _validate_request_fields(fields, *, partial=False):
    """
    Validate request body fields.

    Args:
        partial: Only validate keys that are present (update).
    """
    errors = {}

    def present(key):
        return key in fields or not partial

    for key in TEXT_FIELDS:
        if fields.get(key) is not None and not isinstance(fields[key], str):
            errors[key] = "must be a string"

    for key in ("organization_name", "title", "description", "purpose"):
        if key not in errors and present(key) and not (fields.get(key) or "").strip():
            errors[key] = "required"

    if "title" not in errors and present("title"):
        if len((fields.get("title") or "").strip()) > MAX_TITLE_LENGTH:
            errors["title"] = f"must be at most {MAX_TITLE_LENGTH} characters"

    if "description" not in errors and present("description"):
        if len((fields.get("description") or "").strip()) > MAX_DESCRIPTION_LENGTH:
            errors["description"] = f"must be at most {MAX_DESCRIPTION_LENGTH} characters"

    if present("certificate_type") and not is_choice(fields.get("certificate_type"), CERTIFICATE_TYPES):
        errors["certificate_type"] = f"must be one of {sorted(CERTIFICATE_TYPES)}"

    if "priority" in fields and fields["priority"] is not None:
        try:
            priority = int(fields["priority"])
            if not 1 <= priority <= 5:
                errors["priority"] = "must be between 1 and 5"
        except (TypeError, ValueError):
            errors["priority"] = "must be an integer"

    if "requested_data" in fields and fields["requested_data"] is not None:
        if not isinstance(fields["requested_data"], dict):
            errors["requested_data"] = "must be an object"

    if errors:
        raise ValidationError("Invalid certificate request", details=errors)


def _clean(fields):
    out = {}
    for key in EDITABLE_FIELDS:
        if key not in fields:
            continue
        value = fields[key]
        if isinstance(value, str):
            value = value.strip()
        if key == "priority":
            value = int(value) if value is not None else DEFAULT_PRIORITY
        if key == "requested_data":
            value = value or {}
        out[key] = value
    return out


def _append_record(req, actor: Actor, action, *, comments=None, assignee_id=None):
    """Add the next ApprovalRecord for *req* to the session."""
    record = ApprovalRecord(
        request_id=req.id,
        sequence=len(req.approval_history) + 1,
        reviewer_id=actor.user_id,
        reviewer_name=actor.name,
        reviewer_role=actor.role,
        action=action,
        comments=comments,
        assignee_id=assignee_id,
        timestamp=datetime.now(timezone.utc),
    )
    db.session.add(record)
    return record


def _reject_absorbing(req):
    if req.status in ABSORBING_STATUSES:
        raise InvalidStateError(RESOURCE, req.id, current=req.status,
                                reason=f"request is {req.status}; no further transitions")


def _activity(actor, action, req, description, **extra):
    metadata = {"request_id": req.id, "status": extra.pop("status", req.status)}
    metadata.update(extra)
    return {"actor_id": actor.user_id, "action": action,
            "description": description, "metadata": metadata}


def get_available_transitions(req):
    """Status targets reachable from the request's current status."""
    return sorted(REQUEST_TRANSITIONS.get(req.status, set()))


def _pick_reviewer(client_id):
    """
    Least-loaded member of REQUEST_REVIEWERS, or None when the pool is empty.

    Load is the number of open (submitted / under_review) requests already
    assigned; ties go to the earlier pool entry.  A reviewer never gets
    their own request.
    """
    pool = [r for r in current_app.config.get("REQUEST_REVIEWERS", ()) if r != client_id]
    if not pool:
        return None
    load = dict(
        db.session.query(CertificateRequest.assigned_reviewer_id, db.func.count(CertificateRequest.id))
        .filter(
            CertificateRequest.assigned_reviewer_id.in_(pool),
            CertificateRequest.status.in_(OPEN_STATUSES),
        )
        .group_by(CertificateRequest.assigned_reviewer_id)
        .all()
    )
    return min(pool, key=lambda reviewer_id: load.get(reviewer_id, 0))


# ═════════════════════════════════════════════════════════════════════════════
# Client operations
# ═════════════════════════════════════════════════════════════════════════════


def create_request(client: Actor, **fields):
    """Create a draft request owned by *client*."""
    check_capability(client, "create_request")
    _validate_request_fields(fields)
    values = _clean(fields)
    values.setdefault("client_name", client.name)
    values.setdefault("client_email", client.email or "")
    values.setdefault("priority", DEFAULT_PRIORITY)

    req = CertificateRequest(client_id=client.user_id, status="draft", version=1, **values)
    db.session.add(req)
    db.session.commit()
    logger.info("Request %s created by %s", req.id, client.user_id,
                extra={"entity_type": "request", "entity_id": req.id})

    after_commit(activities=[_activity(
        client, "request_created", req, f'Created certificate request "{req.title}"',
        certificate_type=req.certificate_type,
    )])
    return req


def update_request(request_id, client: Actor, fields):
    """Edit the request body while it is draft or changes_requested."""
    check_capability(client, "update_request")
    req = load_or_404(CertificateRequest, request_id, RESOURCE)
    check_owner(client, req.client_id, "update_request")
    if req.status not in EDITABLE_STATUSES:
        raise InvalidStateError(RESOURCE, req.id, current=req.status, expected=EDITABLE_STATUSES)

    unknown = set(fields) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValidationError("Unknown fields", details={k: "not editable" for k in sorted(unknown)})
    _validate_request_fields(fields, partial=True)
    values = _clean(fields)
    if not values:
        return req

    values["updated_at"] = datetime.now(timezone.utc)
    compare_and_swap(CertificateRequest, req.id, RESOURCE, expected=req.status,
                     values=values, version=req.version)
    db.session.commit()

    after_commit(activities=[_activity(
        client, "request_updated", req, f'Updated certificate request "{req.title}"',
        fields=sorted(k for k in values if k != "updated_at"),
    )])
    return db.session.get(CertificateRequest, request_id)


def submit_request(request_id, client: Actor):
    """
    draft → submitted, or changes_requested → submitted (resubmission).

    Only a resubmission appends a ``submitted`` history record; the first
    submission leaves the history empty.

    A request without a reviewer is assigned the least-loaded member of
    REQUEST_REVIEWERS.  The assigned reviewer is notified; with an empty
    pool the notice goes to the REQUEST_REVIEW_QUEUE recipient instead.
    """
    check_capability(client, "submit_request")
    req = load_or_404(CertificateRequest, request_id, RESOURCE)
    check_owner(client, req.client_id, "submit_request")
    _reject_absorbing(req)
    if not validate_request_transition(req.status, "submitted"):
        raise InvalidStateError(RESOURCE, req.id, current=req.status,
                                expected={"draft", "changes_requested"})

    previous = req.status
    now = datetime.now(timezone.utc)
    values = {"status": "submitted", "submitted_at": now, "updated_at": now}
    reviewer_id = req.assigned_reviewer_id
    if reviewer_id is None:
        reviewer_id = _pick_reviewer(req.client_id)
        if reviewer_id is not None:
            values["assigned_reviewer_id"] = reviewer_id
    compare_and_swap(CertificateRequest, req.id, RESOURCE, expected=previous,
                     values=values, version=req.version)
    if previous == "changes_requested":
        _append_record(req, client, "submitted")

    outbox = [NotificationService.enqueue(
        user_id=reviewer_id or current_app.config.get("REQUEST_REVIEW_QUEUE", "ca-review-queue"),
        title="Certificate request resubmitted" if previous != "draft"
        else "New certificate request",
        message=f'"{req.title}" from {req.organization_name} is awaiting review.',
        notification_type="certificate_request",
        data={"request_id": req.id, "client_name": req.client_name,
              "certificate_type": req.certificate_type},
    )]
    db.session.commit()
    logger.info("Request %s submitted by %s (from %s), reviewer %s", request_id, client.user_id,
                previous, reviewer_id or "unassigned",
                extra={"entity_type": "request", "entity_id": request_id})

    extra = {"status": "submitted", "previous_status": previous}
    if "assigned_reviewer_id" in values:
        extra["assignee_id"] = reviewer_id
    after_commit(activities=[_activity(
        client, "request_submitted", req,
        f'{"Resubmitted" if previous == "changes_requested" else "Submitted"} '
        f'certificate request "{req.title}"',
        **extra,
    )], outbox=outbox)
    return db.session.get(CertificateRequest, request_id)


def cancel_request(request_id, client: Actor, reason=None):
    """{submitted, under_review} → cancelled.  Appends a ``cancelled`` record."""
    check_capability(client, "cancel_request")
    req = load_or_404(CertificateRequest, request_id, RESOURCE)
    check_owner(client, req.client_id, "cancel_request")
    _reject_absorbing(req)
    if not validate_request_transition(req.status, "cancelled"):
        raise InvalidStateError(RESOURCE, req.id, current=req.status,
                                expected={"submitted", "under_review"})

    previous = req.status
    reason = clean_text(reason, "reason")
    compare_and_swap(CertificateRequest, req.id, RESOURCE, expected=previous,
                     values={"status": "cancelled", "updated_at": datetime.now(timezone.utc)},
                     version=req.version)
    _append_record(req, client, "cancelled", comments=reason)

    outbox = []
    if req.assigned_reviewer_id:
        outbox.append(NotificationService.enqueue(
            user_id=req.assigned_reviewer_id,
            title="Certificate request cancelled",
            message=f'"{req.title}" was cancelled by the client.'
                    + (f" Reason: {reason}" if reason else ""),
            notification_type="certificate_request_cancelled",
            data={"request_id": req.id},
        ))
    db.session.commit()
    logger.info("Request %s cancelled by %s", request_id, client.user_id,
                extra={"entity_type": "request", "entity_id": request_id})

    after_commit(activities=[_activity(
        client, "request_cancelled", req, f'Cancelled certificate request "{req.title}"',
        status="cancelled", previous_status=previous, reason=reason,
    )], outbox=outbox)
    return db.session.get(CertificateRequest, request_id)


# ═════════════════════════════════════════════════════════════════════════════
# Reviewer operations
# ═════════════════════════════════════════════════════════════════════════════


def review_request(request_id, reviewer: Actor, action, comments=None, assignee_id=None):
    """
    Append a review record; status-changing actions move the request.

    Args:
        action: under_review | approved | rejected | changes_requested
                (status-changing) or assigned | forwarded | info_requested
                (annotation only).
        comments: Required for rejected and changes_requested.
        assignee_id: Required for assigned and forwarded.

    Raises:
        UnauthorizedError: reviewer owns the request, or another reviewer
            is assigned to it (admins are exempt from both).
        InvalidStateError: request is cancelled/issued, or the action is not
            a legal move from the current status, or a concurrent write won.
    """
    check_capability(reviewer, "review_request")
    if not is_choice(action, REVIEW_ACTIONS):
        raise ValidationError(f"action must be one of {sorted(REVIEW_ACTIONS)}",
                              details={"action": f"must be one of {sorted(REVIEW_ACTIONS)}"})
    comments = clean_text(comments, "comments")
    if action in _COMMENT_REQUIRED and not comments:
        raise ValidationError(f"Comments are required for {action}", details={"comments": "required"})
    assignee_id = clean_text(assignee_id, "assignee_id")
    if action in _ASSIGNING_ACTIONS and not assignee_id:
        raise ValidationError(f"assignee_id is required for {action}",
                              details={"assignee_id": "required"})

    req = load_or_404(CertificateRequest, request_id, RESOURCE)
    check_reviewer(reviewer, req.client_id, req.assigned_reviewer_id, "review_request")
    _reject_absorbing(req)

    current = req.status
    if action in ANNOTATION_ACTIONS:
        if current not in ANNOTATABLE_STATUSES:
            raise InvalidStateError(RESOURCE, req.id, current=current, expected=ANNOTATABLE_STATUSES)
        target = current
    else:
        if not validate_request_transition(current, action):
            raise InvalidStateError(
                RESOURCE, req.id, current=current,
                expected={s for s, nxt in REQUEST_TRANSITIONS.items() if action in nxt},
            )
        target = action

    values = {"status": target, "updated_at": datetime.now(timezone.utc)}
    if action in _ASSIGNING_ACTIONS:
        values["assigned_reviewer_id"] = assignee_id
    compare_and_swap(CertificateRequest, req.id, RESOURCE, expected=current,
                     values=values, version=req.version)
    _append_record(req, reviewer, action, comments=comments, assignee_id=assignee_id)

    outbox = []
    if action in _ASSIGNING_ACTIONS:
        outbox.append(NotificationService.enqueue(
            user_id=assignee_id,
            title=f"Certificate request {action} to you",
            message=f'"{req.title}" from {req.organization_name} needs your review.',
            notification_type="certificate_request",
            data={"request_id": req.id},
        ))
    else:
        label = action.replace("_", " ")
        outbox.append(NotificationService.enqueue(
            user_id=req.client_id,
            title=f"Certificate request {label}",
            message=f'Your request "{req.title}": {label}' + (f" ({comments})" if comments else ""),
            notification_type="certificate_request_update",
            data={"request_id": req.id, "status": target, "action": action},
        ))
    db.session.commit()
    logger.info("Request %s reviewed by %s: %s (%s → %s)", request_id, reviewer.user_id,
                action, current, target,
                extra={"entity_type": "request", "entity_id": request_id})

    extra = {"review_action": action, "status": target, "previous_status": current,
             "reviewer_role": reviewer.role}
    if assignee_id:
        extra["assignee_id"] = assignee_id
    after_commit(activities=[_activity(
        reviewer, "request_reviewed", req,
        f'Review of certificate request "{req.title}": {action}', **extra,
    )], outbox=outbox)

    if target == "approved" and current_app.config.get("AUTO_ISSUE_ON_APPROVAL", False):
        try:
            return issue_request_certificate(request_id, Actor.system())
        except InvalidStateError:
            # Someone else issued it in between
            logger.info("Auto-issue skipped for request %s", request_id)
    return db.session.get(CertificateRequest, request_id)


def issue_request_certificate(request_id, actor: Actor):
    """
    approved → issued: mint the certificate and close the request.

    The certificate, the status change and the ``issued`` record commit
    together.
    """
    check_capability(actor, "issue_request_certificate")
    req = load_or_404(CertificateRequest, request_id, RESOURCE)
    _reject_absorbing(req)
    if not validate_request_transition(req.status, "issued"):
        raise InvalidStateError(RESOURCE, req.id, current=req.status, expected={"approved"})

    cert, outbox = mint_certificate(
        issuer_id=actor.user_id,
        recipient_id=req.client_id,
        recipient_name=req.client_name or req.client_id,
        recipient_email=req.client_email or None,
        title=req.title,
        certificate_type=req.certificate_type,
        request_id=req.id,
        metadata={"organization_name": req.organization_name,
                  "requested_data": req.requested_data or {}},
    )
    compare_and_swap(CertificateRequest, req.id, RESOURCE, expected="approved", values={
        "status": "issued",
        "certificate_id": cert.id,
        "updated_at": datetime.now(timezone.utc),
    }, version=req.version)
    _append_record(req, actor, "issued")
    db.session.commit()
    logger.info("Request %s issued as certificate %s by %s", request_id, cert.id, actor.user_id,
                extra={"entity_type": "request", "entity_id": request_id})

    after_commit(activities=[_activity(
        actor, "request_issued", req, f'Issued certificate for request "{req.title}"',
        status="issued", certificate_id=cert.id,
    )], outbox=[outbox])
    return db.session.get(CertificateRequest, request_id)


# ═════════════════════════════════════════════════════════════════════════════
# Queries
# ═════════════════════════════════════════════════════════════════════════════


def get_request(request_id, actor: Actor):
    req = load_or_404(CertificateRequest, request_id, RESOURCE)
    if actor.role not in ("ca", "admin"):
        check_owner(actor, req.client_id, "view_request")
    return req


def list_requests(actor: Actor, *, status=None, client_id=None, assigned_reviewer_id=None):
    """Requests visible to *actor*: own ones for clients, all for CA/Admin."""
    q = CertificateRequest.query
    if actor.role in ("ca", "admin"):
        if client_id:
            q = q.filter_by(client_id=client_id)
    else:
        q = q.filter_by(client_id=actor.user_id)
    if status:
        q = q.filter_by(status=status)
    if assigned_reviewer_id:
        q = q.filter_by(assigned_reviewer_id=assigned_reviewer_id)
    return q.order_by(CertificateRequest.priority.asc(), CertificateRequest.created_at.desc())
