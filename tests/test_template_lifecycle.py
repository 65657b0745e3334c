"""
Tests: certificate template authoring and client review.

Covers:
- create_template only from verified documents; document flagged
- Unverified documents: InvalidState and nothing persisted
- At most one live template per document
- Client review: approve (auto-activate + auto-issue), request changes, reject
- Comments required for changes_requested / rejected
- Revisions: new template referencing the old one, old row untouched
- Manual activation when auto-activation is off
"""

from types import SimpleNamespace

import pytest

from certflow.core.exceptions import (
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from certflow.models import db
from certflow.models.activity import ActivityEntry
from certflow.models.certificate import Certificate
from certflow.models.document import Document
from certflow.models.notification import Notification
from certflow.models.template import CertificateTemplate
from certflow.services import template_lifecycle
from certflow.services.document_review import register_upload, review_document
from certflow.services.template_lifecycle import (
    activate_template,
    create_template,
    list_templates,
    review_template,
    revise_template,
)


def _make_document(uploader, ca=None, decision=None, reason=None):
    doc = register_upload(uploader, file_name="transcript.pdf", document_type="transcript")
    if decision:
        review_document(doc.id, ca, decision, reason=reason)
    return doc


def _make_template(ca, doc, name="Bachelor of Science"):
    return create_template(doc.id, ca, name=name, description="BSc template",
                           certificate_type="academic")


@pytest.fixture()
def verified_doc(uploader, ca):
    return _make_document(uploader, ca, "approve")


# ═════════════════════════════════════════════════════════════════════════════
# Creation
# ═════════════════════════════════════════════════════════════════════════════


class TestCreateTemplate:

    def test_from_verified_document(self, ca, verified_doc):
        tpl = _make_template(ca, verified_doc)

        assert tpl.status == "pending_client_review"
        assert tpl.source_document_id == verified_doc.id
        assert tpl.created_by == "ca-1"
        assert tpl.revision_of_id is None
        assert db.session.get(Document, verified_doc.id).template_created is True

    def test_writes_one_activity(self, ca, verified_doc):
        tpl = _make_template(ca, verified_doc)
        entries = ActivityEntry.query.filter_by(action="template_created").all()
        assert len(entries) == 1
        assert entries[0].entry_metadata["template_id"] == tpl.id
        assert entries[0].entry_metadata["document_id"] == verified_doc.id

    def test_pending_document_rejected(self, uploader, ca):
        doc = _make_document(uploader)
        with pytest.raises(InvalidStateError):
            _make_template(ca, doc)
        assert CertificateTemplate.query.count() == 0
        assert db.session.get(Document, doc.id).template_created is False

    def test_rejected_document_rejected(self, uploader, ca):
        doc = _make_document(uploader, ca, "reject", reason="blurry")
        with pytest.raises(InvalidStateError):
            _make_template(ca, doc)
        assert CertificateTemplate.query.count() == 0

    def test_missing_document(self, ca):
        with pytest.raises(NotFoundError):
            create_template("nope", ca, name="X")

    def test_name_required(self, ca, verified_doc):
        with pytest.raises(ValidationError) as exc:
            create_template(verified_doc.id, ca, name="  ")
        assert "name" in exc.value.details

    def test_client_cannot_create(self, client_actor, verified_doc):
        with pytest.raises(UnauthorizedError):
            _make_template(client_actor, verified_doc)

    def test_second_live_template_conflicts(self, ca, verified_doc):
        _make_template(ca, verified_doc)
        with pytest.raises(InvalidStateError):
            _make_template(ca, verified_doc, name="Duplicate")
        assert CertificateTemplate.query.count() == 1

    def test_creation_bumps_document_version(self, ca, verified_doc):
        _make_template(ca, verified_doc)
        assert db.session.get(Document, verified_doc.id).template_version == 1


class TestCreateConcurrency:

    def test_stale_author_loses(self, ca, admin, verified_doc, monkeypatch):
        """Both authors pass the live-template check; only the first insert lands."""
        doc = db.session.get(Document, verified_doc.id)
        seen = SimpleNamespace(id=doc.id, status=doc.status,
                               template_version=doc.template_version)
        first = _make_template(ca, verified_doc)

        monkeypatch.setattr(template_lifecycle, "_live_template", lambda document_id: None)
        monkeypatch.setattr(template_lifecycle, "load_or_404",
                            lambda model, entity_id, resource: seen)
        with pytest.raises(InvalidStateError) as exc:
            create_template(verified_doc.id, admin, name="Racing duplicate")
        assert exc.value.reason == "status changed concurrently"

        live = CertificateTemplate.query.filter_by(source_document_id=verified_doc.id).all()
        assert [t.id for t in live] == [first.id]
        assert ActivityEntry.query.filter_by(action="template_created").count() == 1


# ═════════════════════════════════════════════════════════════════════════════
# Client review
# ═════════════════════════════════════════════════════════════════════════════


class TestReviewTemplate:

    def test_reject_notifies_author(self, ca, client_actor, verified_doc):
        tpl = _make_template(ca, verified_doc)
        reviewed = review_template(tpl.id, client_actor, "rejected", "insufficient detail")

        assert reviewed.status == "rejected"
        assert reviewed.client_comments == "insufficient detail"
        assert reviewed.client_reviewed_by == "client-1"
        notes = Notification.query.filter_by(recipient="ca-1", type="template_review").all()
        assert len(notes) == 1
        # No automatic document change
        doc = db.session.get(Document, verified_doc.id)
        assert doc.status == "verified"
        assert doc.template_created is True

    def test_review_activity_tagged_client(self, ca, client_actor, verified_doc):
        tpl = _make_template(ca, verified_doc)
        review_template(tpl.id, client_actor, "changes_requested", "fix the seal")

        entries = ActivityEntry.query.filter_by(action="template_reviewed").all()
        assert len(entries) == 1
        assert entries[0].entry_metadata["reviewer_role"] == "client"
        assert entries[0].entry_metadata["status"] == "changes_requested"

    def test_approve_activates_and_issues(self, uploader, ca, client_actor, verified_doc):
        tpl = _make_template(ca, verified_doc)
        reviewed = review_template(tpl.id, client_actor, "client_approved")

        assert reviewed.status == "active"
        assert reviewed.activated_at is not None
        cert = Certificate.query.filter_by(template_id=tpl.id).one()
        assert cert.recipient_id == uploader.user_id
        assert cert.type == "academic"
        assert cert.expires_at is None
        assert Notification.query.filter_by(recipient="user-1", type="certificate_issued").count() == 1

        entry = ActivityEntry.query.filter_by(action="template_reviewed").one()
        assert entry.entry_metadata["certificate_id"] == cert.id

    def test_approve_without_auto_activate(self, app, ca, client_actor, verified_doc, monkeypatch):
        monkeypatch.setitem(app.config, "TEMPLATE_AUTO_ACTIVATE", False)
        tpl = _make_template(ca, verified_doc)

        reviewed = review_template(tpl.id, client_actor, "client_approved")
        assert reviewed.status == "client_approved"
        assert Certificate.query.count() == 0

        activated = activate_template(tpl.id, ca)
        assert activated.status == "active"
        assert Certificate.query.filter_by(template_id=tpl.id).count() == 1

    def test_auto_issue_off(self, app, ca, client_actor, verified_doc, monkeypatch):
        monkeypatch.setitem(app.config, "TEMPLATE_AUTO_ISSUE", False)
        tpl = _make_template(ca, verified_doc)
        assert review_template(tpl.id, client_actor, "client_approved").status == "active"
        assert Certificate.query.count() == 0

    def test_comments_required(self, ca, client_actor, verified_doc):
        tpl = _make_template(ca, verified_doc)
        for action in ("rejected", "changes_requested"):
            with pytest.raises(ValidationError):
                review_template(tpl.id, client_actor, action)
        assert db.session.get(CertificateTemplate, tpl.id).status == "pending_client_review"

    def test_unknown_action(self, ca, client_actor, verified_doc):
        tpl = _make_template(ca, verified_doc)
        with pytest.raises(ValidationError):
            review_template(tpl.id, client_actor, "approved")

    def test_action_not_a_string(self, ca, client_actor, verified_doc):
        tpl = _make_template(ca, verified_doc)
        with pytest.raises(ValidationError) as exc:
            review_template(tpl.id, client_actor, ["client_approved"])
        assert "action" in exc.value.details
        assert db.session.get(CertificateTemplate, tpl.id).status == "pending_client_review"

    def test_second_review_conflicts(self, ca, client_actor, verified_doc):
        tpl = _make_template(ca, verified_doc)
        review_template(tpl.id, client_actor, "rejected", "no")
        with pytest.raises(InvalidStateError):
            review_template(tpl.id, client_actor, "client_approved")

    def test_ca_cannot_review(self, ca, verified_doc):
        tpl = _make_template(ca, verified_doc)
        with pytest.raises(UnauthorizedError):
            review_template(tpl.id, ca, "client_approved")

    def test_activate_requires_client_approved(self, ca, verified_doc):
        tpl = _make_template(ca, verified_doc)
        with pytest.raises(InvalidStateError):
            activate_template(tpl.id, ca)


# ═════════════════════════════════════════════════════════════════════════════
# Revisions
# ═════════════════════════════════════════════════════════════════════════════


class TestTemplateRevision:

    def test_revise_creates_new_template(self, ca, client_actor, verified_doc):
        old = _make_template(ca, verified_doc)
        review_template(old.id, client_actor, "changes_requested", "use full degree title")

        new = revise_template(old.id, ca, name="Bachelor of Science in Physics")
        assert new.id != old.id
        assert new.revision_of_id == old.id
        assert new.status == "pending_client_review"
        assert new.certificate_type == "academic"
        assert db.session.get(CertificateTemplate, old.id).status == "changes_requested"

    def test_create_after_changes_links_revision(self, ca, client_actor, verified_doc):
        old = _make_template(ca, verified_doc)
        review_template(old.id, client_actor, "changes_requested", "typo")
        new = _make_template(ca, verified_doc, name="Fixed")
        assert new.revision_of_id == old.id

    def test_rejected_cannot_be_revised(self, ca, client_actor, verified_doc):
        old = _make_template(ca, verified_doc)
        review_template(old.id, client_actor, "rejected", "wrong document")
        with pytest.raises(InvalidStateError):
            revise_template(old.id, ca, name="Again")

    def test_new_template_after_rejection(self, ca, client_actor, verified_doc):
        old = _make_template(ca, verified_doc)
        review_template(old.id, client_actor, "rejected", "wrong layout")
        new = _make_template(ca, verified_doc, name="Second attempt")
        assert new.revision_of_id is None
        assert new.status == "pending_client_review"

    def test_pending_template_cannot_be_revised(self, ca, verified_doc):
        tpl = _make_template(ca, verified_doc)
        with pytest.raises(InvalidStateError):
            revise_template(tpl.id, ca, name="Too early")


class TestListTemplates:

    def test_filters(self, ca, client_actor, verified_doc):
        tpl = _make_template(ca, verified_doc)
        review_template(tpl.id, client_actor, "client_approved")

        assert [t.id for t in list_templates(status="active")] == [tpl.id]
        assert list_templates(status="rejected").count() == 0
        assert list_templates(document_id=verified_doc.id).count() == 1
        assert list_templates(created_by="ca-1").count() == 1
