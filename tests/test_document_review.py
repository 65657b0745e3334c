"""
Tests: document upload registration and CA review.

Covers:
- Upload validation and the pending starting state
- Approve → verified with one activity entry and uploader/reviewer notices
- Reject requires a reason; document stays pending when it is missing
- Non-pending documents cannot be reviewed again
- Compare-and-swap: a reviewer whose precheck passed still loses the race
- Capability checks (role and account status)
"""

import pytest

from certflow.core.exceptions import (
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from certflow.core.identity import Actor
from certflow.models import db
from certflow.models.activity import ActivityEntry
from certflow.models.document import Document
from certflow.models.notification import Notification
from certflow.services import document_review
from certflow.services.document_review import list_documents, register_upload, review_document


def _make_document(uploader, **kw):
    defaults = {"file_name": "diploma.pdf", "mime_type": "application/pdf",
                "file_size": 2048, "document_type": "diploma"}
    defaults.update(kw)
    return register_upload(uploader, **defaults)


# ═════════════════════════════════════════════════════════════════════════════
# Upload
# ═════════════════════════════════════════════════════════════════════════════


class TestRegisterUpload:

    def test_starts_pending(self, uploader):
        doc = _make_document(uploader)
        assert doc.status == "pending"
        assert doc.uploader_id == "user-1"
        assert doc.uploader_name == "Uma Uploader"
        assert doc.template_created is False

    def test_writes_upload_activity(self, uploader):
        doc = _make_document(uploader)
        entries = ActivityEntry.query.filter_by(action="document_uploaded").all()
        assert len(entries) == 1
        assert entries[0].entry_metadata["document_id"] == doc.id

    def test_missing_file_name(self, uploader):
        with pytest.raises(ValidationError) as exc:
            _make_document(uploader, file_name="  ")
        assert "file_name" in exc.value.details

    def test_unknown_type(self, uploader):
        with pytest.raises(ValidationError) as exc:
            _make_document(uploader, document_type="selfie")
        assert "type" in exc.value.details

    def test_negative_size(self, uploader):
        with pytest.raises(ValidationError):
            _make_document(uploader, file_size=-1)


# ═════════════════════════════════════════════════════════════════════════════
# Review
# ═════════════════════════════════════════════════════════════════════════════


class TestReviewDocument:

    def test_approve_verifies(self, uploader, ca):
        doc = _make_document(uploader)
        reviewed = review_document(doc.id, ca, "approve", comments="Looks good")

        assert reviewed.status == "verified"
        assert reviewed.reviewed_by == "ca-1"
        assert reviewed.reviewed_at is not None
        assert reviewed.review_comments == "Looks good"
        assert reviewed.rejection_reason is None

    def test_approve_writes_one_activity(self, uploader, ca):
        doc = _make_document(uploader)
        review_document(doc.id, ca, "approve")

        entries = ActivityEntry.query.filter_by(action="document_reviewed").all()
        assert len(entries) == 1
        meta = entries[0].entry_metadata
        assert meta["document_id"] == doc.id
        assert meta["decision"] == "approve"
        assert meta["status"] == "verified"
        assert entries[0].actor_id == "ca-1"

    def test_approve_notifies_uploader_and_reviewer(self, uploader, ca):
        doc = _make_document(uploader)
        review_document(doc.id, ca, "approve")

        to_uploader = Notification.query.filter_by(recipient="user-1").all()
        assert [n.type for n in to_uploader] == ["document_review"]
        to_reviewer = Notification.query.filter_by(recipient="ca-1").all()
        assert [n.type for n in to_reviewer] == ["template_ready"]

    def test_reject_with_reason(self, uploader, ca):
        doc = _make_document(uploader)
        reviewed = review_document(doc.id, ca, "reject", reason="Illegible scan")

        assert reviewed.status == "rejected"
        assert reviewed.rejection_reason == "Illegible scan"
        notes = Notification.query.filter_by(recipient="user-1").all()
        assert len(notes) == 1
        assert "Illegible scan" in notes[0].message
        assert Notification.query.filter_by(recipient="ca-1").count() == 0

    def test_reject_without_reason_leaves_pending(self, uploader, ca):
        doc = _make_document(uploader)
        with pytest.raises(ValidationError):
            review_document(doc.id, ca, "reject")
        with pytest.raises(ValidationError):
            review_document(doc.id, ca, "reject", reason="   ")

        assert db.session.get(Document, doc.id).status == "pending"
        assert ActivityEntry.query.filter_by(action="document_reviewed").count() == 0

    def test_unknown_decision(self, uploader, ca):
        doc = _make_document(uploader)
        with pytest.raises(ValidationError):
            review_document(doc.id, ca, "maybe")

    @pytest.mark.parametrize("kwargs", [
        {"decision": "reject", "reason": 123},
        {"decision": ["approve"]},
        {"decision": "approve", "comments": {"note": "ok"}},
    ])
    def test_non_string_input_leaves_pending(self, uploader, ca, kwargs):
        doc = _make_document(uploader)
        with pytest.raises(ValidationError):
            review_document(doc.id, ca, **kwargs)
        assert db.session.get(Document, doc.id).status == "pending"

    def test_missing_document(self, ca):
        with pytest.raises(NotFoundError):
            review_document("does-not-exist", ca, "approve")

    def test_already_reviewed(self, uploader, ca):
        doc = _make_document(uploader)
        review_document(doc.id, ca, "approve")

        with pytest.raises(InvalidStateError) as exc:
            review_document(doc.id, ca, "reject", reason="changed my mind")
        assert exc.value.details["current_status"] == "verified"
        assert db.session.get(Document, doc.id).status == "verified"

    def test_admin_may_review(self, uploader, admin):
        doc = _make_document(uploader)
        assert review_document(doc.id, admin, "approve").status == "verified"


class TestReviewConcurrency:

    def test_losing_writer_gets_invalid_state(self, uploader, ca, admin, monkeypatch):
        """Both reviewers pass the read check; only the first write lands."""
        doc = _make_document(uploader)
        review_document(doc.id, ca, "approve")

        monkeypatch.setattr(document_review, "validate_document_transition", lambda *a: True)
        with pytest.raises(InvalidStateError):
            review_document(doc.id, admin, "reject", reason="duplicate")

        stored = db.session.get(Document, doc.id)
        assert stored.status == "verified"
        assert stored.reviewed_by == "ca-1"
        assert ActivityEntry.query.filter_by(action="document_reviewed").count() == 1


class TestReviewPermissions:

    def test_client_cannot_review(self, uploader, client_actor):
        doc = _make_document(uploader)
        with pytest.raises(UnauthorizedError):
            review_document(doc.id, client_actor, "approve")

    def test_suspended_ca_cannot_review(self, uploader):
        doc = _make_document(uploader)
        suspended = Actor(user_id="ca-9", role="ca", status="suspended")
        with pytest.raises(UnauthorizedError) as exc:
            review_document(doc.id, suspended, "approve")
        assert "suspended" in str(exc.value)
        assert db.session.get(Document, doc.id).status == "pending"

    def test_pending_account_cannot_upload(self):
        pending = Actor(user_id="user-9", role="user", status="pending")
        with pytest.raises(UnauthorizedError):
            _make_document(pending)


class TestListDocuments:

    def test_user_sees_own_uploads(self, uploader):
        _make_document(uploader)
        _make_document(Actor(user_id="user-2", role="user"))
        docs = list_documents(uploader).all()
        assert [d.uploader_id for d in docs] == ["user-1"]

    def test_ca_sees_all_and_filters(self, uploader, ca):
        doc = _make_document(uploader)
        _make_document(Actor(user_id="user-2", role="user"))
        review_document(doc.id, ca, "approve")

        assert list_documents(ca).count() == 2
        assert [d.id for d in list_documents(ca, status="verified")] == [doc.id]
