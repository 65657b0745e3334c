"""
Tests: activity log write path and read contract.

Covers:
- query_by_actor orders by timestamp, newest first, not by insertion
- Equal timestamps fall back to insertion order
- query_by_entity finds every entry referencing an entity
- A failing append is logged (audit_append_failed) and never fails the
  transition that triggered it
- One entry per successful transition
- Admin listing filters and pagination
"""

import logging
from datetime import datetime, timedelta, timezone

import pytest

from certflow.core.exceptions import ValidationError
from certflow.models import db
from certflow.models.activity import ActivityEntry
from certflow.models.document import Document
from certflow.services import activity_log
from certflow.services.document_review import register_upload, review_document

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _record(actor_id="ca-1", action="document_reviewed", timestamp=None, **metadata):
    return activity_log.record(actor_id, action, f"{action} by {actor_id}", metadata,
                               timestamp=timestamp)


# ═════════════════════════════════════════════════════════════════════════════
# Ordering
# ═════════════════════════════════════════════════════════════════════════════


class TestQueryByActor:

    def test_out_of_order_timestamps(self):
        late = _record(timestamp=T0 + timedelta(minutes=5), document_id="d-late")
        early = _record(timestamp=T0, document_id="d-early")
        middle = _record(timestamp=T0 + timedelta(minutes=1), document_id="d-mid")

        entries = activity_log.query_by_actor("ca-1")
        assert [e.id for e in entries] == [late.id, middle.id, early.id]

    def test_equal_timestamps_use_insertion_order(self):
        first = _record(timestamp=T0, document_id="a")
        second = _record(timestamp=T0, document_id="b")

        entries = activity_log.query_by_actor("ca-1")
        assert [e.id for e in entries] == [second.id, first.id]

    def test_only_that_actor(self):
        _record(actor_id="ca-1", document_id="a")
        _record(actor_id="ca-2", document_id="b")
        assert [e.actor_id for e in activity_log.query_by_actor("ca-2")] == ["ca-2"]

    def test_limit(self):
        for i in range(5):
            _record(timestamp=T0 + timedelta(seconds=i), document_id=str(i))
        entries = activity_log.query_by_actor("ca-1", limit=2)
        assert [e.entry_metadata["document_id"] for e in entries] == ["4", "3"]

    def test_limit_is_clamped(self, app, monkeypatch):
        monkeypatch.setitem(app.config, "ACTIVITY_QUERY_MAX_LIMIT", 3)
        for i in range(5):
            _record(document_id=str(i))
        assert len(activity_log.query_by_actor("ca-1", limit=1000)) == 3


class TestQueryByEntity:

    def test_entries_referencing_entity(self):
        _record(action="template_created", template_id="t-1", document_id="d-1",
                timestamp=T0)
        _record(action="template_reviewed", template_id="t-1", timestamp=T0 + timedelta(hours=1))
        _record(action="document_reviewed", document_id="d-2")

        actions = [e.action for e in activity_log.query_by_entity("template", "t-1")]
        assert actions == ["template_reviewed", "template_created"]
        assert [e.action for e in activity_log.query_by_entity("document", "d-1")] == [
            "template_created",
        ]

    def test_unknown_entity_type(self):
        with pytest.raises(ValidationError):
            activity_log.query_by_entity("spaceship", "x")

    def test_to_dict_lists_entities(self):
        entry = _record(request_id="r-1", certificate_id="c-1")
        data = entry.to_dict()
        assert {(e["type"], e["id"]) for e in data["entities"]} == {
            ("request", "r-1"), ("certificate", "c-1"),
        }
        assert data["metadata"] == {"request_id": "r-1", "certificate_id": "c-1"}


# ═════════════════════════════════════════════════════════════════════════════
# Write failures
# ═════════════════════════════════════════════════════════════════════════════


class TestAppendFailure:

    def test_record_returns_none_and_logs(self, monkeypatch, caplog):
        def _boom(**kw):
            raise RuntimeError("disk full")

        monkeypatch.setattr(activity_log, "write_activity", _boom)
        before = activity_log.append_failure_count()
        caplog.set_level(logging.ERROR, logger="certflow.services.activity_log")

        assert _record(document_id="d-1") is None
        assert activity_log.append_failure_count() == before + 1
        failures = [r for r in caplog.records
                    if getattr(r, "event_type", None) == "audit_append_failed"]
        assert len(failures) == 1
        assert failures[0].action == "document_reviewed"

    def test_transition_survives_failed_append(self, uploader, ca, monkeypatch, caplog):
        doc = register_upload(uploader, file_name="id.png", document_type="identity")

        def _boom(**kw):
            raise RuntimeError("audit store offline")

        monkeypatch.setattr(activity_log, "write_activity", _boom)
        caplog.set_level(logging.ERROR, logger="certflow.services.activity_log")

        reviewed = review_document(doc.id, ca, "approve")
        assert reviewed.status == "verified"
        assert db.session.get(Document, doc.id).status == "verified"
        assert ActivityEntry.query.filter_by(action="document_reviewed").count() == 0
        assert any(getattr(r, "event_type", None) == "audit_append_failed"
                   for r in caplog.records)


class TestOneEntryPerTransition:

    def test_document_review_referenced_once(self, uploader, ca):
        doc = register_upload(uploader, file_name="cv.pdf")
        review_document(doc.id, ca, "approve")

        entries = activity_log.query_by_entity("document", doc.id)
        assert [e.action for e in entries] == ["document_reviewed", "document_uploaded"]


# ═════════════════════════════════════════════════════════════════════════════
# Admin listing
# ═════════════════════════════════════════════════════════════════════════════


class TestListActivities:

    def test_filters(self):
        _record(actor_id="ca-1", action="document_reviewed", document_id="d-1", timestamp=T0)
        _record(actor_id="ca-1", action="template_created", template_id="t-1",
                timestamp=T0 + timedelta(days=1))
        _record(actor_id="client-1", action="template_reviewed", template_id="t-1",
                timestamp=T0 + timedelta(days=2))

        assert activity_log.list_activities(actor_id="ca-1").total == 2
        assert activity_log.list_activities(action="template_").total == 2
        assert activity_log.list_activities(entity_type="template", entity_id="t-1").total == 2
        since = activity_log.list_activities(since=T0 + timedelta(hours=12))
        assert [e.action for e in since.items] == ["template_reviewed", "template_created"]

    def test_pagination(self):
        for i in range(5):
            _record(timestamp=T0 + timedelta(minutes=i), document_id=str(i))
        page = activity_log.list_activities(page=2, per_page=2)
        assert page.total == 5
        assert page.pages == 3
        assert [e.entry_metadata["document_id"] for e in page.items] == ["2", "1"]
