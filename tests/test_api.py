"""
Tests: HTTP surface.

Covers:
- Identity headers: 401 when missing or malformed
- Error mapping: 403 / 404 / 409 / 422 with machine-readable codes
- End-to-end document → template → certificate flow over HTTP
- Request lifecycle endpoints including available_transitions
- Activity, notification and scheduler endpoints
- Public verification and health checks
"""

import pytest


def headers_for(actor):
    """Gateway identity headers for *actor*."""
    return {
        "X-User-Id": actor.user_id,
        "X-User-Role": actor.role,
        "X-User-Status": actor.status,
        "X-User-Name": actor.display_name or "",
    }


def _upload(client, actor, **kw):
    body = {"file_name": "diploma.pdf", "mime_type": "application/pdf",
            "file_size": 1000, "type": "diploma"}
    body.update(kw)
    return client.post("/api/v1/documents", json=body, headers=headers_for(actor))


def _create_request(client, actor, **kw):
    body = {
        "organization_name": "Acme Corp",
        "certificate_type": "completion",
        "title": "Forklift Operator",
        "description": "Forklift operator course",
        "purpose": "Site access",
    }
    body.update(kw)
    return client.post("/api/v1/requests", json=body, headers=headers_for(actor))


# ═════════════════════════════════════════════════════════════════════════════
# Identity & errors
# ═════════════════════════════════════════════════════════════════════════════


class TestIdentityHeaders:

    def test_missing_headers(self, client):
        res = client.get("/api/v1/documents")
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHENTICATED"

    def test_unknown_role(self, client):
        res = client.get("/api/v1/documents",
                         headers={"X-User-Id": "u", "X-User-Role": "superuser"})
        assert res.status_code == 401

    def test_suspended_account_forbidden(self, client, uploader):
        headers = dict(headers_for(uploader), **{"X-User-Status": "suspended"})
        res = client.post("/api/v1/documents", json={"file_name": "a.pdf"}, headers=headers)
        assert res.status_code == 403


class TestErrorMapping:

    def test_forbidden(self, client, uploader):
        doc = _upload(client, uploader).get_json()
        res = client.post(f"/api/v1/documents/{doc['id']}/review",
                          json={"decision": "approve"}, headers=headers_for(uploader))
        assert res.status_code == 403
        body = res.get_json()
        assert body["code"] == "ERR_FORBIDDEN"
        assert body["details"]["capability"] == "review_document"

    def test_not_found(self, client, ca):
        res = client.post("/api/v1/documents/missing/review",
                          json={"decision": "approve"}, headers=headers_for(ca))
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_validation(self, client, uploader, ca):
        doc = _upload(client, uploader).get_json()
        res = client.post(f"/api/v1/documents/{doc['id']}/review",
                          json={"decision": "reject"}, headers=headers_for(ca))
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_INVALID"
        assert body["details"] == {"reason": "required"}

    def test_conflict(self, client, uploader, ca):
        doc = _upload(client, uploader).get_json()
        url = f"/api/v1/documents/{doc['id']}/review"
        assert client.post(url, json={"decision": "approve"}, headers=headers_for(ca)).status_code == 200

        res = client.post(url, json={"decision": "approve"}, headers=headers_for(ca))
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_CONFLICT_STATE"
        assert body["details"]["current_status"] == "verified"

    def test_non_json_body(self, client, uploader):
        res = client.post("/api/v1/documents", data="file_name=a.pdf",
                          content_type="text/plain", headers=headers_for(uploader))
        assert res.status_code == 415

    def test_unknown_route(self, client):
        res = client.get("/api/v1/nothing-here")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"


class TestMalformedInput:
    """Wrongly typed JSON values are 422s, never 500s."""

    def _assert_invalid(self, res, field):
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_INVALID"
        assert field in body["details"]

    def test_document_review_reason_not_a_string(self, client, uploader, ca):
        doc_id = _upload(client, uploader).get_json()["id"]
        res = client.post(f"/api/v1/documents/{doc_id}/review",
                          json={"decision": "reject", "reason": 123}, headers=headers_for(ca))
        self._assert_invalid(res, "reason")
        detail = client.get(f"/api/v1/documents/{doc_id}", headers=headers_for(ca)).get_json()
        assert detail["status"] == "pending"

    def test_document_review_decision_is_a_list(self, client, uploader, ca):
        doc_id = _upload(client, uploader).get_json()["id"]
        res = client.post(f"/api/v1/documents/{doc_id}/review",
                          json={"decision": ["approve"]}, headers=headers_for(ca))
        self._assert_invalid(res, "decision")

    def test_upload_type_is_an_object(self, client, uploader):
        self._assert_invalid(_upload(client, uploader, type={"kind": "diploma"}), "type")

    def test_upload_file_name_is_a_number(self, client, uploader):
        self._assert_invalid(_upload(client, uploader, file_name=42), "file_name")

    def test_template_review_comments_not_a_string(self, client, uploader, ca, client_actor):
        doc_id = _upload(client, uploader).get_json()["id"]
        client.post(f"/api/v1/documents/{doc_id}/review",
                    json={"decision": "approve"}, headers=headers_for(ca))
        tpl_id = client.post("/api/v1/templates", json={"document_id": doc_id, "name": "Diploma"},
                             headers=headers_for(ca)).get_json()["id"]
        res = client.post(f"/api/v1/templates/{tpl_id}/review",
                          json={"action": "rejected", "comments": ["too plain"]},
                          headers=headers_for(client_actor))
        self._assert_invalid(res, "comments")

    def test_template_name_not_a_string(self, client, uploader, ca):
        doc_id = _upload(client, uploader).get_json()["id"]
        client.post(f"/api/v1/documents/{doc_id}/review",
                    json={"decision": "approve"}, headers=headers_for(ca))
        res = client.post("/api/v1/templates", json={"document_id": doc_id, "name": 7},
                          headers=headers_for(ca))
        self._assert_invalid(res, "name")

    def test_template_document_id_not_a_string(self, client, ca):
        res = client.post("/api/v1/templates", json={"document_id": ["x"], "name": "Diploma"},
                          headers=headers_for(ca))
        assert res.status_code == 404

    def test_request_review_action_is_a_list(self, client, client_actor, ca):
        req_id = _create_request(client, client_actor).get_json()["id"]
        client.post(f"/api/v1/requests/{req_id}/submit", headers=headers_for(client_actor))
        res = client.post(f"/api/v1/requests/{req_id}/review", json={"action": []},
                          headers=headers_for(ca))
        self._assert_invalid(res, "action")

    def test_request_title_not_a_string(self, client, client_actor):
        self._assert_invalid(_create_request(client, client_actor, title=12345), "title")

    def test_revoke_reason_not_a_string(self, client, ca):
        cert = client.post("/api/v1/certificates", json={
            "recipient_id": "user-1", "recipient_name": "Uma", "title": "Safety Course",
        }, headers=headers_for(ca)).get_json()
        res = client.post(f"/api/v1/certificates/{cert['id']}/revoke", json={"reason": False},
                          headers=headers_for(ca))
        self._assert_invalid(res, "reason")


# ═════════════════════════════════════════════════════════════════════════════
# Documents → templates → certificates
# ═════════════════════════════════════════════════════════════════════════════


class TestTemplateFlow:

    def test_end_to_end(self, client, uploader, ca, client_actor):
        doc = _upload(client, uploader)
        assert doc.status_code == 201
        doc_id = doc.get_json()["id"]

        res = client.post(f"/api/v1/documents/{doc_id}/review",
                          json={"decision": "approve"}, headers=headers_for(ca))
        assert res.get_json()["status"] == "verified"

        res = client.post("/api/v1/templates", json={
            "document_id": doc_id, "name": "Diploma", "certificate_type": "academic",
        }, headers=headers_for(ca))
        assert res.status_code == 201
        tpl_id = res.get_json()["id"]

        res = client.post(f"/api/v1/templates/{tpl_id}/review",
                          json={"action": "client_approved"}, headers=headers_for(client_actor))
        assert res.status_code == 200
        assert res.get_json()["status"] == "active"

        certs = client.get("/api/v1/certificates", headers=headers_for(uploader)).get_json()
        assert certs["total"] == 1
        code = certs["items"][0]["verification_code"]

        verified = client.get(f"/api/v1/verify/{code}").get_json()
        assert verified["valid"] is True

    def test_template_from_pending_document(self, client, uploader, ca):
        doc_id = _upload(client, uploader).get_json()["id"]
        res = client.post("/api/v1/templates", json={"document_id": doc_id, "name": "X"},
                          headers=headers_for(ca))
        assert res.status_code == 409
        listing = client.get("/api/v1/templates", headers=headers_for(ca)).get_json()
        assert listing["total"] == 0

    def test_owner_only_document_detail(self, client, uploader, client_actor):
        doc_id = _upload(client, uploader).get_json()["id"]
        assert client.get(f"/api/v1/documents/{doc_id}", headers=headers_for(uploader)).status_code == 200
        assert client.get(f"/api/v1/documents/{doc_id}",
                          headers=headers_for(client_actor)).status_code == 403


# ═════════════════════════════════════════════════════════════════════════════
# Requests
# ═════════════════════════════════════════════════════════════════════════════


class TestRequestEndpoints:

    def test_lifecycle(self, client, client_actor, ca):
        res = _create_request(client, client_actor)
        assert res.status_code == 201
        body = res.get_json()
        assert body["status"] == "draft"
        assert body["available_transitions"] == ["submitted"]
        req_id = body["id"]

        res = client.post(f"/api/v1/requests/{req_id}/submit", headers=headers_for(client_actor))
        assert res.get_json()["status"] == "submitted"

        res = client.post(f"/api/v1/requests/{req_id}/review",
                          json={"action": "changes_requested", "comments": "add dates"},
                          headers=headers_for(ca))
        assert res.get_json()["status"] == "changes_requested"

        res = client.patch(f"/api/v1/requests/{req_id}",
                           json={"description": "Forklift course, March 2026"},
                           headers=headers_for(client_actor))
        assert res.status_code == 200

        client.post(f"/api/v1/requests/{req_id}/submit", headers=headers_for(client_actor))
        client.post(f"/api/v1/requests/{req_id}/review", json={"action": "approved"},
                    headers=headers_for(ca))
        res = client.post(f"/api/v1/requests/{req_id}/issue", headers=headers_for(ca))
        body = res.get_json()
        assert body["status"] == "issued"
        assert body["certificate_id"]
        assert body["available_transitions"] == []
        assert [r["action"] for r in body["approval_history"]] == [
            "changes_requested", "submitted", "approved", "issued",
        ]

    def test_owner_cannot_review_own_request(self, client, client_actor):
        req_id = _create_request(client, client_actor).get_json()["id"]
        client.post(f"/api/v1/requests/{req_id}/submit", headers=headers_for(client_actor))

        res = client.post(f"/api/v1/requests/{req_id}/review", json={"action": "approved"},
                          headers=headers_for(client_actor))
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"
        detail = client.get(f"/api/v1/requests/{req_id}", headers=headers_for(client_actor))
        assert detail.get_json()["status"] == "submitted"

    def test_review_records_activity(self, client, client_actor, ca):
        req_id = _create_request(client, client_actor).get_json()["id"]
        client.post(f"/api/v1/requests/{req_id}/submit", headers=headers_for(client_actor))
        res = client.post(f"/api/v1/requests/{req_id}/review", json={"action": "under_review"},
                          headers=headers_for(ca))
        assert res.status_code == 200

        feed = client.get(f"/api/v1/activities/entity/request/{req_id}",
                          headers=headers_for(ca)).get_json()
        actions = [item["action"] for item in feed["items"]]
        assert actions[0] == "request_reviewed"

    def test_validation_error(self, client, client_actor):
        res = _create_request(client, client_actor, title="x" * 150)
        assert res.status_code == 422
        assert "title" in res.get_json()["details"]

    def test_list_hides_history(self, client, client_actor):
        _create_request(client, client_actor)
        body = client.get("/api/v1/requests", headers=headers_for(client_actor)).get_json()
        assert body["total"] == 1
        assert "approval_history" not in body["items"][0]

    def test_other_client_forbidden(self, client, client_actor, other_client):
        req_id = _create_request(client, client_actor).get_json()["id"]
        res = client.get(f"/api/v1/requests/{req_id}", headers=headers_for(other_client))
        assert res.status_code == 403


# ═════════════════════════════════════════════════════════════════════════════
# Activities & notifications
# ═════════════════════════════════════════════════════════════════════════════


class TestActivityEndpoints:

    def test_me_and_entity(self, client, uploader, ca):
        doc_id = _upload(client, uploader).get_json()["id"]
        client.post(f"/api/v1/documents/{doc_id}/review", json={"decision": "approve"},
                    headers=headers_for(ca))

        mine = client.get("/api/v1/activities/me", headers=headers_for(ca)).get_json()
        assert [e["action"] for e in mine["items"]] == ["document_reviewed"]

        entity = client.get(f"/api/v1/activities/entity/document/{doc_id}",
                            headers=headers_for(ca)).get_json()
        assert [e["action"] for e in entity["items"]] == ["document_reviewed", "document_uploaded"]

    def test_other_actor_requires_admin(self, client, ca, admin):
        assert client.get("/api/v1/activities/actor/user-1",
                          headers=headers_for(ca)).status_code == 403
        assert client.get("/api/v1/activities/actor/user-1",
                          headers=headers_for(admin)).status_code == 200

    def test_admin_listing(self, client, uploader, admin, ca):
        _upload(client, uploader)
        assert client.get("/api/v1/activities", headers=headers_for(ca)).status_code == 403
        body = client.get("/api/v1/activities?action=document_",
                          headers=headers_for(admin)).get_json()
        assert body["total"] == 1
        assert body["page"] == 1

    def test_bad_since(self, client, admin):
        res = client.get("/api/v1/activities?since=yesterday", headers=headers_for(admin))
        assert res.status_code == 422

    def test_unknown_entity_type(self, client, ca):
        res = client.get("/api/v1/activities/entity/planet/1", headers=headers_for(ca))
        assert res.status_code == 422


class TestNotificationEndpoints:

    def test_inbox(self, client, uploader, ca):
        doc_id = _upload(client, uploader).get_json()["id"]
        client.post(f"/api/v1/documents/{doc_id}/review", json={"decision": "approve"},
                    headers=headers_for(ca))

        inbox = client.get("/api/v1/notifications", headers=headers_for(uploader)).get_json()
        assert inbox["total"] == 1
        notif_id = inbox["items"][0]["id"]

        count = client.get("/api/v1/notifications/unread-count", headers=headers_for(uploader))
        assert count.get_json() == {"unread_count": 1}

        assert client.post(f"/api/v1/notifications/{notif_id}/read",
                           headers=headers_for(ca)).status_code == 404
        res = client.post(f"/api/v1/notifications/{notif_id}/read", headers=headers_for(uploader))
        assert res.get_json()["is_read"] is True

    def test_outbox_admin_only(self, client, ca, admin):
        assert client.get("/api/v1/notifications/outbox", headers=headers_for(ca)).status_code == 403
        assert client.get("/api/v1/notifications/outbox", headers=headers_for(admin)).status_code == 200
        res = client.post("/api/v1/notifications/dispatch", headers=headers_for(admin))
        assert res.get_json() == {"sent": 0, "failed": 0}


class TestSchedulerEndpoints:

    def test_list_trigger_toggle(self, client, admin):
        body = client.get("/api/v1/scheduler/jobs", headers=headers_for(admin)).get_json()
        names = {j["job_name"] for j in body["jobs"]}
        assert {"notification_outbox_drain", "stale_notification_cleanup"} <= names

        res = client.post("/api/v1/scheduler/jobs/stale_notification_cleanup/trigger",
                          headers=headers_for(admin))
        assert res.status_code == 200
        assert res.get_json()["status"] == "success"

        res = client.patch("/api/v1/scheduler/jobs/notification_outbox_drain/toggle",
                           json={"enabled": False}, headers=headers_for(admin))
        assert res.get_json()["is_enabled"] is False

    def test_unknown_job(self, client, admin):
        res = client.post("/api/v1/scheduler/jobs/nope/trigger", headers=headers_for(admin))
        assert res.status_code == 404

    def test_requires_admin(self, client, ca):
        assert client.get("/api/v1/scheduler/jobs", headers=headers_for(ca)).status_code == 403


# ═════════════════════════════════════════════════════════════════════════════
# Public endpoints
# ═════════════════════════════════════════════════════════════════════════════


class TestPublicEndpoints:

    @pytest.mark.parametrize("code,reason", [("short", "malformed_code"),
                                             ("ABCDEFGH", "not_found")])
    def test_verify_invalid(self, client, code, reason):
        body = client.get(f"/api/v1/verify/{code}").get_json()
        assert body["valid"] is False
        assert body["reason"] == reason

    def test_health(self, client):
        assert client.get("/api/v1/health").get_json()["status"] == "ok"
        assert client.get("/api/v1/health/ready").status_code == 200

        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        checks = res.get_json()["checks"]
        assert checks["database"]["status"] == "ok"
        assert checks["outbox"] == {"queued": 0, "failed": 0, "dead": 0}
        assert "append_failures" in checks["activity_log"]

    def test_request_id_header(self, client):
        res = client.get("/api/v1/health", headers={"X-Request-ID": "abc-123"})
        assert res.headers["X-Request-ID"] == "abc-123"
        assert "X-Request-Duration-Ms" in res.headers
