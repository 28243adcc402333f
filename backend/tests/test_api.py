"""HTTP surface: auth, error envelope and the main routes."""

import pytest

from taxcrm.api import campaigns as campaigns_api

from .conftest import auth_header


API = "/api/crm"


def _create(client, headers, **overrides):
    body = {"contact_type": "LEAD", "first_name": "Api", "last_name": "User", "email": "api@example.com"}
    body.update(overrides)
    return client.post(f"{API}/contacts", json=body, headers=headers)


class TestAuth:
    def test_missing_token(self, client):
        response = client.get(f"{API}/contacts")
        assert response.status_code == 401
        assert response.json()["success"] is False
        assert response.json()["error"] == "unauthorized"

    def test_bad_token(self, client):
        response = client.get(f"{API}/contacts", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    def test_role_outside_crm(self, client):
        response = client.get(f"{API}/contacts", headers=auth_header("c-1", "client"))
        assert response.status_code == 403
        assert response.json()["error"] == "access_denied"

    def test_super_admin_passes_admin_checks(self, client):
        response = client.get(f"{API}/campaigns", headers=auth_header("root", "super_admin"))
        assert response.status_code == 200

    def test_preparer_without_preparer_id_is_server_error(self, client):
        response = client.get(f"{API}/contacts", headers=auth_header("u1", "tax_preparer"))
        assert response.status_code == 500
        assert response.json() == {
            "success": False,
            "error": "configuration_error",
            "message": "Server configuration error",
        }


class TestContactsApi:
    def test_create_and_get(self, client, admin_headers):
        created = _create(client, admin_headers)
        assert created.status_code == 201
        contact_id = created.json()["id"]

        response = client.get(f"{API}/contacts/{contact_id}", headers=admin_headers)
        assert response.status_code == 200
        body = response.json()
        assert body["email"] == "api@example.com"
        assert body["stage"] == "NEW"
        assert body["counts"] == {"interactions": 0, "tasks": 0, "email_activities": 0}

    def test_duplicate_email(self, client, admin_headers):
        _create(client, admin_headers)
        response = _create(client, admin_headers)
        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "validation_error"
        assert body["details"][0]["code"] == "duplicate_email"

    def test_upsert(self, client, admin_headers):
        first = _create(client, admin_headers).json()
        response = client.post(
            f"{API}/contacts?upsert=true",
            json={"contact_type": "CLIENT", "first_name": "Api", "last_name": "Renamed",
                  "email": "api@example.com"},
            headers=admin_headers,
        )
        assert response.status_code == 201
        assert response.json()["id"] == first["id"]
        assert response.json()["last_name"] == "Renamed"

    def test_upsert_respects_ownership(self, client, admin_headers, preparer_headers):
        contact_id = _create(
            client, admin_headers, email="owned@example.com", phone="555-0001", assigned_preparer_id="prep-2"
        ).json()["id"]

        response = client.post(
            f"{API}/contacts?upsert=true",
            json={"contact_type": "LEAD", "first_name": "Changed", "last_name": "User",
                  "email": "owned@example.com"},
            headers=preparer_headers,
        )
        assert response.status_code == 403
        assert response.json() == {"success": False, "error": "access_denied", "message": "Access denied"}

        body = client.get(f"{API}/contacts/{contact_id}", headers=admin_headers).json()
        assert body["first_name"] == "Api"

    def test_upsert_cannot_undo_admin_delete(self, client, admin_headers, preparer_headers):
        contact_id = _create(client, admin_headers, email="gone@example.com").json()["id"]
        client.delete(f"{API}/contacts/{contact_id}", headers=admin_headers)

        response = client.post(
            f"{API}/contacts?upsert=true",
            json={"contact_type": "LEAD", "first_name": "Back", "last_name": "Again",
                  "email": "gone@example.com"},
            headers=preparer_headers,
        )
        assert response.status_code == 403
        assert client.get(f"{API}/contacts/{contact_id}", headers=admin_headers).status_code == 404

    def test_request_validation_envelope(self, client, admin_headers):
        response = _create(client, admin_headers, email="nope")
        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "validation_error"
        assert body["details"][0]["field"] == "email"

    def test_preparer_create_is_self_assigned(self, client, preparer_headers):
        response = _create(client, preparer_headers, assigned_preparer_id="prep-2")
        assert response.status_code == 201
        assert response.json()["assigned_preparer_id"] == "prep-1"

    def test_preparer_cannot_read_others(self, client, admin_headers, other_preparer_headers):
        contact_id = _create(client, admin_headers, assigned_preparer_id="prep-1").json()["id"]

        response = client.get(f"{API}/contacts/{contact_id}", headers=other_preparer_headers)
        assert response.status_code == 403
        assert response.json() == {"success": False, "error": "access_denied", "message": "Access denied"}

        response = client.patch(
            f"{API}/contacts/{contact_id}", json={"phone": "1"}, headers=other_preparer_headers
        )
        assert response.status_code == 403

    def test_preparer_list_is_scoped(self, client, admin_headers, preparer_headers):
        _create(client, admin_headers, email="one@example.com", assigned_preparer_id="prep-1")
        _create(client, admin_headers, email="two@example.com", assigned_preparer_id="prep-2")

        response = client.get(
            f"{API}/contacts", params={"assigned_preparer_id": "prep-2"}, headers=preparer_headers
        )
        assert response.status_code == 200
        assert [c["email"] for c in response.json()["contacts"]] == ["one@example.com"]

    def test_patch_cannot_change_stage(self, client, admin_headers):
        contact_id = _create(client, admin_headers).json()["id"]
        response = client.patch(
            f"{API}/contacts/{contact_id}", json={"stage": "FILED"}, headers=admin_headers
        )
        assert response.status_code == 400

    def test_stage_flow(self, client, admin_headers):
        contact_id = _create(client, admin_headers).json()["id"]

        response = client.post(
            f"{API}/contacts/{contact_id}/stage",
            json={"to_stage": "CONTACTED", "reason": "first call"},
            headers=admin_headers,
        )
        assert response.status_code == 200
        assert response.json()["stage"] == "CONTACTED"

        stale = client.post(
            f"{API}/contacts/{contact_id}/stage",
            json={"from_stage": "NEW", "to_stage": "QUALIFIED"},
            headers=admin_headers,
        )
        assert stale.status_code == 400
        assert stale.json()["details"][0]["code"] == "stale_stage"

        history = client.get(f"{API}/contacts/{contact_id}/stage-history", headers=admin_headers).json()
        assert len(history) == 1
        assert history[0]["from_stage"] == "NEW"
        assert history[0]["to_stage"] == "CONTACTED"

    def test_interactions(self, client, admin_headers):
        contact_id = _create(client, admin_headers).json()["id"]
        response = client.post(
            f"{API}/contacts/{contact_id}/interactions",
            json={"type": "PHONE_CALL", "body": "Left voicemail", "duration_minutes": 2},
            headers=admin_headers,
        )
        assert response.status_code == 201
        assert response.json()["user_id"] == "admin-1"

        listed = client.get(f"{API}/contacts/{contact_id}/interactions", headers=admin_headers)
        assert [i["body"] for i in listed.json()] == ["Left voicemail"]

        too_many = client.get(
            f"{API}/contacts/{contact_id}/interactions", params={"limit": 500}, headers=admin_headers
        )
        assert too_many.status_code == 400

    def test_delete_requires_admin(self, client, admin_headers, preparer_headers):
        contact_id = _create(client, preparer_headers).json()["id"]

        assert client.delete(f"{API}/contacts/{contact_id}", headers=preparer_headers).status_code == 403
        assert client.delete(f"{API}/contacts/{contact_id}", headers=admin_headers).status_code == 200
        assert client.get(f"{API}/contacts/{contact_id}", headers=admin_headers).status_code == 404

        restored = client.post(f"{API}/contacts/{contact_id}/restore", headers=admin_headers)
        assert restored.status_code == 200

    def test_assign_notifies(self, client, admin_headers, provider):
        contact_id = _create(client, admin_headers).json()["id"]
        provider.sent.clear()

        response = client.post(
            f"{API}/contacts/{contact_id}/assign", json={"preparer_id": "prep-7"}, headers=admin_headers
        )
        assert response.status_code == 200
        assert response.json()["assigned_preparer_id"] == "prep-7"
        assert len(provider.sent) == 1

    def test_tags(self, client, admin_headers):
        contact_id = _create(client, admin_headers).json()["id"]
        tag = client.post(
            f"{API}/contacts/{contact_id}/tags", json={"name": "VIP"}, headers=admin_headers
        ).json()

        removed = client.delete(f"{API}/contacts/{contact_id}/tags/{tag['id']}", headers=admin_headers)
        assert removed.status_code == 200
        again = client.delete(f"{API}/contacts/{contact_id}/tags/{tag['id']}", headers=admin_headers)
        assert again.status_code == 404

    def test_scores(self, client, admin_headers, preparer_headers):
        contact_id = _create(client, preparer_headers).json()["id"]

        recalculated = client.post(f"{API}/contacts/{contact_id}/score/recalculate", headers=preparer_headers)
        assert recalculated.status_code == 200
        assert recalculated.json()["stage"] == 5

        manual = {"score": 90, "reason": "Hot referral"}
        assert client.post(
            f"{API}/contacts/{contact_id}/score", json=manual, headers=preparer_headers
        ).status_code == 403
        assert client.post(
            f"{API}/contacts/{contact_id}/score", json=manual, headers=admin_headers
        ).status_code == 200

        history = client.get(f"{API}/contacts/{contact_id}/score-history", headers=admin_headers).json()
        assert [h["score"] for h in history] == [90, 5]

        insights = client.get(f"{API}/scores/insights", headers=admin_headers)
        assert insights.json()["hot_leads"] == 1


class TestTasksApi:
    def test_task_lifecycle(self, client, admin_headers):
        contact_id = _create(client, admin_headers).json()["id"]

        created = client.post(
            f"{API}/tasks", json={"contact_id": contact_id, "title": "Call back"}, headers=admin_headers
        )
        assert created.status_code == 201
        task = created.json()
        assert task["created_by"] == "admin-1"

        done = client.patch(f"{API}/tasks/{task['id']}", json={"status": "DONE"}, headers=admin_headers)
        assert done.json()["completed_by"] == "admin-1"

        listed = client.get(f"{API}/tasks", params={"status": "DONE"}, headers=admin_headers).json()
        assert listed["total"] == 1

        assert client.delete(f"{API}/tasks/{task['id']}", headers=admin_headers).status_code == 200
        assert client.get(f"{API}/tasks/{task['id']}", headers=admin_headers).status_code == 404

    def test_stats_default_to_caller(self, client, admin_headers):
        contact_id = _create(client, admin_headers).json()["id"]
        client.post(
            f"{API}/tasks",
            json={"contact_id": contact_id, "title": "Mine", "assigned_to": "admin-1"},
            headers=admin_headers,
        )
        client.post(
            f"{API}/tasks",
            json={"contact_id": contact_id, "title": "Theirs", "assigned_to": "someone"},
            headers=admin_headers,
        )

        stats = client.get(f"{API}/tasks/stats", headers=admin_headers).json()
        assert stats["total"] == 1
        assert stats["todo"] == 1

    def test_stats_scoped_for_preparer(self, client, admin_headers, preparer_headers):
        contact_id = _create(client, admin_headers, assigned_preparer_id="prep-2").json()["id"]
        client.post(
            f"{API}/tasks",
            json={"contact_id": contact_id, "title": "Theirs", "assigned_to": "user-p2"},
            headers=admin_headers,
        )

        response = client.get(f"{API}/tasks/stats", params={"assigned_to": "user-p2"}, headers=preparer_headers)
        assert response.status_code == 200
        assert response.json()["total"] == 0


class TestCampaignsApi:
    @pytest.fixture
    def queued(self, monkeypatch):
        calls = []

        class _Task:
            @staticmethod
            def delay(campaign_id):
                calls.append(campaign_id)

        monkeypatch.setattr(campaigns_api, "send_campaign_task", _Task)
        return calls

    def _campaign(self, client, headers):
        return client.post(
            f"{API}/campaigns",
            json={"name": "Promo", "subject": "Hi {{firstName}}", "html_body": "<p>Hello</p>"},
            headers=headers,
        )

    def test_admin_only(self, client, preparer_headers):
        assert self._campaign(client, preparer_headers).status_code == 403

    def test_send_is_queued(self, client, admin_headers, queued):
        _create(client, admin_headers)
        campaign = self._campaign(client, admin_headers).json()
        assert campaign["created_by"] == "admin-1"

        response = client.post(f"{API}/campaigns/{campaign['id']}/send", json={}, headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["queued"] is True
        assert response.json()["recipient_count"] == 1
        assert queued == [campaign["id"]]

    def test_test_send_runs_inline(self, client, admin_headers, provider, queued):
        campaign = self._campaign(client, admin_headers).json()
        response = client.post(
            f"{API}/campaigns/{campaign['id']}/send",
            json={"test_email": "qa@example.com"},
            headers=admin_headers,
        )
        assert response.status_code == 200
        assert response.json()["test_email_id"] == provider.sent[-1]["id"]
        assert queued == []

    def test_email_event_webhook(self, client, admin_headers):
        response = client.post(f"{API}/email-events", json={"type": "opened", "email_id": "unknown"})
        assert response.status_code == 200
        assert response.json()["success"] is True

        bad = client.post(f"{API}/email-events", json={"type": "bounced", "email_id": "x"})
        assert bad.status_code == 400


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["database"] == "connected"
