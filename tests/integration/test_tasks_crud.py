"""
Integration tests for single-task endpoints.

Covers create / read / update / delete, payload validation, duplicate
titles, and the access rule shared by the single-item handlers: the
owner or an admin may proceed, anyone else gets 403, a missing id 404.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from taskboard import db
from taskboard.models import Task, TaskPriority, TaskStatus

pytestmark = pytest.mark.integration

URL = "/api/v1/tasks"


class TestCreateTask:
    def test_create_task_with_valid_data(self, client, user, valid_task_data, api_headers):
        response = client.post(URL, json=valid_task_data, headers=api_headers)

        assert response.status_code == 201
        body = response.get_json()
        assert body["success"] is True
        assert body["data"]["title"] == valid_task_data["title"]
        assert body["data"]["owner_id"] == user.id
        assert body["data"]["owner"]["email"] == user.email

    def test_create_task_applies_defaults(self, client, api_headers):
        response = client.post(URL, json={"title": "Minimal Task"}, headers=api_headers)

        data = response.get_json()["data"]
        assert data["status"] == TaskStatus.PENDING.value
        assert data["priority"] == TaskPriority.MEDIUM.value
        assert data["due_date"] is None

    @pytest.mark.parametrize("payload", [{}, {"description": "no title"}, {"title": "   "}])
    def test_missing_title_is_rejected(self, client, api_headers, payload):
        response = client.post(URL, json=payload, headers=api_headers)

        assert response.status_code == 400
        assert response.get_json()["success"] is False

    @pytest.mark.parametrize(
        "payload,fragment",
        [
            ({"title": "x", "status": "done"}, "status"),
            ({"title": "x", "status": "in_progress"}, "status"),
            ({"title": "x", "priority": "urgent"}, "priority"),
            ({"title": "x", "due_date": "tomorrow"}, "due_date"),
            ({"title": "x" * 201}, "200 characters"),
        ],
    )
    def test_invalid_fields_are_rejected(self, client, api_headers, payload, fragment):
        response = client.post(URL, json=payload, headers=api_headers)

        assert response.status_code == 400
        assert fragment in response.get_json()["error"]

    def test_duplicate_title_is_rejected_across_users(
        self, client, task_factory, other_user, api_headers
    ):
        task_factory(owner=other_user, title="Shared name")

        response = client.post(URL, json={"title": "Shared name"}, headers=api_headers)

        assert response.status_code == 400
        assert response.get_json()["error"] == (
            "A task with this title already exists. Please use a different title."
        )

    def test_session_usable_after_duplicate(self, client, task_factory, api_headers):
        task_factory(title="Once")
        client.post(URL, json={"title": "Once"}, headers=api_headers)

        response = client.post(URL, json={"title": "Twice"}, headers=api_headers)

        assert response.status_code == 201

    def test_non_json_body_is_rejected(self, client, api_headers):
        response = client.post(URL, data="title=plain", headers=api_headers)

        assert response.status_code == 400


class TestGetTask:
    def test_owner_gets_task(self, client, sample_task, api_headers):
        response = client.get(f"{URL}/{sample_task.id}", headers=api_headers)

        assert response.status_code == 200
        assert response.get_json() == {"success": True, "data": sample_task.to_dict()}

    def test_missing_task_is_not_found(self, client, db_session, api_headers):
        response = client.get(f"{URL}/99999", headers=api_headers)

        assert response.status_code == 404
        assert "99999" in response.get_json()["error"]

    def test_out_of_range_id_is_bad_request(self, client, db_session, api_headers):
        response = client.get(f"{URL}/99999999999999999999", headers=api_headers)

        assert response.status_code == 400
        assert response.get_json()["success"] is False

    def test_non_integer_id_is_not_found(self, client, db_session, api_headers):
        response = client.get(f"{URL}/not-an-id", headers=api_headers)

        assert response.status_code == 404
        assert response.get_json() == {"success": False, "error": "Resource not found"}

    def test_other_user_is_forbidden(self, client, sample_task, other_headers):
        response = client.get(f"{URL}/{sample_task.id}", headers=other_headers)

        assert response.status_code == 403
        assert response.get_json()["success"] is False

    def test_admin_can_read_any_task(self, client, sample_task, admin_headers):
        response = client.get(f"{URL}/{sample_task.id}", headers=admin_headers)

        assert response.status_code == 200


class TestUpdateTask:
    def test_update_changes_only_given_fields(self, client, sample_task, api_headers):
        response = client.put(
            f"{URL}/{sample_task.id}",
            json={"status": TaskStatus.COMPLETED.value, "priority": TaskPriority.HIGH.value},
            headers=api_headers,
        )

        assert response.status_code == 200
        data = response.get_json()["data"]
        assert data["status"] == TaskStatus.COMPLETED.value
        assert data["priority"] == TaskPriority.HIGH.value
        assert data["title"] == "Sample Task"

    def test_update_cannot_change_owner(self, client, sample_task, user, other_user, api_headers):
        response = client.put(
            f"{URL}/{sample_task.id}",
            json={
                "title": "Renamed",
                "owner": other_user.id,
                "owner_id": other_user.id,
                "user": other_user.id,
            },
            headers=api_headers,
        )

        assert response.status_code == 200
        assert response.get_json()["data"]["owner_id"] == user.id
        assert db.session.get(Task, sample_task.id).owner_id == user.id

    def test_update_can_clear_due_date(self, client, task_factory, api_headers):
        task = task_factory(due_date=datetime(2025, 6, 1, tzinfo=timezone.utc))

        response = client.put(f"{URL}/{task.id}", json={"due_date": None}, headers=api_headers)

        assert response.get_json()["data"]["due_date"] is None

    def test_blank_title_is_rejected(self, client, sample_task, api_headers):
        response = client.put(f"{URL}/{sample_task.id}", json={"title": ""}, headers=api_headers)

        assert response.status_code == 400

    def test_other_user_is_forbidden(self, client, sample_task, other_headers):
        response = client.put(
            f"{URL}/{sample_task.id}", json={"title": "Hijacked"}, headers=other_headers
        )

        assert response.status_code == 403
        assert db.session.get(Task, sample_task.id).title == "Sample Task"

    def test_admin_can_update_without_taking_ownership(
        self, client, sample_task, user, admin_headers
    ):
        response = client.put(
            f"{URL}/{sample_task.id}", json={"title": "Moderated"}, headers=admin_headers
        )

        assert response.status_code == 200
        assert response.get_json()["data"]["owner_id"] == user.id

    def test_missing_task_is_not_found(self, client, db_session, api_headers):
        response = client.put(f"{URL}/424242", json={"title": "Ghost"}, headers=api_headers)

        assert response.status_code == 404


class TestDeleteTask:
    def test_owner_deletes_task(self, client, sample_task, api_headers):
        task_id = sample_task.id

        response = client.delete(f"{URL}/{task_id}", headers=api_headers)

        assert response.status_code == 200
        assert response.get_json() == {"success": True, "data": {}}
        assert db.session.get(Task, task_id) is None

    def test_non_owner_is_forbidden_and_task_remains(self, client, sample_task, other_headers):
        task_id = sample_task.id

        response = client.delete(f"{URL}/{task_id}", headers=other_headers)

        assert response.status_code == 403
        assert db.session.get(Task, task_id) is not None

    def test_admin_deletes_any_task(self, client, sample_task, admin_headers):
        task_id = sample_task.id

        response = client.delete(f"{URL}/{task_id}", headers=admin_headers)

        assert response.status_code == 200
        assert db.session.get(Task, task_id) is None

    def test_missing_task_is_not_found(self, client, db_session, api_headers):
        response = client.delete(f"{URL}/31337", headers=api_headers)

        assert response.status_code == 404


class TestHealth:
    def test_health_is_public(self, client):
        response = client.get("/api/v1/health")

        assert response.status_code == 200
        assert response.get_json()["status"] == "healthy"
