"""
Tests for the HTTP API.

Tests status codes and payloads of the tracking, usage, organization
and project endpoints.
"""

import os
import shutil
import sqlite3
import tempfile
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from llm_tracker.api.app import create_app
from llm_tracker.core.analytics import MAX_WINDOW_DAYS
from llm_tracker.config.loader import TrackerConfig
from llm_tracker.storage.repository import TrackerRepository


@pytest.fixture
def db_path():
    temp_dir = tempfile.mkdtemp()
    yield os.path.join(temp_dir, "api.db")
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def client(db_path):
    return TestClient(create_app(TrackerConfig(database_path=db_path)))


@pytest.fixture
def project(client):
    """Create an organization and project through the API."""
    org = client.post("/api/v1/organizations", json={"name": "Acme", "owner_id": "user_1"}).json()["data"]
    response = client.post(
        "/api/v1/projects",
        params={"orgId": org["id"], "userId": "user_1"},
        json={"name": "Support Bot"},
    )
    return response.json()["data"]


class TestTrackEndpoint:
    """Test POST /api/v1/track."""

    def test_success(self, client, project):
        response = client.post("/api/v1/track", json={
            "model": "gpt-4o",
            "prompt_tokens": 1000,
            "completion_tokens": 500,
            "api_key": project["project_key"],
        })

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "success"
        assert body["provider"] == "openai"
        assert body["model"] == "gpt-4o"
        assert body["total_tokens"] == 1500
        assert body["total_cost"] == pytest.approx(0.0075)
        assert body["currency"] == "USD"
        assert body["id"]
        assert body["timestamp"]

    def test_missing_fields(self, client):
        response = client.post("/api/v1/track", json={"model": "gpt-4o"})
        assert response.status_code == 400
        assert response.json() == {
            "error": "Missing required fields",
            "missing": ["prompt_tokens", "completion_tokens", "api_key"],
        }

    def test_negative_tokens(self, client, project):
        response = client.post("/api/v1/track", json={
            "model": "gpt-4o", "prompt_tokens": -1, "completion_tokens": 0,
            "api_key": project["project_key"],
        })
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid field"

    def test_unknown_project_key(self, client):
        response = client.post("/api/v1/track", json={
            "model": "gpt-4o", "prompt_tokens": 1, "completion_tokens": 1, "api_key": "pk_nope",
        })
        assert response.status_code == 404

    def test_unknown_model(self, client, project):
        response = client.post("/api/v1/track", json={
            "model": "not-a-real-model", "prompt_tokens": 1, "completion_tokens": 1,
            "api_key": project["project_key"],
        })
        assert response.status_code == 400
        assert response.json()["error"] == "Unknown model"

    def test_invalid_model_for_provider(self, client, project):
        response = client.post("/api/v1/track", json={
            "model": "gpt-4o", "provider": "anthropic", "prompt_tokens": 1, "completion_tokens": 1,
            "api_key": project["project_key"],
        })
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid model for provider"

    @pytest.mark.parametrize("tokens", [2**63, 10**400])
    def test_token_count_beyond_storage_limit(self, client, project, tokens):
        response = client.post("/api/v1/track", json={
            "model": "gpt-4o", "prompt_tokens": tokens, "completion_tokens": 0,
            "api_key": project["project_key"],
        })
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid field"
        assert client.get("/api/v1/usage", params={"projectId": project["id"]}).json()["data"] == []

    def test_missing_body(self, client):
        response = client.post("/api/v1/track")
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request"

    def test_non_object_body(self, client):
        response = client.post("/api/v1/track", json=["gpt-4o", 1, 1])
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request"

    def test_persistence_failure(self, client, project):
        with patch.object(
            TrackerRepository, "insert_usage_record", side_effect=sqlite3.OperationalError("database is locked")
        ):
            response = client.post("/api/v1/track", json={
                "model": "gpt-4o", "prompt_tokens": 1, "completion_tokens": 1,
                "api_key": project["project_key"],
            })
        assert response.status_code == 500
        assert response.json()["error"] == "Internal server error"


class TestUsageEndpoints:
    """Test usage listing and summary."""

    def _track(self, client, project, model="gpt-4o"):
        client.post("/api/v1/track", json={
            "model": model, "prompt_tokens": 100, "completion_tokens": 50,
            "api_key": project["project_key"],
        })

    def test_list_requires_project(self, client):
        response = client.get("/api/v1/usage")
        assert response.status_code == 400

    def test_list_usage(self, client, project):
        self._track(client, project)
        self._track(client, project, model="deepseek-v3")

        response = client.get("/api/v1/usage", params={"projectId": project["id"]})
        assert response.status_code == 200
        data = response.json()["data"]
        assert len(data) == 2
        assert {row["provider"] for row in data} == {"openai", "deepseek"}
        assert all(row["status_code"] == 200 for row in data)

    def test_summary(self, client, project):
        self._track(client, project)
        self._track(client, project)

        response = client.get("/api/v1/usage/summary", params={"projectId": project["id"], "days": 7})
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["days"] == 7
        assert data["total_requests"] == 2
        assert data["total_tokens"] == 300
        assert data["error_rate"] == 0.0
        assert data["by_model"][0]["name"] == "gpt-4o"
        assert len(data["daily"]) == 1

    def test_summary_rejects_non_positive_days(self, client, project):
        response = client.get("/api/v1/usage/summary", params={"projectId": project["id"], "days": 0})
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request"

    def test_summary_rejects_oversized_window(self, client, project):
        response = client.get("/api/v1/usage/summary", params={"projectId": project["id"], "days": 400000})
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request"

    def test_summary_accepts_longest_window(self, client, project):
        response = client.get(
            "/api/v1/usage/summary", params={"projectId": project["id"], "days": MAX_WINDOW_DAYS}
        )
        assert response.status_code == 200
        assert response.json()["data"]["days"] == MAX_WINDOW_DAYS


class TestOrganizationEndpoints:
    """Test organization CRUD."""

    def test_create_requires_fields(self, client):
        response = client.post("/api/v1/organizations", json={"name": "Acme"})
        assert response.status_code == 400

    def test_list_requires_user(self, client):
        assert client.get("/api/v1/organizations").status_code == 400

    def test_create_list_update_delete(self, client):
        created = client.post(
            "/api/v1/organizations", json={"name": "Acme", "owner_id": "user_1", "settings": {"a": 1}}
        ).json()["data"]
        assert created["is_active"] is True
        assert created["settings"] == {"a": 1}

        listed = client.get("/api/v1/organizations", params={"userId": "user_1"}).json()["data"]
        assert [org["id"] for org in listed] == [created["id"]]

        updated = client.put(
            "/api/v1/organizations", json={"id": created["id"], "name": "Acme AI", "is_active": False}
        ).json()["data"]
        assert updated["name"] == "Acme AI"
        assert updated["is_active"] is False

        response = client.delete("/api/v1/organizations", params={"orgId": created["id"]})
        assert response.status_code == 200
        assert client.get("/api/v1/organizations", params={"userId": "user_1"}).json()["data"] == []

    def test_update_unknown(self, client):
        response = client.put("/api/v1/organizations", json={"id": "missing", "name": "x"})
        assert response.status_code == 404

    def test_delete_unknown(self, client):
        response = client.delete("/api/v1/organizations", params={"orgId": "missing"})
        assert response.status_code == 404


class TestProjectEndpoints:
    """Test project CRUD."""

    def test_create_returns_key(self, project):
        assert project["project_key"].startswith("pk_")
        assert project["is_active"] is True

    def test_create_requires_fields(self, client):
        response = client.post("/api/v1/projects", json={"name": "Bot"})
        assert response.status_code == 400

    def test_create_in_unknown_org(self, client):
        response = client.post(
            "/api/v1/projects", params={"orgId": "missing", "userId": "user_1"}, json={"name": "Bot"}
        )
        assert response.status_code == 404

    def test_list(self, client, project):
        response = client.get(
            "/api/v1/projects", params={"orgId": project["organization_id"], "userId": "user_1"}
        )
        assert [p["id"] for p in response.json()["data"]] == [project["id"]]

    def test_list_requires_parameters(self, client):
        assert client.get("/api/v1/projects", params={"orgId": "x"}).status_code == 400

    def test_update_and_delete(self, client, project):
        response = client.put(
            "/api/v1/projects", params={"projectId": project["id"]}, json={"description": "Helps"}
        )
        assert response.json()["data"]["description"] == "Helps"

        assert client.delete("/api/v1/projects", params={"projectId": project["id"]}).status_code == 200
        assert client.delete("/api/v1/projects", params={"projectId": project["id"]}).status_code == 404


def test_hello(client):
    assert client.get("/api").json() == {"message": "Hello LLM Tracker"}
