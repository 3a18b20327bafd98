from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from leadsync.api import jobs as jobs_api
from leadsync.config import Settings
from leadsync.main import app


@pytest.fixture
def client(db):
    app.dependency_overrides[jobs_api.get_settings] = lambda: Settings()
    app.dependency_overrides[jobs_api.get_store] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestJobsAPI:
    def test_health(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_ingest_without_agents_is_conflict(self, client):
        response = client.post("/api/jobs/ingest")
        assert response.status_code == 409
        assert response.json()["detail"] == "No agents found to process"

    def test_ingest_reports_per_agent(self, client, db):
        db.user_profiles = [{"user_id": "u1", "agent_id": "agent_a"}]

        response = client.post("/api/jobs/ingest")

        assert response.status_code == 200
        body = response.json()
        assert body["agents_processed"] == 1
        assert body["agents"][0]["agent_id"] == "agent_a"
        assert body["agents"][0]["source"] == "retellai"
        assert body["total_fetched"] == 0

    def test_enrich_with_nothing_pending(self, client):
        response = client.post("/api/jobs/enrich")
        assert response.status_code == 200
        assert response.json() == {"selected": 0, "success": 0, "failed": 0, "aborted": False}

    def test_sync_with_empty_queue(self, client):
        response = client.post("/api/jobs/sync")
        assert response.status_code == 200
        assert response.json()["processed"] == 0

    def test_unexpected_failure_is_server_error(self, client, monkeypatch):
        monkeypatch.setattr(jobs_api, "run_job", AsyncMock(side_effect=RuntimeError("store unreachable")))
        response = client.post("/api/jobs/sync")
        assert response.status_code == 500
        assert response.json()["detail"] == "sync job failed"
