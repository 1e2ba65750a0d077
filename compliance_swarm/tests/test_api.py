"""
Tests: HTTP and WebSocket API.

Run with:
    pytest compliance_swarm/tests/test_api.py -v
"""

import time

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from compliance_swarm.api import create_app

GITHUB = {"server": "github", "credentials": {"access_token": "t"}}


@pytest.fixture
def client(make_context):
    with TestClient(create_app(make_context())) as test_client:
        yield test_client


def _start(client, **overrides) -> dict:
    body = {"project_id": "proj-1", "user_id": "user-1", "framework": "SOC2", "connections": [GITHUB]}
    body.update(overrides)
    return client.post("/api/assessments", json=body)


def _wait_until_finished(client, run_id: str, timeout: float = 10.0) -> dict:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        snapshot = client.get(f"/api/assessments/{run_id}").json()
        if snapshot["status"] in ("completed", "failed"):
            return snapshot
        time.sleep(0.05)
    raise AssertionError(f"Run {run_id} did not finish within {timeout}s")


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"


class TestAssessments:
    def test_unknown_run_is_404(self, client):
        assert client.get("/api/assessments/run-missing").status_code == 404
        assert client.get("/api/assessments/run-missing/report").status_code == 404
        assert client.post("/api/assessments/run-missing/cancel").status_code == 404

    def test_report_format_is_validated(self, client):
        response = client.get("/api/assessments/run-missing/report", params={"format": "pdf"})
        assert response.status_code == 400

    def test_start_rejects_bad_preconditions(self, client):
        assert _start(client, connections=[]).status_code == 400
        assert _start(client, framework="FedRAMP").status_code == 400
        assert _start(client, connections=[{"server": "ftp"}]).status_code == 400

    def test_run_to_completion_and_fetch_report(self, client):
        response = _start(client)
        assert response.status_code == 202
        run_id = response.json()["run_id"]

        snapshot = _wait_until_finished(client, run_id)
        assert snapshot["status"] == "completed"
        assert snapshot["extraction_results"][0]["source"] == "github"

        report = client.get(f"/api/assessments/{run_id}/report").json()
        assert report["complianceScore"]["overall"] == 100
        assert report["metadata"]["framework"] == "SOC2"

        markdown = client.get(f"/api/assessments/{run_id}/report", params={"format": "markdown"})
        assert markdown.status_code == 200
        assert markdown.text.startswith("# SOC2 Compliance Report")

        assert client.post(f"/api/assessments/{run_id}/cancel").status_code == 409

    def test_websocket_replays_history_until_complete(self, client):
        run_id = _start(client).json()["run_id"]
        _wait_until_finished(client, run_id)

        events = []
        with client.websocket_connect(f"/api/assessments/ws/{run_id}") as ws:
            while True:
                event = ws.receive_json()
                events.append(event)
                if event["type"] == "complete":
                    break

        assert events[0]["phase"] == "phase1_planning"
        assert events[-1]["snapshot"]["status"] == "completed"

    def test_websocket_for_unknown_run_closes(self, client):
        with client.websocket_connect("/api/assessments/ws/run-missing") as ws:
            with pytest.raises(WebSocketDisconnect):
                ws.receive_json()


class TestRetention:
    def test_old_finished_runs_fall_back_to_the_repository(self, make_context, settings):
        cfg = settings.model_copy(update={"progress_retained_runs": 1})
        app = create_app(make_context(settings_override=cfg))

        with TestClient(app) as client:
            run_ids = []
            for _ in range(3):
                run_id = _start(client).json()["run_id"]
                _wait_until_finished(client, run_id)
                while not app.state.runs[run_id].done():
                    time.sleep(0.01)
                run_ids.append(run_id)

            assert run_ids[0] not in app.state.runs
            assert run_ids[2] in app.state.runs
            assert client.get(f"/api/assessments/{run_ids[0]}").json()["status"] == "completed"
            assert client.get(f"/api/assessments/{run_ids[0]}/report").status_code == 200

            with client.websocket_connect(f"/api/assessments/ws/{run_ids[0]}") as ws:
                with pytest.raises(WebSocketDisconnect):
                    ws.receive_json()


class TestRegulations:
    def test_seed_stores_catalog_text(self, client):
        response = client.post("/api/regulations/seed", json={"framework": "soc 2"})
        assert response.status_code == 200
        assert response.json() == {"framework": "SOC2", "chunks_stored": 5}

    def test_seed_rejects_unknown_framework(self, client):
        response = client.post("/api/regulations/seed", json={"framework": "FedRAMP"})
        assert response.status_code == 400
