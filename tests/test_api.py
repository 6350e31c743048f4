from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from backend.app import main
from qarunner.core.test_runner import NO_INSTRUCTIONS


@pytest.fixture
def client():
    main.batches.clear()
    main._event_queues.clear()
    return TestClient(main.app)


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_execute_without_instructions_fails(client):
    resp = client.post("/api/v1/tests/execute", json={"testId": "tc-1", "title": "Nothing"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["testId"] == "tc-1"
    result = body["executionResult"]
    assert result["status"] == "failed"
    assert result["errors"] == [{"message": NO_INSTRUCTIONS}]


def test_execute_all_runs_in_background(client):
    resp = client.post("/api/v1/tests/execute-all", json={
        "testCases": [{"testId": "a", "title": "A"}, {"testId": "b", "title": "B"}],
        "concurrency": 99,
    })
    assert resp.status_code == 200
    started = resp.json()
    assert started["total"] == 2
    assert started["concurrency"] == 10

    batch = client.get(f"/api/v1/batches/{started['batch_id']}").json()
    assert batch["status"] == "completed"
    assert batch["summary"]["executed"] == 2
    assert batch["summary"]["failed"] == 2
    assert set(batch["results"]) == {"a", "b"}

    cancelled = client.post(f"/api/v1/batches/{started['batch_id']}/cancel").json()
    assert cancelled["status"] == "completed"


def test_unknown_batch_is_404(client):
    assert client.get("/api/v1/batches/nope").status_code == 404
    assert client.post("/api/v1/batches/nope/cancel").status_code == 404
