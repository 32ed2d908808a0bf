from __future__ import annotations

import importlib
import sys
import time

import pytest
from fastapi.testclient import TestClient

from radio.errors import ScriptGenerationError


@pytest.fixture
def api(tmp_path, monkeypatch):
    monkeypatch.setenv("RADIO_OUTPUT_DIR", str(tmp_path))
    monkeypatch.setenv("USE_FIRESTORE", "false")
    if "main" in sys.modules:
        module = importlib.reload(sys.modules["main"])
    else:
        module = importlib.import_module("main")
    return module


def _wait_for(client: TestClient, job_id: str, timeout: float = 5.0) -> dict:
    deadline = time.monotonic() + timeout
    body: dict = {}
    while time.monotonic() < deadline:
        body = client.get(f"/jobs/{job_id}").json()
        if body["status"] in ("completed", "failed"):
            return body
        time.sleep(0.02)
    return body


def test_health(api):
    with TestClient(api.app) as client:
        response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "storage": "in-memory"}


def test_job_runs_to_completion(api, monkeypatch):
    def fake_record(options, job_id, on_stage, cancel_event):
        on_stage("outline_completed", {"section_count": 2})
        return {
            "name": "paper_20240501-093000",
            "title": "Paper",
            "author": "Ada",
            "audio_url": "radio-paper.mp3",
            "audio_filename": "radio-paper.mp3",
            "script_url": None,
            "script_filename": "script-paper.json",
            "duration_seconds": 300.5,
            "section_count": 2,
            "turn_count": 23,
            "guest_voice": "nova",
            "metrics": {"total_seconds": 1.0},
        }

    monkeypatch.setattr(api, "_record", fake_record)
    with TestClient(api.app) as client:
        created = client.post("/jobs/create", json={"paperUrls": ["a.pdf"], "minute": 5})
        assert created.status_code == 200
        body = _wait_for(client, created.json()["job_id"])

    assert body["status"] == "completed"
    assert body["result"]["audio_url"] == "/audio/radio-paper.mp3"
    assert body["result"]["script_url"] == "/audio/script-paper.json"
    assert body["result"]["turn_count"] == 23
    assert body["metrics"]["section_count"] == 2
    assert body["metrics"]["total_seconds"] == 1.0
    assert [s["stage"] for s in body["stages"]] == ["running", "outline_completed", "completed"]
    assert body["options"]["documents"] == ["a.pdf"]
    assert body["options"]["minute"] == 5


def test_job_failure_is_recorded(api, monkeypatch):
    def fake_record(options, job_id, on_stage, cancel_event):
        raise ScriptGenerationError("section 2 failed")

    monkeypatch.setattr(api, "_record", fake_record)
    with TestClient(api.app) as client:
        created = client.post("/jobs/create", json={"documents": ["a.pdf"]})
        body = _wait_for(client, created.json()["job_id"])

    assert body["status"] == "failed"
    assert "section 2 failed" in body["error"]


def test_invalid_options_are_rejected(api):
    with TestClient(api.app) as client:
        assert client.post("/jobs/create", json={"documents": []}).status_code == 422
        assert client.post("/jobs/create", json={"documents": ["a.pdf"], "language": "fr"}).status_code == 422


def test_unknown_job_is_404(api):
    with TestClient(api.app) as client:
        assert client.get("/jobs/missing").status_code == 404
