from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from stemrunner.app import main
from stemrunner.app import poller as poller_module
from stemrunner.app.models import Platform
from tests.helpers import RecordingLauncher

API_KEY = "test-api-key"
AUTH = {"authorization": f"Bearer {API_KEY}"}


@pytest.fixture
def client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> TestClient:
    monkeypatch.setenv("WORKER_API_KEY", API_KEY)
    monkeypatch.setattr(main, "SETTINGS", replace(main.SETTINGS, work_dir=tmp_path / "work", platform=Platform.LINUX))
    monkeypatch.setattr(poller_module, "ProcessLauncher", RecordingLauncher)
    monkeypatch.setattr(main, "pollers", {})
    monkeypatch.setattr(main, "callbacks", {})
    return TestClient(main.app)


def test_health(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["ok"] is True


def test_jobs_require_bearer_token(client: TestClient, tmp_path: Path) -> None:
    response = client.post("/jobs", json={"inputPath": str(tmp_path / "song.wav")})
    assert response.status_code == 401

    response = client.post(
        "/jobs",
        json={"inputPath": str(tmp_path / "song.wav")},
        headers={"authorization": "Bearer wrong"},
    )
    assert response.status_code == 401


def test_unknown_job_is_404(client: TestClient) -> None:
    response = client.get("/jobs/1_1000", headers=AUTH)
    assert response.status_code == 404


def test_missing_input_is_rejected(client: TestClient, tmp_path: Path) -> None:
    response = client.post("/jobs", json={"inputPath": str(tmp_path / "missing.wav")}, headers=AUTH)
    assert response.status_code == 422


def test_submit_then_poll_until_done(client: TestClient, tmp_path: Path) -> None:
    song = tmp_path / "song.wav"
    song.write_bytes(b"RIFF")

    response = client.post("/jobs", json={"inputPath": str(song), "position": 12.5}, headers=AUTH)
    assert response.status_code == 200
    body = response.json()
    assert body["state"] == "running"
    assert body["outcome"] == "pending"

    run_id = body["runId"]
    poller = main.pollers[run_id]
    stems_dir = tmp_path / "work" / "htdemucs_6s" / "audio_process"
    stems_dir.mkdir(parents=True)
    (stems_dir / "vocals.wav").write_bytes(b"RIFF")
    poller.paths.status.write_text("0", encoding="utf-8")

    main.tick_all()

    status = client.get(f"/jobs/{run_id}", headers=AUTH).json()
    assert status["state"] == "done"
    assert status["outcome"] == "succeeded"
    assert [stem["name"] for stem in status["stems"]] == ["vocals"]
    assert status["stemsDir"] == str(stems_dir)


def test_failed_job_reports_classification(client: TestClient, tmp_path: Path) -> None:
    song = tmp_path / "song.wav"
    song.write_bytes(b"RIFF")
    run_id = client.post("/jobs", json={"inputPath": str(song)}, headers=AUTH).json()["runId"]

    main.pollers[run_id].paths.status.write_text("11", encoding="utf-8")
    main.tick_all()

    status = client.get(f"/jobs/{run_id}", headers=AUTH).json()
    assert status["outcome"] == "failed"
    assert status["errorKind"] == "RuntimeNotFound"
    assert "One-time setup (Linux)" in status["errorMessage"]
