from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest
import requests

from stemrunner.app import importers
from stemrunner.app.errors import ImportFailed
from stemrunner.app.importers import SIGNATURE_HEADER, CallbackImporter, ManifestImporter, build_import_plan
from stemrunner.app.models import AnalysisResult, CallbackConfig, Classification, FailureKind, Job, JobResult
from stemrunner.app.security import verify_signature

SECRET = "0123456789abcdef-secret"


def _job(tmp_path: Path) -> Job:
    return Job(
        run_id="1_1000",
        input_path=tmp_path / "song.wav",
        work_dir=tmp_path,
        display_name="song",
        submitted_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        original_position=12.5,
    )


def _result(tmp_path: Path, analysis: AnalysisResult | None = None) -> JobResult:
    stems_dir = tmp_path / "htdemucs_6s" / "audio_process"
    stems_dir.mkdir(parents=True)
    stems = {}
    for name in ("vocals", "drums"):
        path = stems_dir / f"{name}.wav"
        path.write_bytes(b"RIFF1234")
        stems[name] = path
    return JobResult(stems_dir=stems_dir, stems=stems, analysis=analysis)


class FakeResponse:
    def __init__(self, status_code: int = 200) -> None:
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


def test_import_plan_names_tracks_and_takes(tmp_path: Path) -> None:
    analysis = AnalysisResult(bpm=120, key="Am", tuningHz=441)
    plan = build_import_plan(_job(tmp_path), _result(tmp_path, analysis))

    assert plan.folderName == "STEMS: song [120bpm Am @441Hz]"
    assert [track.name for track in plan.tracks] == ["VOCALS [120bpm Am @441Hz]", "DRUMS [120bpm Am @441Hz]"]
    assert plan.tracks[0].takeName == "song (120bpm Am @441Hz) - vocals"
    assert all(track.position == 12.5 for track in plan.tracks)


def test_manifest_importer_writes_json(tmp_path: Path) -> None:
    importer = ManifestImporter(tmp_path / "manifests")
    importer.import_stems(_job(tmp_path), _result(tmp_path))

    data = json.loads((tmp_path / "manifests" / "import_1_1000.json").read_text(encoding="utf-8"))
    assert data["folderName"] == "STEMS: song"
    assert data["analysis"] is None
    assert [track["takeName"] for track in data["tracks"]] == ["song - vocals", "song - drums"]


def test_callback_importer_signs_payload(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    sent = {}

    def fake_post(url, data, timeout, headers):
        sent.update(url=url, data=data, headers=headers)
        return FakeResponse()

    monkeypatch.setattr(importers.requests, "post", fake_post)
    callback = CallbackConfig(webhookUrl="https://example.com/hooks/stems", webhookSecret=SECRET)
    CallbackImporter(callback).import_stems(_job(tmp_path), _result(tmp_path))

    payload = json.loads(sent["data"])
    assert sent["url"] == "https://example.com/hooks/stems"
    assert payload["status"] == "succeeded"
    assert [stem["name"] for stem in payload["stems"]] == ["vocals", "drums"]
    assert payload["stems"][0]["sizeBytes"] == 8
    assert verify_signature(SECRET, sent["data"], sent["headers"][SIGNATURE_HEADER])


def test_callback_failure_raises_import_failed(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(importers.requests, "post", lambda *args, **kwargs: FakeResponse(503))
    callback = CallbackConfig(webhookUrl="https://example.com/hooks/stems", webhookSecret=SECRET)

    with pytest.raises(ImportFailed):
        CallbackImporter(callback).import_stems(_job(tmp_path), _result(tmp_path))


def test_failure_notification_is_best_effort(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def refuse(*args, **kwargs):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(importers.requests, "post", refuse)
    callback = CallbackConfig(webhookUrl="https://example.com/hooks/stems", webhookSecret=SECRET)
    error = Classification(kind=FailureKind.CONVERTER_MISSING, summary="FFmpeg was not found in PATH.", exit_code=13)

    CallbackImporter(callback).notify_failure(_job(tmp_path), error)
