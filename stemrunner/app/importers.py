from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Protocol

import requests
from pydantic import BaseModel

from .errors import ImportFailed
from .models import AnalysisResult, CallbackConfig, Classification, Job, JobResult, StemArtifact
from .security import sign_payload

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-stemrunner-signature"
CALLBACK_TIMEOUT_SEC = 30


class Importer(Protocol):
    def import_stems(self, job: Job, result: JobResult) -> None: ...


class ImportTrack(BaseModel):
    name: str
    stem: str
    source: str
    takeName: str
    position: float


class ImportPlan(BaseModel):
    runId: str
    folderName: str
    position: float
    stemsDir: str
    analysis: AnalysisResult | None = None
    tracks: list[ImportTrack]


def folder_title(display_name: str, analysis: AnalysisResult | None) -> str:
    title = f"STEMS: {display_name}"
    if analysis is not None:
        title = f"{title} [{analysis.label}]"
    return title


def track_title(stem: str, analysis: AnalysisResult | None) -> str:
    title = stem.upper()
    if analysis is not None:
        title = f"{title} [{analysis.label}]"
    return title


def take_name(display_name: str, stem: str, analysis: AnalysisResult | None) -> str:
    name = display_name
    if analysis is not None:
        name = f"{name} ({analysis.label})"
    return f"{name} - {stem}"


def build_import_plan(job: Job, result: JobResult) -> ImportPlan:
    tracks = [
        ImportTrack(
            name=track_title(stem, result.analysis),
            stem=stem,
            source=str(path),
            takeName=take_name(job.display_name, stem, result.analysis),
            position=job.original_position,
        )
        for stem, path in result.stems.items()
    ]
    return ImportPlan(
        runId=job.run_id,
        folderName=folder_title(job.display_name, result.analysis),
        position=job.original_position,
        stemsDir=str(result.stems_dir),
        analysis=result.analysis,
        tracks=tracks,
    )


def stem_artifacts(stems: dict[str, Path]) -> list[StemArtifact]:
    artifacts = []
    for name, path in stems.items():
        if not path.exists():
            continue
        artifacts.append(
            StemArtifact(
                name=name,
                path=str(path),
                format=path.suffix.replace(".", "") or "bin",
                sizeBytes=path.stat().st_size,
            )
        )
    return artifacts


class ManifestImporter:
    def __init__(self, output_dir: Path | None = None) -> None:
        self.output_dir = output_dir
        self.last_plan: ImportPlan | None = None
        self.last_path: Path | None = None

    def manifest_path(self, job: Job) -> Path:
        return (self.output_dir or job.work_dir) / f"import_{job.run_id}.json"

    def import_stems(self, job: Job, result: JobResult) -> None:
        plan = build_import_plan(job, result)
        target = self.manifest_path(job)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(plan.model_dump_json(indent=2), encoding="utf-8")
        except OSError as exc:
            raise ImportFailed("Could not write the import manifest:", path=target) from exc

        self.last_plan = plan
        self.last_path = target
        logger.info("Wrote import manifest for %s (%d stems): %s", job.run_id, len(plan.tracks), target)


def post_callback(callback: CallbackConfig, payload: dict[str, Any]) -> None:
    raw = json.dumps(payload, default=str)
    signature = sign_payload(callback.webhookSecret, raw)

    response = requests.post(
        str(callback.webhookUrl),
        data=raw,
        timeout=CALLBACK_TIMEOUT_SEC,
        headers={
            "content-type": "application/json",
            SIGNATURE_HEADER: signature,
        },
    )
    response.raise_for_status()


class CallbackImporter:
    def __init__(self, callback: CallbackConfig) -> None:
        self.callback = callback

    def import_stems(self, job: Job, result: JobResult) -> None:
        plan = build_import_plan(job, result)
        payload = {
            "runId": job.run_id,
            "status": "succeeded",
            "plan": plan.model_dump(mode="json"),
            "stems": [artifact.model_dump(mode="json") for artifact in stem_artifacts(result.stems)],
            "warnings": [warning.value for warning in result.warnings],
        }
        try:
            post_callback(self.callback, payload)
        except requests.RequestException as exc:
            raise ImportFailed(f"Callback delivery failed: {exc}") from exc

    def notify_failure(self, job: Job, error: Classification) -> None:
        payload = {
            "runId": job.run_id,
            "status": "failed",
            "errorKind": error.kind.value,
            "exitCode": error.exit_code,
            "errorMessage": error.summary,
        }
        try:
            post_callback(self.callback, payload)
        except requests.RequestException as exc:
            logger.warning("Failure callback for %s was not delivered: %s", job.run_id, exc)
