from __future__ import annotations

import asyncio
import logging
import threading
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

from fastapi import FastAPI, Header, HTTPException
from fastapi.responses import JSONResponse

from .config import Settings, configure_logging, load_settings
from .importers import CallbackImporter, Importer, ManifestImporter, stem_artifacts
from .jobs import new_job
from .models import JobRequest, JobSnapshot, JobState, WorkerJobStatus
from .poller import JobPoller
from .security import assert_bearer_token

logger = logging.getLogger(__name__)

SETTINGS = load_settings()
configure_logging(SETTINGS.log_level)

pollers: dict[str, JobPoller] = {}
callbacks: dict[str, CallbackImporter] = {}
POLLERS_LOCK = threading.Lock()


def job_status(snapshot: JobSnapshot) -> WorkerJobStatus:
    outcome = "pending"
    if snapshot.state is JobState.DONE:
        outcome = "succeeded"
    elif snapshot.state is JobState.ERROR:
        outcome = "failed"

    result = snapshot.result
    return WorkerJobStatus(
        runId=snapshot.run_id,
        state=snapshot.state,
        status=snapshot.status,
        detail=snapshot.detail,
        logTail=snapshot.log_tail,
        elapsedSec=round(snapshot.elapsed, 2),
        lossyFallback=snapshot.lossy_fallback,
        errorKind=snapshot.error.kind if snapshot.error else None,
        errorMessage=snapshot.error.message if snapshot.error else None,
        stemsDir=str(result.stems_dir) if result else None,
        stems=stem_artifacts(result.stems) if result else [],
        analysis=result.analysis if result else None,
        outcome=outcome,
    )


def notify_terminal(poller: JobPoller) -> None:
    with POLLERS_LOCK:
        callback = callbacks.pop(poller.job.run_id, None)

    snapshot = poller.snapshot
    if callback is not None and snapshot.state is JobState.ERROR and snapshot.error is not None:
        callback.notify_failure(poller.job, snapshot.error)


def tick_all() -> None:
    with POLLERS_LOCK:
        active = [poller for poller in pollers.values() if not poller.is_terminal]

    for poller in active:
        if poller.tick().state.is_terminal:
            notify_terminal(poller)


async def ticker(settings: Settings) -> None:
    while True:
        await asyncio.sleep(settings.poll_interval)
        try:
            await asyncio.to_thread(tick_all)
        except Exception:
            logger.exception("Poller tick failed")


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    task = asyncio.create_task(ticker(SETTINGS))
    try:
        yield
    finally:
        task.cancel()


app = FastAPI(title="StemRunner", version="1.0.0", lifespan=lifespan)


def authorize(authorization: str | None) -> None:
    try:
        assert_bearer_token(authorization)
    except PermissionError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc


@app.get("/health")
async def health() -> JSONResponse:
    return JSONResponse({"ok": True, "worker": "stemrunner", "platform": SETTINGS.platform.value})


@app.post("/jobs", response_model=WorkerJobStatus)
async def create_job(request: JobRequest, authorization: str | None = Header(default=None)) -> WorkerJobStatus:
    authorize(authorization)

    input_path = Path(request.inputPath)
    if not input_path.is_file():
        raise HTTPException(status_code=422, detail=f"Input file not found: {input_path}")

    job = await asyncio.to_thread(
        new_job,
        input_path,
        SETTINGS.work_dir,
        SETTINGS.platform,
        position=request.position,
        display_name=request.displayName,
        prefix=SETTINGS.file_prefix,
    )

    callback = CallbackImporter(request.callback) if request.callback is not None else None
    importer: Importer = callback or ManifestImporter()

    poller = JobPoller(job, SETTINGS, importer=importer)
    with POLLERS_LOCK:
        pollers[job.run_id] = poller
        if callback is not None:
            callbacks[job.run_id] = callback

    snapshot = await asyncio.to_thread(poller.submit)
    if snapshot.state is JobState.ERROR:
        await asyncio.to_thread(notify_terminal, poller)
    return job_status(snapshot)


@app.get("/jobs/{run_id}", response_model=WorkerJobStatus)
async def get_job_status(run_id: str, authorization: str | None = Header(default=None)) -> WorkerJobStatus:
    authorize(authorization)

    with POLLERS_LOCK:
        poller = pollers.get(run_id)
    if not poller:
        raise HTTPException(status_code=404, detail="Job not found")

    return job_status(poller.snapshot)
