from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any, Callable

from .analysis import AnalysisParams, read_analysis, render_analysis_program
from .config import Settings
from .environment import build_setup_script, environment_python, find_system_python, system_python_candidates, verify_environment
from .errors import (
    EnvironmentSetupFailed,
    RuntimeNotFound,
    StemRunnerError,
    classify_exception,
    classify_exit_code,
    classify_missing_output,
)
from .importers import Importer, ManifestImporter
from .jobs import job_paths, prepare_work_dir
from .launcher import ProcessLauncher
from .models import Classification, FailureKind, Job, JobResult, JobSnapshot, JobState, Platform
from .resolver import collect_stems, find_stem_path, resolve_stems_dir
from .scripts import FALLBACK_LOG_LINE, FALLBACK_NOTICE, build_runner_script
from .shells import dialect_for
from .sidechannel import last_log_lines, marker_exists, read_status_code, remove_quietly

logger = logging.getLogger(__name__)

TRANSITIONS: dict[JobState, frozenset[JobState]] = {
    JobState.IDLE: frozenset({JobState.PREFLIGHT, JobState.ERROR}),
    JobState.PREFLIGHT: frozenset({JobState.LAUNCHING, JobState.SETTING_UP_ENVIRONMENT, JobState.ERROR}),
    JobState.SETTING_UP_ENVIRONMENT: frozenset({JobState.LAUNCHING, JobState.ERROR}),
    JobState.LAUNCHING: frozenset({JobState.RUNNING, JobState.ERROR}),
    JobState.RUNNING: frozenset({JobState.IMPORTING, JobState.ERROR}),
    JobState.IMPORTING: frozenset({JobState.DONE, JobState.ERROR}),
    JobState.DONE: frozenset(),
    JobState.ERROR: frozenset(),
}

STATUS_TEXT = {
    JobState.IDLE: "Idle",
    JobState.PREFLIGHT: "Preparing...",
    JobState.SETTING_UP_ENVIRONMENT: "Setting up environment...",
    JobState.LAUNCHING: "Launching...",
    JobState.RUNNING: "Processing...",
    JobState.IMPORTING: "Importing stems...",
    JobState.DONE: "Done",
    JobState.ERROR: "Error",
}


def advance(snapshot: JobSnapshot, state: JobState, **changes: Any) -> JobSnapshot:
    if state not in TRANSITIONS[snapshot.state]:
        raise RuntimeError(f"Illegal job transition {snapshot.state.value} -> {state.value}")
    changes.setdefault("status", STATUS_TEXT[state])
    return snapshot.model_copy(update={"state": state, **changes})


class JobPoller:
    """Drives one job from submission to a terminal state.

    ``tick()`` never blocks: each pass is at most a handful of existence
    checks and small file reads, throttled to ``settings.poll_interval``.
    The detached worker talks back only through the status, log, marker and
    analysis files.
    """

    def __init__(
        self,
        job: Job,
        settings: Settings,
        *,
        platform: Platform | None = None,
        launcher: ProcessLauncher | None = None,
        importer: Importer | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.job = job
        self.settings = settings
        self.platform = platform or settings.platform
        self.launcher = launcher or ProcessLauncher(self.platform)
        self.importer = importer or ManifestImporter()
        self.clock = clock
        self.paths = job_paths(job.work_dir, job.run_id, self.platform, settings.file_prefix)
        self._snapshot = JobSnapshot(run_id=job.run_id, log_path=str(self.paths.log))
        self._last_poll: float | None = None

    @property
    def snapshot(self) -> JobSnapshot:
        return self._snapshot

    @property
    def is_terminal(self) -> bool:
        return self._snapshot.state.is_terminal

    def submit(self) -> JobSnapshot:
        if self._snapshot.state is not JobState.IDLE:
            raise RuntimeError(f"Job {self.job.run_id} was already submitted")

        self._transition(JobState.PREFLIGHT, detail=self.job.display_name)
        try:
            prepare_work_dir(self.job.work_dir, self.paths)
            if self.settings.isolated_env:
                self._start_isolated()
            else:
                self._launch_job(runtime=None)
        except StemRunnerError as exc:
            self._fail_with(exc)
        return self._snapshot

    def tick(self, now: float | None = None) -> JobSnapshot:
        state = self._snapshot.state
        if state not in (JobState.RUNNING, JobState.SETTING_UP_ENVIRONMENT):
            return self._snapshot

        now = self.clock() if now is None else now
        if self._last_poll is not None and now - self._last_poll < self.settings.poll_interval:
            return self._snapshot
        self._last_poll = now

        try:
            if state is JobState.RUNNING:
                self._poll_running(now)
            else:
                self._poll_setup(now)
        except StemRunnerError as exc:
            self._fail_with(exc)
        return self._snapshot

    def _transition(self, state: JobState, **changes: Any) -> None:
        previous = self._snapshot.state
        self._snapshot = advance(self._snapshot, state, **changes)
        logger.info("Job %s: %s -> %s", self.job.run_id, previous.value, state.value)

    def _update(self, **changes: Any) -> None:
        self._snapshot = self._snapshot.model_copy(update=changes)

    def _log_lines(self) -> list[str]:
        if not self._snapshot.log_path:
            return []
        return last_log_lines(Path(self._snapshot.log_path), self.settings.log_tail_lines)

    def _start_isolated(self) -> None:
        tool = self.settings.tool
        environment = verify_environment(self.settings.env_dir, self.platform, tool)
        if environment.verified:
            self._launch_job(runtime=environment.runtime_path)
            return

        system_python = find_system_python(self.platform)
        if system_python is None:
            searched = "\n".join(str(path) for path in system_python_candidates(self.platform))
            raise RuntimeNotFound(f"No system Python 3 found. Tried:\n{searched}")

        remove_quietly(self.paths.setup_scratch())
        setup = build_setup_script(system_python, self.settings.env_dir, self.paths, tool, self.platform)
        self.launcher.write_script(setup)
        self._transition(
            JobState.SETTING_UP_ENVIRONMENT,
            detail=f"Installing into {self.settings.env_dir}",
            log_path=str(self.paths.setup_log),
            started_at=self.clock(),
        )
        self.launcher.launch(setup.path, self.paths.setup_launcher)

    def _launch_job(self, runtime: Path | None) -> None:
        self._transition(JobState.LAUNCHING, log_path=str(self.paths.log), log_tail="")

        dialect = dialect_for(self.platform)
        params = AnalysisParams(
            input_path=dialect.native_path(self.job.input_path),
            output_path=dialect.native_path(self.paths.analysis_output),
            debug_path=dialect.native_path(self.paths.analysis_debug),
        )
        self.launcher.write(self.paths.analysis_program, render_analysis_program(params))

        script = build_runner_script(self.job, self.paths, self.settings.tool, self.platform, runtime=runtime)
        self.launcher.write_script(script)
        self.launcher.launch(script.path, self.paths.launcher)

        self._transition(JobState.RUNNING, started_at=self.clock(), elapsed=0.0, detail="")

    def _poll_setup(self, now: float) -> None:
        lines = self._log_lines()
        self._update(elapsed=self._elapsed(now), log_tail=lines[-1] if lines else self._snapshot.log_tail)

        if marker_exists(self.paths.setup_done):
            remove_quietly(self.paths.setup_scratch())
            logger.info("Job %s: environment ready at %s", self.job.run_id, self.settings.env_dir)
            self._launch_job(runtime=environment_python(self.settings.env_dir, self.platform))
            return

        if marker_exists(self.paths.setup_error):
            raise EnvironmentSetupFailed("Environment setup failed. See the setup log:", path=self.paths.setup_log)

    def _poll_running(self, now: float) -> None:
        lines = self._log_lines()
        changes: dict[str, Any] = {"elapsed": self._elapsed(now)}
        if lines:
            changes["log_tail"] = lines[-1]
        if not self._snapshot.lossy_fallback and any(FALLBACK_NOTICE in line for line in lines):
            changes["lossy_fallback"] = True
            changes["detail"] = FALLBACK_LOG_LINE
        self._update(**changes)

        exit_code = read_status_code(self.paths.status)
        if exit_code is None:
            return

        log_tail = "\n".join(self._log_lines())
        if exit_code != 0:
            self._fail(
                classify_exit_code(exit_code, platform=self.platform, log_path=self.paths.log, log_tail=log_tail)
            )
            return

        tool = self.settings.tool
        stems_dir = resolve_stems_dir(self.job.work_dir, tool, self.job.display_name)
        if find_stem_path(stems_dir, tool.first_stem) is None:
            self._fail(
                classify_missing_output(stems_dir / f"{tool.first_stem}.wav", log_path=self.paths.log, log_tail=log_tail)
            )
            return

        self._transition(JobState.IMPORTING, detail=str(stems_dir))
        analysis = read_analysis(self.paths.analysis_output, self.paths.analysis_debug)
        warnings = () if analysis is not None else (FailureKind.ANALYSIS_UNAVAILABLE,)
        result = JobResult(
            stems_dir=stems_dir,
            stems=collect_stems(stems_dir, tool.stems),
            analysis=analysis,
            warnings=warnings,
        )
        self._update(result=result)

        self.importer.import_stems(self.job, result)
        self._transition(JobState.DONE, detail=f"Imported {len(result.stems)} stems from {stems_dir}")
        self._cleanup()

    def _elapsed(self, now: float) -> float:
        started_at = self._snapshot.started_at
        return max(0.0, now - started_at) if started_at is not None else 0.0

    def _fail_with(self, exc: StemRunnerError) -> None:
        if exc.kind in (FailureKind.SCRIPT_WRITE_FAILED, FailureKind.LAUNCH_FAILED):
            logger.error("Job %s: %s", self.job.run_id, exc)
        log_path = self._snapshot.log_path
        self._fail(
            classify_exception(
                exc,
                platform=self.platform,
                log_path=log_path if log_path and Path(log_path).exists() else None,
                log_tail="\n".join(self._log_lines()),
            )
        )

    def _fail(self, classification: Classification) -> None:
        logger.warning(
            "Job %s failed: %s (exit code %s)",
            self.job.run_id,
            classification.kind.value,
            classification.exit_code,
        )
        self._transition(JobState.ERROR, error=classification, detail=classification.summary)
        self._cleanup()

    def _cleanup(self) -> None:
        remove_quietly([*self.paths.scratch(), *self.paths.setup_scratch(), self.paths.write_probe])
