from __future__ import annotations

import random
import time
from dataclasses import dataclass, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from .errors import ScriptWriteFailed, WorkspaceNotWritable
from .models import Job, Platform
from .quoting import safe_display_name

RUN_ID_ATTEMPTS = 16
PROBE_FILENAME = ".stemrunner_probe"


@dataclass(frozen=True)
class JobPaths:
    runner: Path
    launcher: Path | None
    log: Path
    status: Path
    status_tmp: Path
    analysis_program: Path
    analysis_output: Path
    analysis_debug: Path
    write_probe: Path
    setup_script: Path
    setup_launcher: Path | None
    setup_log: Path
    setup_done: Path
    setup_error: Path

    def all(self) -> list[Path]:
        return [value for item in fields(self) if (value := getattr(self, item.name)) is not None]

    def scratch(self) -> list[Path]:
        paths = [self.runner, self.launcher, self.status, self.status_tmp, self.analysis_program]
        return [path for path in paths if path is not None]

    def setup_scratch(self) -> list[Path]:
        paths = [self.setup_script, self.setup_launcher, self.setup_done, self.setup_error]
        return [path for path in paths if path is not None]


def make_run_id(now_ms: int | None = None, rng: random.Random | None = None) -> str:
    stamp = now_ms if now_ms is not None else time.time_ns() // 1_000_000
    suffix = (rng or random).randint(1000, 9999)
    return f"{stamp}_{suffix}"


def job_paths(work_dir: Path, run_id: str, platform: Platform, prefix: str = "demucs") -> JobPaths:
    base = f"{prefix}_{run_id}"
    runner_suffix = ".cmd" if platform.is_windows else ".sh"

    def at(suffix: str) -> Path:
        return work_dir / f"{base}{suffix}"

    return JobPaths(
        runner=at(runner_suffix),
        launcher=at(".vbs") if platform.is_windows else None,
        log=at(".log"),
        status=at(".status"),
        status_tmp=at(".status.tmp"),
        analysis_program=at(".analyze_audio.py"),
        analysis_output=at(".analysis_info.txt"),
        analysis_debug=at(".analysis_debug.log"),
        write_probe=at(".torchaudio_write_probe.wav"),
        setup_script=at(f".setup_env{runner_suffix}"),
        setup_launcher=at(".setup_env.vbs") if platform.is_windows else None,
        setup_log=at(".setup_log.txt"),
        setup_done=at(".setup_done.marker"),
        setup_error=at(".setup_error.marker"),
    )


def allocate_run_id(
    work_dir: Path,
    platform: Platform,
    prefix: str = "demucs",
    *,
    make_id: Callable[[], str] = make_run_id,
    attempts: int = RUN_ID_ATTEMPTS,
) -> str:
    for _ in range(attempts):
        run_id = make_id()
        paths = job_paths(work_dir, run_id, platform, prefix)
        if not any(path.exists() for path in paths.all()):
            return run_id
    raise ScriptWriteFailed(f"Could not allocate a unique run id after {attempts} attempts", path=work_dir)


def new_job(
    input_path: Path | str,
    work_dir: Path,
    platform: Platform,
    *,
    position: float = 0.0,
    display_name: str | None = None,
    prefix: str = "demucs",
    make_id: Callable[[], str] = make_run_id,
) -> Job:
    return Job(
        run_id=allocate_run_id(work_dir, platform, prefix, make_id=make_id),
        input_path=Path(input_path),
        work_dir=work_dir,
        display_name=safe_display_name(display_name, input_path),
        submitted_at=datetime.now(timezone.utc),
        original_position=float(position),
    )


def prepare_work_dir(work_dir: Path, paths: JobPaths) -> None:
    try:
        work_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise WorkspaceNotWritable("Could not create the work directory:", path=work_dir) from exc

    probe = work_dir / PROBE_FILENAME
    try:
        probe.write_text("ok", encoding="utf-8")
        probe.unlink()
    except OSError as exc:
        raise WorkspaceNotWritable("Cannot write to the work directory:", path=work_dir) from exc

    paths.analysis_debug.unlink(missing_ok=True)
