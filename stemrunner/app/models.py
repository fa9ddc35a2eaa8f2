from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, HttpUrl


class Platform(str, Enum):
    WINDOWS = "windows"
    MACOS = "macos"
    LINUX = "linux"

    @property
    def is_windows(self) -> bool:
        return self is Platform.WINDOWS


class JobState(str, Enum):
    IDLE = "idle"
    PREFLIGHT = "preflight"
    SETTING_UP_ENVIRONMENT = "setting_up_environment"
    LAUNCHING = "launching"
    RUNNING = "running"
    IMPORTING = "importing"
    DONE = "done"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.DONE, JobState.ERROR)


class FailureKind(str, Enum):
    RUNTIME_NOT_FOUND = "RuntimeNotFound"
    DEPENDENCIES_MISSING = "DependenciesMissing"
    CONVERTER_MISSING = "ConverterMissing"
    TOOL_EXECUTION_FAILED = "ToolExecutionFailed"
    OUTPUT_NOT_PRODUCED = "OutputNotProduced"
    ANALYSIS_UNAVAILABLE = "AnalysisUnavailable"
    WORKSPACE_NOT_WRITABLE = "WorkspaceNotWritable"
    SCRIPT_WRITE_FAILED = "ScriptWriteFailed"
    LAUNCH_FAILED = "LaunchFailed"
    ENVIRONMENT_SETUP_FAILED = "EnvironmentSetupFailed"
    IMPORT_FAILED = "ImportFailed"


class ToolConfig(BaseModel):
    model_config = ConfigDict(frozen=True, protected_namespaces=())

    model_name: str = "htdemucs_6s"
    stems: tuple[str, ...] = ("vocals", "drums", "bass", "guitar", "piano", "other")
    output_subfolder: str = "audio_process"
    separation_module: str = "demucs.separate"
    dependency_modules: tuple[str, ...] = ("demucs", "torch", "torchaudio", "soundfile")
    install_packages: tuple[str, ...] = ("demucs", "soundfile==0.12.1", "librosa", "numpy<2", "scipy")
    analysis_packages: tuple[str, ...] = ("librosa", "numpy", "scipy")
    fallback_args: tuple[str, ...] = ("--mp3", "--mp3-bitrate", "320", "--mp3-preset", "2")
    converter: str = "ffmpeg"
    min_python: tuple[int, int] = (3, 10)
    auto_install: bool = True
    refresh_analysis_libraries: bool = True

    @property
    def first_stem(self) -> str:
        return self.stems[0]


class Job(BaseModel):
    model_config = ConfigDict(frozen=True)

    run_id: str
    input_path: Path
    work_dir: Path
    display_name: str
    submitted_at: datetime
    original_position: float = 0.0


class RunnerScript(BaseModel):
    model_config = ConfigDict(frozen=True)

    platform: Platform
    text: str
    path: Path


class AnalysisResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    bpm: int
    key: str
    tuningHz: int

    @property
    def label(self) -> str:
        return f"{self.bpm}bpm {self.key} @{self.tuningHz}Hz"


class Environment(BaseModel):
    model_config = ConfigDict(frozen=True)

    runtime_path: Path
    verified: bool = False


class Classification(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: FailureKind
    summary: str
    remediation: str = ""
    exit_code: int | None = None
    log_path: str | None = None
    log_tail: str = ""
    searched_path: str | None = None

    @property
    def message(self) -> str:
        sections = [self.summary]
        if self.searched_path:
            sections.append(f"Searched path:\n{self.searched_path}")
        if self.remediation:
            sections.append(self.remediation)
        if self.log_path:
            sections.append(f"Log file:\n{self.log_path}")
        if self.log_tail:
            sections.append(f"Last log lines:\n{self.log_tail}")
        return "\n\n".join(sections)


class JobResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    stems_dir: Path
    stems: dict[str, Path] = Field(default_factory=dict)
    analysis: AnalysisResult | None = None
    warnings: tuple[FailureKind, ...] = ()


class JobSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    run_id: str
    state: JobState = JobState.IDLE
    status: str = "Idle"
    detail: str = ""
    log_path: str | None = None
    log_tail: str = ""
    started_at: float | None = None
    elapsed: float = 0.0
    lossy_fallback: bool = False
    error: Classification | None = None
    result: JobResult | None = None


class CallbackConfig(BaseModel):
    webhookUrl: HttpUrl
    webhookSecret: str = Field(min_length=16)


class JobRequest(BaseModel):
    inputPath: str = Field(min_length=1)
    displayName: str | None = None
    position: float = 0.0
    callback: CallbackConfig | None = None


class StemArtifact(BaseModel):
    name: str
    path: str
    format: str
    sizeBytes: int


class WorkerJobStatus(BaseModel):
    runId: str
    state: JobState
    status: str
    detail: str = ""
    logTail: str = ""
    elapsedSec: float = 0.0
    lossyFallback: bool = False
    errorKind: FailureKind | None = None
    errorMessage: str | None = None
    stemsDir: str | None = None
    stems: list[StemArtifact] = Field(default_factory=list)
    analysis: AnalysisResult | None = None
    outcome: Literal["pending", "succeeded", "failed"] = "pending"
