from __future__ import annotations

from pathlib import Path

from .models import Classification, FailureKind, Platform

EXIT_RUNTIME_NOT_FOUND = 11
EXIT_DEPENDENCIES_MISSING = 12
EXIT_CONVERTER_MISSING = 13

# A tool that itself exits with 11-13 is indistinguishable from these; the
# reserved meaning wins.
RESERVED_EXIT_CODES: dict[int, tuple[FailureKind, str]] = {
    EXIT_RUNTIME_NOT_FOUND: (FailureKind.RUNTIME_NOT_FOUND, "No working Python 3.10+ command was found in PATH."),
    EXIT_DEPENDENCIES_MISSING: (
        FailureKind.DEPENDENCIES_MISSING,
        "Demucs dependencies are missing and could not be installed.",
    ),
    EXIT_CONVERTER_MISSING: (FailureKind.CONVERTER_MISSING, "FFmpeg was not found in PATH."),
}


class StemRunnerError(RuntimeError):
    kind = FailureKind.TOOL_EXECUTION_FAILED

    def __init__(self, message: str, *, path: Path | str | None = None) -> None:
        super().__init__(message)
        self.path = str(path) if path is not None else None


class WorkspaceNotWritable(StemRunnerError):
    kind = FailureKind.WORKSPACE_NOT_WRITABLE


class ScriptWriteFailed(StemRunnerError):
    kind = FailureKind.SCRIPT_WRITE_FAILED


class LaunchFailed(StemRunnerError):
    kind = FailureKind.LAUNCH_FAILED


class RuntimeNotFound(StemRunnerError):
    kind = FailureKind.RUNTIME_NOT_FOUND


class EnvironmentSetupFailed(StemRunnerError):
    kind = FailureKind.ENVIRONMENT_SETUP_FAILED


class ImportFailed(StemRunnerError):
    kind = FailureKind.IMPORT_FAILED


def setup_help(platform: Platform, python_cmd: str | None = None) -> str:
    py = python_cmd or "<python-command>"
    if platform is Platform.WINDOWS:
        return "\n".join(
            [
                "One-time setup (Windows):",
                "1) Install Python 3 from https://www.python.org/downloads/",
                "   Important: check 'Add Python to PATH'.",
                "2) In Command Prompt, find your Python command:",
                "   python --version",
                "   py -3 --version",
                "   python3 --version",
                "3) Use the command that worked:",
                f"   {py} -m pip install --upgrade pip",
                f"   {py} -m pip install demucs soundfile==0.12.1 librosa numpy",
                "4) If you see 'TorchCodec is required', run:",
                f"   {py} -m pip install torchcodec",
                "   If TorchCodec still fails to load, stems fall back to MP3 automatically.",
                "5) Install FFmpeg and add it to PATH.",
                "   Easy option: winget install Gyan.FFmpeg",
                "6) Restart the host application and run the job again.",
                "If package install still fails on your Python build, install Python 3.11 and retry.",
            ]
        )

    if platform is Platform.MACOS:
        install_line = "   brew install python ffmpeg"
        title = "One-time setup (macOS):"
    else:
        install_line = "   sudo apt update && sudo apt install -y python3 python3-pip ffmpeg"
        title = "One-time setup (Linux):"

    return "\n".join(
        [
            title,
            "1) Install Python and FFmpeg:",
            install_line,
            "2) Find your Python command in a terminal:",
            "   python3 --version",
            "   python --version",
            "3) Use the command that worked:",
            f"   {py} -m pip install --upgrade pip",
            f"   {py} -m pip install demucs soundfile==0.12.1 librosa numpy",
            "4) If you see 'TorchCodec is required', run:",
            f"   {py} -m pip install torchcodec",
            "   If TorchCodec still fails to load, stems fall back to MP3 automatically.",
            "5) Restart the host application and run the job again.",
            "If package install still fails on your Python build, install Python 3.11 and retry.",
        ]
    )


def classify_exit_code(
    exit_code: int,
    *,
    platform: Platform,
    log_path: Path | str | None = None,
    log_tail: str = "",
) -> Classification:
    if exit_code == 0:
        raise ValueError("exit code 0 is not a failure")

    reserved = RESERVED_EXIT_CODES.get(exit_code)
    if reserved is not None:
        kind, summary = reserved
        return Classification(
            kind=kind,
            summary=summary,
            remediation=setup_help(platform),
            exit_code=exit_code,
            log_path=str(log_path) if log_path is not None else None,
            log_tail=log_tail,
        )

    return Classification(
        kind=FailureKind.TOOL_EXECUTION_FAILED,
        summary=f"Demucs failed with exit code {exit_code}.",
        remediation=setup_help(platform),
        exit_code=exit_code,
        log_path=str(log_path) if log_path is not None else None,
        log_tail=log_tail,
    )


def classify_missing_output(
    searched_path: Path | str,
    *,
    log_path: Path | str | None = None,
    log_tail: str = "",
) -> Classification:
    return Classification(
        kind=FailureKind.OUTPUT_NOT_PRODUCED,
        summary="AI finished, but the stem files were not found.",
        exit_code=0,
        log_path=str(log_path) if log_path is not None else None,
        log_tail=log_tail,
        searched_path=str(searched_path),
    )


def classify_exception(
    exc: StemRunnerError,
    *,
    platform: Platform,
    log_path: Path | str | None = None,
    log_tail: str = "",
) -> Classification:
    summary = str(exc)
    if exc.path and exc.path not in summary:
        summary = f"{summary}\n{exc.path}"

    remediation = ""
    if exc.kind in (FailureKind.WORKSPACE_NOT_WRITABLE, FailureKind.RUNTIME_NOT_FOUND):
        remediation = setup_help(platform)

    return Classification(
        kind=exc.kind,
        summary=summary,
        remediation=remediation,
        log_path=str(log_path) if log_path is not None else None,
        log_tail=log_tail,
    )
