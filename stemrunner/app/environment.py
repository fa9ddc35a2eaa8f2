from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path
from typing import Mapping

from .jobs import JobPaths
from .models import Environment, Platform, RunnerScript, ToolConfig
from .shells import dialect_for

logger = logging.getLogger(__name__)

VERIFY_SENTINEL = "STEMRUNNER_ENV_OK"
VERIFY_TIMEOUT_SEC = 120
SETUP_FAILURE_CODE = 1

POSIX_SYSTEM_PYTHONS = {
    Platform.MACOS: ("/opt/homebrew/bin/python3", "/usr/local/bin/python3", "/usr/bin/python3"),
    Platform.LINUX: ("/usr/local/bin/python3", "/usr/bin/python3", "/bin/python3"),
}
WINDOWS_PYTHON_VERSIONS = ("313", "312", "311", "310")


def environment_python(env_dir: Path, platform: Platform) -> Path:
    if platform.is_windows:
        return env_dir / "Scripts" / "python.exe"
    return env_dir / "bin" / "python3"


def verify_command(runtime: Path, tool: ToolConfig) -> list[str]:
    module = tool.separation_module.split(".")[0]
    return [str(runtime), "-c", f"import {module}; print('{VERIFY_SENTINEL}')"]


def verify_environment(env_dir: Path, platform: Platform, tool: ToolConfig, timeout: int = VERIFY_TIMEOUT_SEC) -> Environment:
    runtime = environment_python(env_dir, platform)
    if not runtime.is_file():
        return Environment(runtime_path=runtime, verified=False)

    try:
        completed = subprocess.run(
            verify_command(runtime, tool),
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        logger.warning("Environment verification could not run %s: %s", runtime, exc)
        return Environment(runtime_path=runtime, verified=False)

    verified = completed.returncode == 0 and VERIFY_SENTINEL in (completed.stdout or "")
    if not verified:
        logger.info("Environment at %s is incomplete (exit %s)", env_dir, completed.returncode)
    return Environment(runtime_path=runtime, verified=verified)


def system_python_candidates(platform: Platform, env: Mapping[str, str] | None = None) -> list[Path]:
    if not platform.is_windows:
        return [Path(path) for path in POSIX_SYSTEM_PYTHONS[platform]]

    values = os.environ if env is None else env
    roots: list[Path] = []
    local_app_data = values.get("LOCALAPPDATA")
    if local_app_data:
        roots.append(Path(local_app_data) / "Programs" / "Python")
    program_files = values.get("ProgramFiles")
    if program_files:
        roots.append(Path(program_files))

    return [root / f"Python{version}" / "python.exe" for version in WINDOWS_PYTHON_VERSIONS for root in roots]


def find_system_python(platform: Platform, env: Mapping[str, str] | None = None) -> Path | None:
    for candidate in system_python_candidates(platform, env):
        if candidate.is_file():
            return candidate
    return None


def build_setup_script(
    system_python: Path,
    env_dir: Path,
    paths: JobPaths,
    tool: ToolConfig,
    platform: Platform,
) -> RunnerScript:
    dialect = dialect_for(platform)
    runtime = dialect.native_path(environment_python(env_dir, platform))
    native_env = dialect.native_path(env_dir)

    def failure(message: str) -> list[str]:
        return dialect.fail(SETUP_FAILURE_CODE, message)

    body = [
        dialect.echo("[install] Starting environment setup..."),
        dialect.echo("[install] Target environment: ", native_env),
        dialect.remove_tree(env_dir),
        dialect.echo("[install] Creating environment with ", dialect.native_path(system_python), "..."),
        *dialect.if_failed(
            dialect.command([dialect.native_path(system_python), "-m", "venv", native_env]),
            failure("Failed to create the environment."),
        ),
        dialect.echo("[install] Updating pip, setuptools and wheel..."),
        dialect.quiet(dialect.command([runtime, "-m", "pip", "install", "-U", "pip", "setuptools", "wheel"])),
        dialect.echo("[install] Installing ", " ".join(tool.install_packages), ". This can take a while."),
        *dialect.if_failed(
            dialect.command([runtime, "-m", "pip", "install", *tool.install_packages]),
            failure("Failed to install dependencies."),
        ),
        dialect.echo("[install] Verifying install..."),
        *dialect.if_failed(
            dialect.command(verify_command(Path(runtime), tool)),
            failure("Verification failed."),
        ),
        dialect.echo("[ok] Environment ready."),
        dialect.assign("CODE", "0", raw=True),
    ]

    text = dialect.program(
        body,
        log_path=paths.setup_log,
        variables=[("CODE", "0")],
        epilogue=dialect.write_marker(paths.setup_done, paths.setup_error),
    )
    return RunnerScript(platform=platform, text=text, path=paths.setup_script)
