from __future__ import annotations

import os
import stat
from pathlib import Path

import pytest

from stemrunner.app.environment import (
    VERIFY_SENTINEL,
    build_setup_script,
    environment_python,
    find_system_python,
    system_python_candidates,
    verify_environment,
)
from stemrunner.app.jobs import job_paths
from stemrunner.app.models import Platform, ToolConfig

posix_only = pytest.mark.skipif(os.name == "nt", reason="fake runtimes are shell scripts")


def _fake_runtime(env_dir: Path, body: str) -> Path:
    runtime = environment_python(env_dir, Platform.LINUX)
    runtime.parent.mkdir(parents=True)
    runtime.write_text(f"#!/bin/sh\n{body}\n", encoding="utf-8")
    runtime.chmod(runtime.stat().st_mode | stat.S_IXUSR)
    return runtime


def test_environment_python_location() -> None:
    assert environment_python(Path("/env"), Platform.MACOS) == Path("/env/bin/python3")
    assert environment_python(Path("/env"), Platform.WINDOWS) == Path("/env/Scripts/python.exe")


def test_directory_alone_is_not_a_verified_environment(tmp_path: Path) -> None:
    (tmp_path / "env" / "bin").mkdir(parents=True)
    environment = verify_environment(tmp_path / "env", Platform.LINUX, ToolConfig())
    assert environment.verified is False


@posix_only
def test_environment_is_verified_by_import_sentinel(tmp_path: Path) -> None:
    _fake_runtime(tmp_path / "env", f"echo {VERIFY_SENTINEL}")
    environment = verify_environment(tmp_path / "env", Platform.LINUX, ToolConfig())
    assert environment.verified is True


@posix_only
def test_environment_without_sentinel_is_rejected(tmp_path: Path) -> None:
    _fake_runtime(tmp_path / "env", "echo 'ModuleNotFoundError: demucs' >&2\nexit 1")
    environment = verify_environment(tmp_path / "env", Platform.LINUX, ToolConfig())
    assert environment.verified is False


def test_system_python_candidates_are_ordered() -> None:
    assert [str(path) for path in system_python_candidates(Platform.MACOS)] == [
        "/opt/homebrew/bin/python3",
        "/usr/local/bin/python3",
        "/usr/bin/python3",
    ]


def test_find_system_python_on_windows_uses_known_locations(tmp_path: Path) -> None:
    python = tmp_path / "Programs" / "Python" / "Python311" / "python.exe"
    python.parent.mkdir(parents=True)
    python.write_bytes(b"")

    assert find_system_python(Platform.WINDOWS, {"LOCALAPPDATA": str(tmp_path)}) == python
    assert find_system_python(Platform.WINDOWS, {}) is None


def test_posix_setup_script_recreates_environment_and_writes_markers(tmp_path: Path) -> None:
    paths = job_paths(tmp_path, "1_1000", Platform.MACOS)
    script = build_setup_script(Path("/opt/homebrew/bin/python3"), tmp_path / "env", paths, ToolConfig(), Platform.MACOS)
    text = script.text

    assert script.path == paths.setup_script
    order = [
        f"rm -rf '{tmp_path / 'env'}'",
        f"/opt/homebrew/bin/python3 -m venv {tmp_path / 'env'}",
        "-m pip install -U pip setuptools wheel",
        "-m pip install demucs soundfile==0.12.1 librosa 'numpy<2' scipy",
        f"print('\\''{VERIFY_SENTINEL}'\\'')",
        f"run > '{paths.setup_log}' 2>&1",
        f": > '{paths.setup_done}'",
        f": > '{paths.setup_error}'",
    ]
    positions = [text.index(marker) for marker in order]
    assert positions == sorted(positions)


def test_windows_setup_script_uses_scripts_directory(tmp_path: Path) -> None:
    paths = job_paths(Path("C:/AI"), "1_1000", Platform.WINDOWS)
    script = build_setup_script(
        Path("C:/Python311/python.exe"), Path("C:/Users/me/.stemrunner_env"), paths, ToolConfig(), Platform.WINDOWS
    )

    assert "C:\\Python311\\python.exe -m venv C:\\Users\\me\\.stemrunner_env" in script.text
    assert "C:\\Users\\me\\.stemrunner_env\\Scripts\\python.exe -m pip install" in script.text
    assert 'type nul > "C:\\AI\\demucs_1_1000.setup_done.marker"' in script.text
