from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from .errors import LaunchFailed, ScriptWriteFailed
from .models import Platform, RunnerScript
from .quoting import escape_vbs_string, normalize_windows_path, quote_posix

logger = logging.getLogger(__name__)


def launcher_helper_text(script_path: Path) -> str:
    target = escape_vbs_string(normalize_windows_path(script_path))
    return "\r\n".join(
        [
            'Set shell = CreateObject("WScript.Shell")',
            f'shell.Run "cmd /C ""{target}""", 0, False',
            "",
        ]
    )


def detached_command(platform: Platform, script_path: Path, helper_path: Path | None = None) -> list[str]:
    if platform.is_windows:
        if helper_path is None:
            raise ValueError("Windows launches need a helper script path")
        return ["wscript", "//nologo", normalize_windows_path(helper_path)]
    return ["sh", "-c", f"sh {quote_posix(str(script_path))} >/dev/null 2>&1 &"]


class ProcessLauncher:
    def __init__(self, platform: Platform) -> None:
        self.platform = platform

    def write(self, path: Path, text: str, *, executable: bool = False) -> None:
        try:
            with path.open("w", encoding="utf-8", newline="") as handle:
                handle.write(text)
            if executable and not self.platform.is_windows:
                path.chmod(0o755)
        except OSError as exc:
            raise ScriptWriteFailed(f"Could not write {path.name}:", path=path) from exc

    def write_script(self, script: RunnerScript) -> None:
        self.write(script.path, script.text, executable=True)

    def launch(self, script_path: Path, helper_path: Path | None = None) -> None:
        if self.platform.is_windows and helper_path is not None:
            self.write(helper_path, launcher_helper_text(script_path))

        command = detached_command(self.platform, script_path, helper_path)
        logger.info("Launching %s", script_path.name)
        try:
            completed = subprocess.run(command, check=False, start_new_session=not self.platform.is_windows)
        except OSError as exc:
            raise LaunchFailed(f"Could not start {command[0]}:", path=script_path) from exc

        if completed.returncode != 0:
            raise LaunchFailed(f"Launch command exited with code {completed.returncode}:", path=script_path)
