from __future__ import annotations

from pathlib import Path

from stemrunner.app.launcher import ProcessLauncher
from stemrunner.app.models import Platform


class FakeClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class RecordingLauncher(ProcessLauncher):
    def __init__(self, platform: Platform) -> None:
        super().__init__(platform)
        self.launched: list[tuple[Path, Path | None]] = []

    def launch(self, script_path: Path, helper_path: Path | None = None) -> None:
        self.launched.append((script_path, helper_path))


def expand_batch_line(line: str, env: dict[str, str], *, delayed: bool) -> str:
    """Apply the two expansion passes cmd.exe runs on a batch file line.

    ``%NAME%`` and ``%%`` are expanded first. With delayed expansion on and
    a ``!`` left in the line, ``^`` escapes the next character and
    ``!NAME!`` is expanded. Undefined names and lone markers vanish.
    """
    text = _expand_markers(line, env, "%", escapes=False)
    if delayed and "!" in text:
        text = _expand_markers(text, env, "!", escapes=True)
    return text


def _expand_markers(text: str, env: dict[str, str], marker: str, *, escapes: bool) -> str:
    out = []
    index = 0
    while index < len(text):
        char = text[index]
        if escapes and char == "^":
            out.append(text[index + 1 : index + 2])
            index += 2
            continue
        if char == marker:
            if marker == "%" and text[index + 1 : index + 2] == "%":
                out.append("%")
                index += 2
                continue
            end = text.find(marker, index + 1)
            if end == -1:
                index += 1
                continue
            out.append(env.get(text[index + 1 : end], ""))
            index = end + 1
            continue
        out.append(char)
        index += 1
    return "".join(out)


def hoisted_batch_variables(lines: list[str]) -> dict[str, str]:
    """Evaluate the ``set "NAME=value"`` lines run before delayed expansion is enabled."""
    env: dict[str, str] = {}
    for line in lines:
        if line == "setlocal EnableDelayedExpansion":
            break
        if line.startswith('set "') and line.endswith('"'):
            name, value = expand_batch_line(line, env, delayed=False)[len('set "') : -1].split("=", 1)
            env[name] = value
    return env
