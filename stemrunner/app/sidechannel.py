from __future__ import annotations

import os
import re
from pathlib import Path

TAIL_BYTES = 16_384
STATUS_PATTERN = re.compile(r"-?\d+")
DEFAULT_STATUS_CODE = 1


def read_small_text(path: Path, limit: int = TAIL_BYTES) -> str | None:
    try:
        with path.open("rb") as handle:
            size = handle.seek(0, os.SEEK_END)
            handle.seek(max(0, size - limit))
            data = handle.read()
    except OSError:
        return None
    return data.decode("utf-8", errors="replace")


def read_status_code(path: Path) -> int | None:
    if not path.exists():
        return None

    text = read_small_text(path)
    if text is None:
        return None

    match = STATUS_PATTERN.search(text)
    if match is None:
        return DEFAULT_STATUS_CODE
    return int(match.group(0))


def last_log_lines(path: Path, count: int) -> list[str]:
    text = read_small_text(path)
    if not text:
        return []
    lines = [line.rstrip() for line in text.splitlines() if line.strip()]
    return lines[-count:] if count > 0 else []


def last_log_line(path: Path) -> str:
    lines = last_log_lines(path, 1)
    return lines[0] if lines else ""


def marker_exists(path: Path | None) -> bool:
    return path is not None and path.exists()


def remove_quietly(paths: list[Path]) -> None:
    for path in paths:
        try:
            path.unlink(missing_ok=True)
        except OSError:
            continue
