from __future__ import annotations

import re
from pathlib import Path, PureWindowsPath

_SAFE_TOKEN = re.compile(r"[A-Za-z0-9_@%+=:,./-]+")


def quote_cmd(value: str) -> str:
    value = str(value)
    return '"' + value.replace('"', '""') + '"'


def quote_posix(value: str) -> str:
    value = str(value)
    return "'" + value.replace("'", "'\\''") + "'"


def escape_python_single_quoted(value: str) -> str:
    value = str(value)
    value = value.replace("\\", "\\\\")
    value = value.replace("\n", "\\n").replace("\r", "\\r")
    return value.replace("'", "\\'")


def python_literal(value: str | Path) -> str:
    return "'" + escape_python_single_quoted(str(value)) + "'"


def escape_vbs_string(value: str) -> str:
    return str(value).replace('"', '""')


def is_safe_token(value: str) -> bool:
    return bool(_SAFE_TOKEN.fullmatch(value))


def normalize_windows_path(path: str | Path) -> str:
    return str(path).replace("/", "\\")


def display_name_for(path: str | Path) -> str:
    return PureWindowsPath(str(path)).stem or "Audio"


def is_path_component(name: str) -> bool:
    return bool(name.strip(". ")) and not any(char in name for char in "/\\:\0")


def safe_display_name(name: str | None, fallback: str | Path) -> str:
    for candidate in (name, display_name_for(fallback)):
        if candidate:
            component = PureWindowsPath(str(candidate).replace("\0", "")).name.strip()
            if is_path_component(component):
                return component
    return "Audio"
