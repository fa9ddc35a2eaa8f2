from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from .models import Platform
from .quoting import is_safe_token, normalize_windows_path, quote_cmd, quote_posix

POSIX_EXTRA_PATH = ("/usr/local/bin", "/opt/homebrew/bin", "/usr/bin", "/bin")
CMD_SPECIAL_CHARS = set(' \t"&|<>^()%!,;=')
# Values holding these are hoisted into variables set before delayed expansion
# is enabled, then referenced as !NAME! so their text is never re-parsed.
CMD_EXPANSION_CHARS = set("%!^")


@dataclass(frozen=True)
class Var:
    name: str


Fragment = str | Var


class ShellDialect:
    """Rendering rules for one target shell.

    The script builder only speaks in terms of these operations, so the
    generated programs for every platform share one step sequence and differ
    only in syntax.
    """

    name = ""
    suffix = ""
    newline = "\n"
    indent = "  "

    def quote(self, value: str) -> str:
        raise NotImplementedError

    def native_path(self, value: str | Path) -> str:
        return str(value)

    def path(self, value: str | Path) -> str:
        return self.quote(self.native_path(value))

    def token(self, value: str) -> str:
        raise NotImplementedError

    def command(self, tokens: Sequence[str]) -> str:
        return " ".join(self.token(token) for token in tokens)

    def ref(self, name: str) -> str:
        raise NotImplementedError

    def runtime(self) -> str:
        raise NotImplementedError

    def echo(self, *parts: Fragment) -> str:
        raise NotImplementedError

    def assign(self, name: str, value: str, *, raw: bool = False) -> str:
        raise NotImplementedError

    def assign_runtime(self, tokens: Sequence[str]) -> str:
        raise NotImplementedError

    def quiet(self, command: str) -> str:
        raise NotImplementedError

    def leave(self) -> str:
        raise NotImplementedError

    def block(self, lines: Sequence[str]) -> list[str]:
        return [f"{self.indent}{line}" if line else line for line in lines]

    def if_failed(self, command: str, body: Sequence[str], *, capture: str | None = None) -> list[str]:
        raise NotImplementedError

    def if_succeeded(self, command: str, body: Sequence[str]) -> list[str]:
        raise NotImplementedError

    def if_unset(self, name: str, body: Sequence[str]) -> list[str]:
        raise NotImplementedError

    def fail(self, code: int, *message: Fragment) -> list[str]:
        return [self.echo("[error] ", *message), self.assign("CODE", str(code), raw=True), self.leave()]

    def remove_tree(self, path: str | Path) -> str:
        raise NotImplementedError

    def touch(self, path: str | Path) -> str:
        raise NotImplementedError

    def command_available(self, name: str) -> str:
        raise NotImplementedError

    def write_status(self, status_path: str | Path, temp_path: str | Path) -> list[str]:
        raise NotImplementedError

    def write_marker(self, done_path: str | Path, error_path: str | Path) -> list[str]:
        raise NotImplementedError

    def program(
        self,
        body: Sequence[str],
        *,
        log_path: str | Path,
        variables: Sequence[tuple[str, str]],
        epilogue: Sequence[str],
    ) -> str:
        raise NotImplementedError

    def render(self, lines: Sequence[str]) -> str:
        return self.newline.join(lines) + self.newline


class CmdDialect(ShellDialect):
    name = "cmd"
    suffix = ".cmd"
    newline = "\r\n"

    def __init__(self) -> None:
        self.literals: dict[str, str] = {}

    def literal(self, text: str) -> str:
        if text not in self.literals:
            self.literals[text] = f"ARG{len(self.literals) + 1}"
        return self.literals[text]

    def quote(self, value: str) -> str:
        if not set(value) & CMD_EXPANSION_CHARS:
            return quote_cmd(value)
        escaped = value.replace('"', '""')
        return '"' + self.ref(self.literal(escaped)) + '"'

    def native_path(self, value: str | Path) -> str:
        return normalize_windows_path(value)

    def token(self, value: str) -> str:
        if value and not (set(value) & CMD_SPECIAL_CHARS):
            return value
        return self.quote(value)

    def ref(self, name: str) -> str:
        return f"!{name}!"

    def runtime(self) -> str:
        return self.ref("PY_CMD")

    def echo(self, *parts: Fragment) -> str:
        text = "".join(self.ref(part.name) if isinstance(part, Var) else self._echo_text(part) for part in parts)
        return f"echo {text}"

    def _echo_text(self, text: str) -> str:
        if "!" in text or "^" in text:
            return self.ref(self.literal(text))
        return _escape_cmd_echo(text)

    def assign(self, name: str, value: str, *, raw: bool = False) -> str:
        return f'set "{name}={value}"'

    def assign_runtime(self, tokens: Sequence[str]) -> str:
        return self.assign("PY_CMD", self.command(tokens), raw=True)

    def quiet(self, command: str) -> str:
        return f"{command} > nul 2>&1"

    def leave(self) -> str:
        return "goto :eof"

    def if_failed(self, command: str, body: Sequence[str], *, capture: str | None = None) -> list[str]:
        inner = [self.assign(capture, "!ERRORLEVEL!", raw=True)] if capture else []
        return [command, "if !ERRORLEVEL! neq 0 (", *self.block([*inner, *body]), ")"]

    def if_succeeded(self, command: str, body: Sequence[str]) -> list[str]:
        return [command, "if !ERRORLEVEL! equ 0 (", *self.block(body), ")"]

    def if_unset(self, name: str, body: Sequence[str]) -> list[str]:
        return [f"if not defined {name} (", *self.block(body), ")"]

    def remove_tree(self, path: str | Path) -> str:
        return self.quiet(f"rmdir /S /Q {self.path(path)}")

    def touch(self, path: str | Path) -> str:
        return f"type nul > {self.path(path)}"

    def command_available(self, name: str) -> str:
        return f"{self.token(name)} -version"

    def write_status(self, status_path: str | Path, temp_path: str | Path) -> list[str]:
        return [
            f"> {self.path(temp_path)} echo !CODE!",
            f"move /Y {self.path(temp_path)} {self.path(status_path)} > nul",
        ]

    def write_marker(self, done_path: str | Path, error_path: str | Path) -> list[str]:
        return [
            "if !CODE! equ 0 (",
            *self.block([self.touch(done_path)]),
            ") else (",
            *self.block([self.touch(error_path)]),
            ")",
        ]

    def program(
        self,
        body: Sequence[str],
        *,
        log_path: str | Path,
        variables: Sequence[tuple[str, str]],
        epilogue: Sequence[str],
    ) -> str:
        log = self.path(log_path)
        hoisted: list[str] = []
        if self.literals:
            hoisted = [
                "setlocal DisableDelayedExpansion",
                *(self.assign(name, text.replace("%", "%%")) for text, name in self.literals.items()),
            ]
        lines = [
            "@echo off",
            *hoisted,
            "setlocal EnableDelayedExpansion",
            "chcp 65001 > nul",
            self.assign("PYTHONUTF8", "1"),
            *(self.assign(name, value) for name, value in variables),
            f"call :run > {log} 2>&1",
            *epilogue,
            "exit /b !CODE!",
            "",
            ":run",
            *body,
            "goto :eof",
        ]
        return self.render(lines)


class PosixDialect(ShellDialect):
    name = "sh"
    suffix = ".sh"
    newline = "\n"

    def quote(self, value: str) -> str:
        return quote_posix(value)

    def token(self, value: str) -> str:
        if is_safe_token(value):
            return value
        return quote_posix(value)

    def ref(self, name: str) -> str:
        return f"${name}"

    def runtime(self) -> str:
        return '"$PY_CMD"'

    def echo(self, *parts: Fragment) -> str:
        text = "".join("${" + part.name + "}" if isinstance(part, Var) else _escape_double_quoted(part) for part in parts)
        return f"printf '%s\\n' \"{text}\""

    def assign(self, name: str, value: str, *, raw: bool = False) -> str:
        if raw:
            return f"{name}={value}"
        rendered = self.token(value) if value else '""'
        return f"{name}={rendered}"

    def assign_runtime(self, tokens: Sequence[str]) -> str:
        if len(tokens) != 1:
            raise ValueError(f"POSIX runtime candidates must be a single command, got {list(tokens)!r}")
        return self.assign("PY_CMD", tokens[0])

    def quiet(self, command: str) -> str:
        return f"{command} >/dev/null 2>&1"

    def leave(self) -> str:
        return "return"

    def if_failed(self, command: str, body: Sequence[str], *, capture: str | None = None) -> list[str]:
        if capture:
            return [command, f"{capture}=$?", f'if [ "${capture}" -ne 0 ]; then', *self.block(body), "fi"]
        return [f"if ! {command}; then", *self.block(body), "fi"]

    def if_succeeded(self, command: str, body: Sequence[str]) -> list[str]:
        return [f"if {command}; then", *self.block(body), "fi"]

    def if_unset(self, name: str, body: Sequence[str]) -> list[str]:
        return [f'if [ -z "${name}" ]; then', *self.block(body), "fi"]

    def remove_tree(self, path: str | Path) -> str:
        return f"rm -rf {self.path(path)}"

    def touch(self, path: str | Path) -> str:
        return f": > {self.path(path)}"

    def command_available(self, name: str) -> str:
        return f"command -v {self.token(name)}"

    def write_status(self, status_path: str | Path, temp_path: str | Path) -> list[str]:
        return [
            f"printf '%s\\n' \"$CODE\" > {self.path(temp_path)}",
            f"mv -f {self.path(temp_path)} {self.path(status_path)}",
        ]

    def write_marker(self, done_path: str | Path, error_path: str | Path) -> list[str]:
        return [
            'if [ "$CODE" -eq 0 ]; then',
            *self.block([self.touch(done_path)]),
            "else",
            *self.block([self.touch(error_path)]),
            "fi",
        ]

    def program(
        self,
        body: Sequence[str],
        *,
        log_path: str | Path,
        variables: Sequence[tuple[str, str]],
        epilogue: Sequence[str],
    ) -> str:
        lines = [
            "#!/bin/sh",
            'PATH="$PATH:' + ":".join(POSIX_EXTRA_PATH) + '"',
            "export PATH",
            "PYTHONUTF8=1",
            "export PYTHONUTF8",
            *(self.assign(name, value) for name, value in variables),
            "run() {",
            *self.block(body),
            "}",
            f"run > {self.path(log_path)} 2>&1",
            *epilogue,
            'exit "$CODE"',
        ]
        return self.render(lines)


def _escape_cmd_echo(text: str) -> str:
    escaped = text.replace("%", "%%")
    for char in "^&|<>()":
        escaped = escaped.replace(char, f"^{char}")
    return escaped


def _escape_double_quoted(text: str) -> str:
    for char in ("\\", '"', "$", "`"):
        text = text.replace(char, f"\\{char}")
    return text


def dialect_for(platform: Platform) -> ShellDialect:
    if platform.is_windows:
        return CmdDialect()
    return PosixDialect()
