from __future__ import annotations

from pathlib import Path
from typing import Sequence

from .errors import EXIT_CONVERTER_MISSING, EXIT_DEPENDENCIES_MISSING, EXIT_RUNTIME_NOT_FOUND
from .jobs import JobPaths
from .models import Job, Platform, RunnerScript, ToolConfig
from .quoting import python_literal
from .resolver import candidate_stem_dirs
from .shells import ShellDialect, Var, dialect_for

WINDOWS_RUNTIME_CANDIDATES: tuple[tuple[str, ...], ...] = (("python3",), ("py", "-3"), ("python",), ("py",))
POSIX_RUNTIME_CANDIDATES: tuple[tuple[str, ...], ...] = (("python3",), ("python",))

FALLBACK_NOTICE = "MP3 stem fallback is active"
FALLBACK_LOG_LINE = f"[preflight] WAV export probe failed. {FALLBACK_NOTICE}."
ANALYSIS_REFRESH_CHECK = (
    "import librosa; v=librosa.__version__.split('.'); assert int(v[0]) > 0 or int(v[1]) >= 10"
)


def runtime_candidates(platform: Platform) -> tuple[tuple[str, ...], ...]:
    if platform.is_windows:
        return WINDOWS_RUNTIME_CANDIDATES
    return POSIX_RUNTIME_CANDIDATES


def version_check(tool: ToolConfig) -> str:
    major, minor = tool.min_python
    return f"import sys; sys.exit(0 if sys.version_info[:2] >= ({major}, {minor}) else 1)"


def dependency_check(tool: ToolConfig) -> str:
    return "import " + ", ".join(tool.dependency_modules)


def write_probe(probe_path: str) -> str:
    return (
        "import os, torch, torchaudio as ta; "
        f"p={python_literal(probe_path)}; "
        "x=torch.zeros(2, 512); ta.save(p, x, 44100); os.remove(p)"
    )


def output_template(tool: ToolConfig, platform: Platform) -> str:
    separator = "\\" if platform.is_windows else "/"
    return f"{tool.output_subfolder}{separator}{{stem}}.{{ext}}"


def python_call(dialect: ShellDialect, args: Sequence[str]) -> str:
    return f"{dialect.runtime()} {dialect.command(args)}"


def _runtime_discovery(dialect: ShellDialect, tool: ToolConfig, candidates: Sequence[Sequence[str]]) -> list[str]:
    lines: list[str] = [dialect.echo("[preflight] Looking for Python ", f"{tool.min_python[0]}.{tool.min_python[1]}+...")]
    for candidate in candidates:
        probe = dialect.quiet(dialect.command([*candidate, "-c", version_check(tool)]))
        lines.extend(dialect.if_unset("PY_CMD", dialect.if_succeeded(probe, [dialect.assign_runtime(candidate)])))
    lines.extend(
        dialect.if_unset(
            "PY_CMD",
            dialect.fail(
                EXIT_RUNTIME_NOT_FOUND,
                f"No working Python {tool.min_python[0]}.{tool.min_python[1]}+ command was found in PATH.",
            ),
        )
    )
    lines.append(dialect.echo("[preflight] Using Python: ", Var("PY_CMD")))
    return lines


def _dependency_check(dialect: ShellDialect, tool: ToolConfig) -> list[str]:
    check = dialect.quiet(python_call(dialect, ["-c", dependency_check(tool)]))
    if not tool.auto_install:
        return dialect.if_failed(check, dialect.fail(EXIT_DEPENDENCIES_MISSING, "Demucs dependencies are missing."))

    install = python_call(dialect, ["-m", "pip", "install", *tool.install_packages])
    recovery = [
        dialect.echo("[install] Demucs dependencies missing. Installing: ", " ".join(tool.install_packages)),
        *dialect.if_failed(install, dialect.fail(EXIT_DEPENDENCIES_MISSING, "Dependency install failed.")),
        *dialect.if_failed(check, dialect.fail(EXIT_DEPENDENCIES_MISSING, "Dependencies still missing after install.")),
        dialect.echo("[install] Dependencies installed."),
    ]
    return dialect.if_failed(check, recovery)


def _analysis_refresh(dialect: ShellDialect, tool: ToolConfig) -> list[str]:
    if not (tool.auto_install and tool.refresh_analysis_libraries):
        return []
    check = dialect.quiet(python_call(dialect, ["-c", ANALYSIS_REFRESH_CHECK]))
    upgrade = python_call(dialect, ["-m", "pip", "install", "--upgrade", *tool.analysis_packages])
    return dialect.if_failed(
        check,
        [
            dialect.echo("[install] Refreshing analysis libraries..."),
            *dialect.if_failed(upgrade, [dialect.echo("[info] Analysis library refresh failed; continuing.")]),
        ],
    )


def _converter_check(dialect: ShellDialect, tool: ToolConfig) -> list[str]:
    return dialect.if_failed(
        dialect.quiet(dialect.command_available(tool.converter)),
        dialect.fail(EXIT_CONVERTER_MISSING, f"{tool.converter} was not found in PATH."),
    )


def _workspace_reset(dialect: ShellDialect, job: Job, tool: ToolConfig) -> list[str]:
    lines = [dialect.echo("[preflight] Clearing previous output...")]
    lines.extend(dialect.remove_tree(path) for path in candidate_stem_dirs(job.work_dir, tool, job.display_name))
    return lines


def _capability_probe(dialect: ShellDialect, tool: ToolConfig, paths: JobPaths) -> list[str]:
    probe = dialect.quiet(python_call(dialect, ["-c", write_probe(dialect.native_path(paths.write_probe))]))
    return dialect.if_failed(
        probe,
        [
            dialect.assign("EXTRA_ARGS", " ".join(tool.fallback_args)),
            dialect.echo(FALLBACK_LOG_LINE),
        ],
    )


def _analysis_step(dialect: ShellDialect, paths: JobPaths) -> list[str]:
    return [
        dialect.echo("[analysis] Detecting BPM, key and tuning..."),
        *dialect.if_failed(
            f"{dialect.runtime()} {dialect.path(paths.analysis_program)}",
            [dialect.echo("[analysis] Analysis step failed; continuing without metadata.")],
        ),
    ]


def _separation(dialect: ShellDialect, job: Job, tool: ToolConfig, platform: Platform) -> list[str]:
    args = dialect.command(["-m", tool.separation_module, "-n", tool.model_name, "--filename", output_template(tool, platform)])
    invocation = (
        f"{dialect.runtime()} {args} {dialect.ref('EXTRA_ARGS')} "
        f"{dialect.path(job.input_path)} -o {dialect.path(job.work_dir)}"
    )
    stems_dir = candidate_stem_dirs(job.work_dir, tool, job.display_name)[0]
    return [
        dialect.echo("[run] Separating stems with ", tool.model_name, "..."),
        *dialect.if_failed(
            invocation,
            [
                dialect.echo("[error] Demucs exited with code ", Var("RET")),
                dialect.assign("CODE", dialect.ref("RET"), raw=True),
                dialect.leave(),
            ],
            capture="RET",
        ),
        dialect.echo("[ok] Stems written to ", dialect.native_path(stems_dir)),
        dialect.assign("CODE", "0", raw=True),
    ]


def build_runner_script(
    job: Job,
    paths: JobPaths,
    tool: ToolConfig,
    platform: Platform,
    *,
    runtime: str | Path | None = None,
) -> RunnerScript:
    """Render the detached runner program for one job.

    The text depends only on its arguments. When ``runtime`` is given (a
    bootstrapped environment) it is the sole runtime candidate.
    """
    dialect = dialect_for(platform)
    if runtime is not None:
        candidates: Sequence[Sequence[str]] = ((dialect.native_path(runtime),),)
    else:
        candidates = runtime_candidates(platform)

    body = [
        dialect.echo("[preflight] Job ", job.run_id, ": ", dialect.native_path(job.input_path)),
        *_runtime_discovery(dialect, tool, candidates),
        *_dependency_check(dialect, tool),
        *_analysis_refresh(dialect, tool),
        *_converter_check(dialect, tool),
        *_workspace_reset(dialect, job, tool),
        *_capability_probe(dialect, tool, paths),
        *_analysis_step(dialect, paths),
        *_separation(dialect, job, tool, platform),
    ]

    text = dialect.program(
        body,
        log_path=paths.log,
        variables=[("CODE", "0"), ("PY_CMD", ""), ("EXTRA_ARGS", "")],
        epilogue=dialect.write_status(paths.status, paths.status_tmp),
    )
    return RunnerScript(platform=platform, text=text, path=paths.runner)
