from __future__ import annotations

from pathlib import Path

from .models import ToolConfig
from .quoting import is_path_component

STEM_SUFFIXES = (".wav", ".mp3")


def find_stem_path(stems_dir: Path, stem: str) -> Path | None:
    for suffix in STEM_SUFFIXES:
        candidate = stems_dir / f"{stem}{suffix}"
        if candidate.is_file():
            return candidate
    return None


def candidate_stem_dirs(work_dir: Path, tool: ToolConfig, display_name: str) -> list[Path]:
    model_dir = work_dir / tool.model_name
    candidates = [model_dir / tool.output_subfolder]
    if is_path_component(display_name) and display_name != tool.output_subfolder:
        candidates.append(model_dir / display_name)
    return candidates


def resolve_stems_dir(work_dir: Path, tool: ToolConfig, display_name: str) -> Path:
    candidates = candidate_stem_dirs(work_dir, tool, display_name)
    for candidate in candidates:
        if find_stem_path(candidate, tool.first_stem) is not None:
            return candidate
    return candidates[0]


def collect_stems(stems_dir: Path, stems: tuple[str, ...]) -> dict[str, Path]:
    collected: dict[str, Path] = {}
    for stem in stems:
        path = find_stem_path(stems_dir, stem)
        if path is not None:
            collected[stem] = path
    return collected
