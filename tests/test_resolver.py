from __future__ import annotations

from pathlib import Path

from stemrunner.app.models import ToolConfig
from stemrunner.app.resolver import candidate_stem_dirs, collect_stems, find_stem_path, resolve_stems_dir


def _touch(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"")
    return path


def test_candidates_put_fixed_subfolder_first(tmp_path: Path) -> None:
    assert candidate_stem_dirs(tmp_path, ToolConfig(), "song") == [
        tmp_path / "htdemucs_6s" / "audio_process",
        tmp_path / "htdemucs_6s" / "song",
    ]


def test_resolver_prefers_layout_that_contains_first_stem(tmp_path: Path) -> None:
    (tmp_path / "htdemucs_6s" / "audio_process").mkdir(parents=True)
    _touch(tmp_path / "htdemucs_6s" / "song" / "vocals.wav")

    assert resolve_stems_dir(tmp_path, ToolConfig(), "song") == tmp_path / "htdemucs_6s" / "song"


def test_resolver_falls_back_to_first_candidate(tmp_path: Path) -> None:
    assert resolve_stems_dir(tmp_path, ToolConfig(), "song") == tmp_path / "htdemucs_6s" / "audio_process"


def test_find_stem_path_accepts_mp3_fallback(tmp_path: Path) -> None:
    mp3 = _touch(tmp_path / "vocals.mp3")
    assert find_stem_path(tmp_path, "vocals") == mp3

    wav = _touch(tmp_path / "vocals.wav")
    assert find_stem_path(tmp_path, "vocals") == wav


def test_collect_stems_keeps_configured_order(tmp_path: Path) -> None:
    _touch(tmp_path / "drums.wav")
    _touch(tmp_path / "vocals.wav")
    _touch(tmp_path / "piano.mp3")

    stems = collect_stems(tmp_path, ToolConfig().stems)
    assert list(stems) == ["vocals", "drums", "piano"]
    assert stems["piano"].suffix == ".mp3"


def test_candidates_never_leave_the_model_directory(tmp_path: Path) -> None:
    model_dir = tmp_path / "htdemucs_6s"
    for name in ("..", "../../work", "a/b", "..\\..\\work", "C:evil", "."):
        candidates = candidate_stem_dirs(tmp_path, ToolConfig(), name)
        assert candidates == [model_dir / "audio_process"]
