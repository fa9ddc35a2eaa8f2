from __future__ import annotations

from pathlib import Path

from stemrunner.app.sidechannel import last_log_line, last_log_lines, read_small_text, read_status_code, remove_quietly


def test_status_absent_means_still_running(tmp_path: Path) -> None:
    assert read_status_code(tmp_path / "job.status") is None


def test_status_content_is_parsed_with_whitespace(tmp_path: Path) -> None:
    status = tmp_path / "job.status"
    status.write_text("  13 \r\n", encoding="utf-8")
    assert read_status_code(status) == 13


def test_unreadable_status_content_counts_as_failure(tmp_path: Path) -> None:
    status = tmp_path / "job.status"
    status.write_text("garbage", encoding="utf-8")
    assert read_status_code(status) == 1


def test_log_tail_skips_blank_lines(tmp_path: Path) -> None:
    log = tmp_path / "job.log"
    log.write_text("[preflight] a\n\n[run] b\n   \n", encoding="utf-8")

    assert last_log_line(log) == "[run] b"
    assert last_log_lines(log, 5) == ["[preflight] a", "[run] b"]
    assert last_log_line(tmp_path / "missing.log") == ""


def test_read_small_text_only_reads_the_tail(tmp_path: Path) -> None:
    log = tmp_path / "big.log"
    log.write_text("x" * 100 + "END", encoding="utf-8")
    assert read_small_text(log, limit=3) == "END"


def test_remove_quietly_ignores_missing_files(tmp_path: Path) -> None:
    present = tmp_path / "a.sh"
    present.write_text("", encoding="utf-8")
    remove_quietly([present, tmp_path / "missing.sh"])
    assert not present.exists()
