"""Tests for transcript discovery and path sanitization."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from behavior_scorer.discovery import ScanOptions, iter_session_files
from behavior_scorer.errors import InvalidInputError
from behavior_scorer.validation import (
    ensure_within,
    is_valid_session_id,
    sanitize_path,
    session_id_from_filename,
)


def test_iter_session_files_respects_depth_and_extensions(tmp_path: Path) -> None:
    _write(tmp_path / "b.md")
    _write(tmp_path / "a.JSON")
    _write(tmp_path / "skip.txt")
    _write(tmp_path / "day1" / "c.md")
    _write(tmp_path / "day1" / "deeper" / "d.md")

    found = [path.relative_to(tmp_path).as_posix() for path in iter_session_files(tmp_path)]
    assert found == ["a.JSON", "b.md", "day1/c.md"]

    top_only = iter_session_files(tmp_path, ScanOptions(max_depth=1))
    assert [path.name for path in top_only] == ["a.JSON", "b.md"]


def test_iter_session_files_skips_large_files(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    _write(tmp_path / "small.md", "ok")
    _write(tmp_path / "large.md", "x" * 64)

    with caplog.at_level(logging.WARNING, logger="behavior_scorer"):
        found = list(iter_session_files(tmp_path, ScanOptions(max_file_bytes=16)))

    assert [path.name for path in found] == ["small.md"]
    assert "Skipping large file" in caplog.text


def test_scan_options_validation() -> None:
    with pytest.raises(ValueError):
        ScanOptions(max_depth=0)
    with pytest.raises(ValueError):
        ScanOptions(max_file_bytes=0)


def test_sanitize_path_rejects_traversal_and_absolute(tmp_path: Path) -> None:
    (tmp_path / "sessions").mkdir()

    assert sanitize_path(tmp_path, "sessions") == (tmp_path / "sessions").resolve()
    assert sanitize_path(tmp_path, "../etc") is None
    assert sanitize_path(tmp_path, "~/secrets") is None
    assert sanitize_path(tmp_path, "/etc/passwd") is None
    assert sanitize_path(tmp_path, "  ") is None


def test_ensure_within_rejects_symlink_escape(tmp_path: Path) -> None:
    base = tmp_path / "base"
    outside = tmp_path / "outside"
    base.mkdir()
    outside.mkdir()
    (base / "link").symlink_to(outside, target_is_directory=True)

    assert ensure_within(base, base) == base.resolve()
    with pytest.raises(InvalidInputError, match="outside allowed base path"):
        ensure_within(base, base / "link")
    with pytest.raises(InvalidInputError):
        ensure_within(base, base / "missing")


def test_session_id_helpers() -> None:
    assert is_valid_session_id("abc-123_XYZ")
    assert not is_valid_session_id("a/b")
    assert session_id_from_filename("2026-01-02 run.md") == "2026-01-02_run"
    assert session_id_from_filename("a.b.c.json") == "a_b_c"
    assert len(session_id_from_filename("x" * 300 + ".md")) == 256


def _write(path: Path, content: str = "OBJECTIVE: test") -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
