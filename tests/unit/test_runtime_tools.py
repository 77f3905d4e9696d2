"""Unit tests for external executable resolution."""

from __future__ import annotations

from pathlib import Path

import pytest

from chaptervoice import runtime_tools
from chaptervoice.errors import TranscodeError


def test_resolve_ffmpeg_prefers_env_override(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    """`FFMPEG_BIN` pointing at an existing file wins over discovery."""

    binary = tmp_path / "ffmpeg-custom"
    binary.write_text("", encoding="utf-8")
    monkeypatch.setenv("FFMPEG_BIN", str(binary))

    assert runtime_tools.resolve_ffmpeg() == str(binary)


def test_resolve_ffmpeg_rejects_missing_override_path(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.setenv("FFMPEG_BIN", str(tmp_path / "missing" / "ffmpeg"))

    with pytest.raises(TranscodeError, match="FFMPEG_BIN"):
        runtime_tools.resolve_ffmpeg()


def test_resolve_ffmpeg_accepts_bare_command_override(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FFMPEG_BIN", "ffmpeg7")

    assert runtime_tools.resolve_ffmpeg() == "ffmpeg7"


def test_resolve_executable_prefers_bundled_then_path(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    """Bundled `bin/` binaries win over PATH; unknown commands fall back to their name."""

    bundled = tmp_path / "bin" / "pdftotext"
    bundled.parent.mkdir()
    bundled.write_text("", encoding="utf-8")
    monkeypatch.setattr(runtime_tools, "_app_root", lambda: tmp_path)
    monkeypatch.setattr(runtime_tools.shutil, "which", lambda name: f"/usr/bin/{name}")

    assert runtime_tools.resolve_executable("pdftotext") == str(bundled)
    assert runtime_tools.resolve_executable("pdfinfo") == "/usr/bin/pdfinfo"

    monkeypatch.setattr(runtime_tools.shutil, "which", lambda name: None)
    assert runtime_tools.resolve_executable("pdfinfo") == "pdfinfo"
