"""Integration-test fixtures for deterministic environment and provider behavior."""

from __future__ import annotations

from pathlib import Path

import pytest

from chaptervoice.config import ConfigLoader


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Point storage at `tmp_path` and drop any ambient `CHAPTERVOICE_*` / `S3_*` values."""

    for env_key in ConfigLoader._ENV_FIELDS:
        monkeypatch.delenv(env_key, raising=False)
    monkeypatch.delenv("FFMPEG_BIN", raising=False)
    monkeypatch.setenv("CHAPTERVOICE_STORAGE_DIR", str(tmp_path / "cli-blobs"))
    monkeypatch.setenv("CHAPTERVOICE_DB_PATH", str(tmp_path / "cli-rows" / "books.sqlite3"))
