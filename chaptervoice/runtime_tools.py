"""Deterministic runtime executable resolution helpers.

Responsibilities:
- Honor an explicit `FFMPEG_BIN` override before any discovery.
- Resolve external executable paths with bundled-first precedence, then PATH.
- Support frozen app layouts (for example PyInstaller) and local development runs.
"""

from __future__ import annotations

import os
from pathlib import Path
import shutil
import sys

from .errors import TranscodeError
from .parsing import normalize_optional_string

FFMPEG_ENV_VAR = "FFMPEG_BIN"


def resolve_ffmpeg() -> str:
    """Resolve the `ffmpeg` executable used for transcoding and probing.

    Resolution order:
    1. `FFMPEG_BIN` (a path-like value must point to an existing file).
    2. Bundled app directories, then system `PATH` (see `resolve_executable`).
    """

    override = normalize_optional_string(os.environ.get(FFMPEG_ENV_VAR))
    if override is not None:
        looks_like_path = "/" in override or "\\" in override
        if looks_like_path and not Path(override).is_file():
            raise TranscodeError(f"{FFMPEG_ENV_VAR} points to a missing binary: {override}")
        return override
    return resolve_executable("ffmpeg")


def resolve_executable(command_name: str) -> str:
    """Resolve an executable with bundled-first precedence, then PATH.

    Falls back to the raw command name so the subprocess layer raises its
    native missing-binary error.
    """

    normalized = command_name.strip()
    if not normalized:
        return command_name

    for candidate in _bundled_candidates(normalized):
        if candidate.is_file():
            return str(candidate)

    resolved_path = shutil.which(normalized)
    if resolved_path is not None:
        return resolved_path

    return normalized


def _bundled_candidates(command_name: str) -> list[Path]:
    app_root = _app_root()
    candidates: list[Path] = []
    for name in _candidate_names(command_name):
        candidates.append(app_root / "bin" / name)
        candidates.append(app_root / name)
    return candidates


def _candidate_names(command_name: str) -> tuple[str, ...]:
    """Return command name variants including Windows `.exe` fallback."""

    if command_name.lower().endswith(".exe"):
        return (command_name,)
    return (command_name, f"{command_name}.exe")


def _app_root() -> Path:
    if getattr(sys, "frozen", False):
        return Path(sys.executable).resolve().parent
    return Path(__file__).resolve().parents[1]
