"""Structured run logging utilities.

Responsibilities:
- Emit concise, deterministic phase-level runtime logs through `loguru`.
- Emit chapter-level events (commit, failure, retry, cache hit, concat fallback).
- Never include secrets or raw provider payloads in log context.
"""

from __future__ import annotations

import sys
from typing import TextIO

from loguru import logger as _loguru_logger


def _sanitize_context_value(value: object) -> str:
    """Convert context values into stable, shell-safe tokens."""

    raw = str(value).strip()
    if not raw:
        return "none"
    return "".join(
        character if character.isalnum() or character in {"-", "_", ".", ":", "/"} else "_"
        for character in raw
    )


def _format_context(context: dict[str, object]) -> str:
    """Serialize context key/value pairs in deterministic key order."""

    if not context:
        return ""
    tokens = [
        f"{key}={_sanitize_context_value(context[key])}"
        for key in sorted(context.keys())
    ]
    return " " + " ".join(tokens)


class RunLogger:
    """Emit deterministic phase logs for CLI-observable pipeline activity."""

    def __init__(self, sink: TextIO | None = None, *, level: str = "INFO") -> None:
        """Initialize logger sink and configure deterministic formatting."""

        self._sink = sink or sys.stdout
        _loguru_logger.remove()
        _loguru_logger.add(self._sink, format="{message}", level=level, colorize=False)

    def _emit(self, level: str, event: str, stage: str, **context: object) -> None:
        line = f"[phase] level={level} stage={stage} event={event}{_format_context(context)}"
        _loguru_logger.log(level, line)

    def log_stage_start(self, stage: str) -> None:
        """Emit a stage-start runtime event."""

        self._emit("INFO", "start", stage)

    def log_stage_complete(self, stage: str) -> None:
        """Emit a stage-complete runtime event."""

        self._emit("INFO", "complete", stage)

    def log_stage_failure(self, stage: str, error_type: str) -> None:
        """Emit a stage-failure runtime event without sensitive payload details."""

        self._emit("ERROR", "failure", stage, error_type=error_type)

    def log_event(self, stage: str, event: str, **context: object) -> None:
        """Emit an informational event with extra context."""

        self._emit("INFO", event, stage, **context)

    def log_warning(self, stage: str, event: str, **context: object) -> None:
        """Emit a warning event with extra context."""

        self._emit("WARNING", event, stage, **context)

    def log_chapter_committed(
        self,
        *,
        book_id: str,
        index: int,
        audio_format: str,
        duration: float,
    ) -> None:
        self._emit(
            "INFO",
            "chapter_committed",
            "commit",
            book_id=book_id,
            index=index,
            format=audio_format,
            duration=f"{duration:.3f}",
        )

    def log_chapter_failed(self, *, book_id: str | None, index: int, error_type: str) -> None:
        self._emit(
            "WARNING",
            "chapter_failed",
            "generate",
            book_id=book_id or "none",
            index=index,
            error_type=error_type,
        )
