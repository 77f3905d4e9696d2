"""Stage telemetry helper methods for chaptervoice pipeline services.

Responsibilities:
- Emit stage start/complete/failure events.
- Wrap stage actions with consistent telemetry hooks.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TypeVar

from ..errors import GenerationCancelledError
from ..telemetry.logger import RunLogger

_StageResult = TypeVar("_StageResult")


class PipelineTelemetryMixin:
    """Provide stage-telemetry helper methods."""

    _run_logger: RunLogger | None

    def _on_stage_start(self, stage_name: str) -> None:
        if self._run_logger is not None:
            self._run_logger.log_stage_start(stage_name)

    def _on_stage_complete(self, stage_name: str) -> None:
        if self._run_logger is not None:
            self._run_logger.log_stage_complete(stage_name)

    def _on_stage_failure(self, stage_name: str, exc: Exception) -> None:
        """Emit a failure event; cancellation is reported as its own event."""

        if self._run_logger is None:
            return
        if isinstance(exc, GenerationCancelledError):
            self._run_logger.log_event(stage_name, "cancelled")
            return
        self._run_logger.log_stage_failure(stage_name, type(exc).__name__)

    def _log_event(self, stage_name: str, event: str, **context: object) -> None:
        if self._run_logger is not None:
            self._run_logger.log_event(stage_name, event, **context)

    def _log_warning(self, stage_name: str, event: str, **context: object) -> None:
        if self._run_logger is not None:
            self._run_logger.log_warning(stage_name, event, **context)

    def _run_stage(
        self,
        stage_name: str,
        action: Callable[[], _StageResult],
    ) -> _StageResult:
        """Run one named stage and emit start/complete/failure telemetry events."""

        self._on_stage_start(stage_name)
        try:
            result = action()
        except Exception as exc:
            self._on_stage_failure(stage_name, exc)
            raise
        self._on_stage_complete(stage_name)
        return result
