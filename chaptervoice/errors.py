"""Domain exceptions for audiobook storage, generation, and CLI diagnostics.

Responsibilities:
- Give every failure category a distinct type so callers can branch on it.
- Keep the stage-scoped CLI error used for user-facing diagnostics.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models.datatypes import GenerationSettings


class PipelineStageError(RuntimeError):
    """Raised when a specific pipeline stage fails."""

    def __init__(
        self,
        *,
        stage: str,
        detail: str,
        hint: str | None = None,
    ) -> None:
        """Initialize a stage-scoped pipeline error."""

        super().__init__(detail)
        self.stage = stage
        self.detail = detail
        self.hint = hint


class ChaptervoiceError(RuntimeError):
    """Base class for audiobook domain failures."""


class BlobNotFoundError(ChaptervoiceError):
    """Raised when a blob key or row is missing.

    Callers are expected to reconcile state (for example drop a stale chapter
    row) rather than fail hard.
    """

    def __init__(self, key: str) -> None:
        super().__init__(f"Blob not found: {key}")
        self.key = key


class PreconditionFailedError(ChaptervoiceError):
    """Raised when an if-absent write finds an existing object."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Blob already exists: {key}")
        self.key = key


class StorageError(ChaptervoiceError):
    """Raised for blob/row storage failures that are neither misses nor conflicts."""


class ValidationError(ChaptervoiceError):
    """Raised for rejected input: bad ids, zero-duration audio, mixed formats."""


class NoChaptersError(ValidationError):
    """Raised when a book has no committed chapters to assemble."""


class SettingsConflictError(ChaptervoiceError):
    """Raised when requested generation settings differ from the locked ones."""

    def __init__(self, locked_settings: GenerationSettings) -> None:
        """Initialize the conflict with the settings the book is locked to."""

        super().__init__("Audiobook settings mismatch")
        self.locked_settings = locked_settings


class GenerationCancelledError(ChaptervoiceError):
    """Raised when a cancellation signal is observed at a suspension point."""

    def __init__(self, message: str = "cancelled") -> None:
        super().__init__(message)


class GenerationFailedError(ChaptervoiceError):
    """Raised when a generation run produced no book at all."""


class TranscodeError(ChaptervoiceError):
    """Raised when the external transcoder cannot be spawned or exits non-zero."""

    def __init__(self, message: str, *, stderr: str = "") -> None:
        super().__init__(message)
        self.stderr = stderr


class AssemblyError(ChaptervoiceError):
    """Raised when building the combined audiobook artifact fails."""
