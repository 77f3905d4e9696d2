"""Shared typed data models for chaptervoice.

This package contains dataclasses used across storage, generation, and
assembly modules to avoid cross-module coupling and circular imports.
"""

from .datatypes import (
    AUDIO_FORMATS,
    AssembledBook,
    BookRecord,
    BookStatus,
    ChapterObject,
    ChapterOutcome,
    ChapterRecord,
    ChapterStatus,
    ContentUnit,
    DecodedChapterName,
    GenerationResult,
    GenerationSettings,
    SignatureEntry,
    audio_mime_type,
    normalize_audio_format,
)

__all__ = [
    "AUDIO_FORMATS",
    "AssembledBook",
    "BookRecord",
    "BookStatus",
    "ChapterObject",
    "ChapterOutcome",
    "ChapterRecord",
    "ChapterStatus",
    "ContentUnit",
    "DecodedChapterName",
    "GenerationResult",
    "GenerationSettings",
    "SignatureEntry",
    "audio_mime_type",
    "normalize_audio_format",
]
