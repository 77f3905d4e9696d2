"""Top-level package for chaptervoice.

This package turns PDF pages or EPUB sections into a resumable, chapter-based
audiobook: one TTS call and one durable chapter per content unit, assembled
on demand into a single file with chapter markers. The main entry point for
drivers is `AudiobookService`.
"""

from .service import AudiobookService

__all__ = ["AudiobookService", "__version__"]

__version__ = "0.1.0"
