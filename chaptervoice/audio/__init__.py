"""Audio transcoding, probing, and chapter-marker helpers.

This package wraps the external `ffmpeg` binary used for per-chapter encoding
and for building combined audiobook artifacts.
"""

from .markers import ChapterMarker, build_chapter_markers, render_concat_list, render_ffmetadata
from .transcoder import ChapterTranscoder, ConcatStrategy, FfmpegRunner, ProbeResult

__all__ = [
    "ChapterMarker",
    "ChapterTranscoder",
    "ConcatStrategy",
    "FfmpegRunner",
    "ProbeResult",
    "build_chapter_markers",
    "render_concat_list",
    "render_ffmetadata",
]
