"""Chapter marker timeline and ffmpeg input-file rendering.

Responsibilities:
- Accumulate chapter durations into a millisecond marker timeline.
- Render the `;FFMETADATA1` chapter block and the concat demuxer list.
"""

from __future__ import annotations

from dataclasses import dataclass
import math
from pathlib import Path
from typing import Iterable, Sequence

from ..chapters.codec import escape_ffmetadata


@dataclass(frozen=True, slots=True)
class ChapterMarker:
    """One chapter entry of the combined artifact timeline.

    Attributes:
        title: Chapter title (unescaped).
        start_ms: Inclusive start offset in milliseconds.
        end_ms: End offset in milliseconds.
    """

    title: str
    start_ms: int
    end_ms: int


def build_chapter_markers(chapters: Sequence[tuple[str, float]]) -> list[ChapterMarker]:
    """Build markers from ordered `(title, duration_seconds)` pairs."""

    markers: list[ChapterMarker] = []
    current = 0.0
    for title, duration in chapters:
        start_ms = math.floor(current * 1000)
        current += duration
        markers.append(
            ChapterMarker(title=title, start_ms=start_ms, end_ms=math.floor(current * 1000))
        )
    return markers


def render_ffmetadata(markers: Iterable[ChapterMarker]) -> str:
    """Render markers as an ffmpeg metadata input file."""

    lines = [";FFMETADATA1"]
    for marker in markers:
        lines.extend(
            [
                "[CHAPTER]",
                "TIMEBASE=1/1000",
                f"START={marker.start_ms}",
                f"END={marker.end_ms}",
                f"title={escape_ffmetadata(marker.title)}",
            ]
        )
    return "\n".join(lines) + "\n"


def escape_concat_path(path: Path) -> str:
    """Escape one file path for ffmpeg concat list format."""

    return str(path).replace("'", "'\\''")


def render_concat_list(paths: Iterable[Path]) -> str:
    """Render an ffmpeg concat demuxer list for ordered input files."""

    return "".join(f"file '{escape_concat_path(path)}'\n" for path in paths)
