"""Chapter key codec for stored audiobook objects.

Responsibilities:
- Map a logical `(index, title, format)` triple to one canonical file name and back.
- Encode/decode chapter title tags embedded as stream metadata.
- Collapse directory listings to one canonical object per chapter index.

Stored names look like `0001__Intro.mp3`: a fixed-width 1-based index so that
lexicographic and numeric ordering coincide, a percent-encoded title, and the
container format as extension.
"""

from __future__ import annotations

import re
from typing import Iterable
from urllib.parse import quote, unquote

from ..models.datatypes import AUDIO_FORMATS, ChapterObject, DecodedChapterName

COMPLETE_PREFIX = "complete."
SETTINGS_FILE_NAME = "audiobook.meta.json"

_MAX_STEM_CHARS = 180
# Stored names must fit the 255-byte file-name limit of local filesystems.
_MAX_ENCODED_STEM_CHARS = 200
_FILE_NAME_RE = re.compile(r"(\d{1,6})__(.+)\.(mp3|m4b)", re.IGNORECASE)
_TITLE_TAG_RE = re.compile(r"(\d{1,6})\s*[-.:]\s*(.+)")
_BROKEN_ESCAPE_RE = re.compile(r"%(?![0-9A-Fa-f]{2})")
# Characters `encodeURIComponent` leaves unescaped beyond `quote`'s defaults.
_URI_COMPONENT_SAFE = "!'()*"


def _sanitize_tag_value(value: str) -> str:
    return re.sub(r"\r?\n", " ", value.replace("\x00", "")).strip()


def _sanitize_file_stem(value: str) -> str:
    stem = re.sub(r"[\\/]", " ", _sanitize_tag_value(value))
    stem = re.sub(r'[<>:"|?*\x00]', "", stem)
    stem = re.sub(r"\s+", " ", stem).strip()
    return stem[:_MAX_STEM_CHARS]


def _encode_file_stem(stem: str) -> str:
    """Percent-encode `stem`, dropping trailing characters past the encoded cap."""

    encoded_parts: list[str] = []
    encoded_length = 0
    for char in stem:
        part = quote(char, safe=_URI_COMPONENT_SAFE)
        if encoded_length + len(part) > _MAX_ENCODED_STEM_CHARS:
            break
        encoded_parts.append(part)
        encoded_length += len(part)
    return "".join(encoded_parts)


def _default_title(index: int) -> str:
    return f"Chapter {index + 1}"


def chapter_number_prefix(index: int) -> str:
    """Return the fixed-width 1-based prefix shared by all names of one index."""

    return f"{index + 1:04d}__"


def encode_chapter_file_name(index: int, title: str, audio_format: str) -> str:
    """Build the canonical stored file name for one chapter."""

    if index < 0:
        raise ValueError(f"Chapter index must be non-negative, got {index}.")
    if audio_format not in AUDIO_FORMATS:
        raise ValueError(f"Unsupported chapter format `{audio_format}`.")
    safe_title = _sanitize_file_stem(title) or _default_title(index)
    encoded = _encode_file_stem(safe_title)
    return f"{chapter_number_prefix(index)}{encoded}.{audio_format}"


def decode_chapter_file_name(file_name: str) -> DecodedChapterName | None:
    """Decode a stored file name, returning `None` for anything not chapter-shaped."""

    match = _FILE_NAME_RE.fullmatch(file_name)
    if match is None:
        return None
    one_based = int(match.group(1))
    if one_based <= 0:
        return None
    raw_title = match.group(2)
    audio_format = match.group(3).lower()
    title = _percent_decode(raw_title)
    return DecodedChapterName(
        index=one_based - 1,
        title=title or f"Chapter {one_based}",
        format=audio_format,
    )


def _percent_decode(raw: str) -> str:
    """Decode `%XX` escapes, returning the raw segment when they are malformed."""

    if _BROKEN_ESCAPE_RE.search(raw):
        return raw
    try:
        return unquote(raw, errors="strict")
    except UnicodeDecodeError:
        return raw


def encode_chapter_title_tag(index: int, title: str) -> str:
    """Build the `0001 - Title` value embedded as a chapter's title metadata."""

    safe_title = _sanitize_tag_value(title) or _default_title(index)
    return f"{index + 1:04d} - {safe_title}"


def decode_chapter_title_tag(tag: str) -> tuple[int, str] | None:
    """Parse an embedded title tag into `(index, title)`."""

    raw = _sanitize_tag_value(tag)
    if not raw:
        return None
    match = _TITLE_TAG_RE.fullmatch(raw)
    if match is None:
        return None
    one_based = int(match.group(1))
    if one_based <= 0:
        return None
    return one_based - 1, match.group(2).strip() or f"Chapter {one_based}"


def escape_ffmetadata(value: str) -> str:
    """Escape a value for the ffmpeg `;FFMETADATA1` text format."""

    escaped = value.replace("\\", "\\\\")
    escaped = escaped.replace("=", "\\=").replace(";", "\\;").replace("#", "\\#")
    return re.sub(r"\r|\n", " ", escaped)


def list_chapter_objects(file_names: Iterable[str]) -> list[ChapterObject]:
    """Decode a listing and keep one canonical object per chapter index.

    When several names decode to the same index, the lexicographically
    greatest name wins.
    """

    canonical: dict[int, ChapterObject] = {}
    for file_name in file_names:
        if file_name.startswith(COMPLETE_PREFIX):
            continue
        decoded = decode_chapter_file_name(file_name)
        if decoded is None:
            continue
        current = canonical.get(decoded.index)
        if current is None or file_name > current.file_name:
            canonical[decoded.index] = ChapterObject(
                index=decoded.index,
                title=decoded.title,
                format=decoded.format,
                file_name=file_name,
            )
    return [canonical[index] for index in sorted(canonical)]


def find_chapter_object(file_names: Iterable[str], index: int) -> ChapterObject | None:
    """Return the canonical object stored for one index, if any."""

    for chapter in list_chapter_objects(file_names):
        if chapter.index == index:
            return chapter
    return None


def superseded_file_names(
    file_names: Iterable[str],
    index: int,
    keep: str | None = None,
) -> list[str]:
    """Return stored names for `index` other than `keep`, in listing order."""

    superseded: list[str] = []
    for file_name in file_names:
        if file_name == keep or file_name.startswith(COMPLETE_PREFIX):
            continue
        decoded = decode_chapter_file_name(file_name)
        if decoded is not None and decoded.index == index:
            superseded.append(file_name)
    return superseded


def complete_file_name(audio_format: str) -> str:
    """Return the combined artifact name for one format."""

    return f"{COMPLETE_PREFIX}{audio_format}"


def complete_manifest_file_name(audio_format: str) -> str:
    """Return the signature object name for one combined artifact format."""

    return f"{complete_file_name(audio_format)}.manifest.json"
