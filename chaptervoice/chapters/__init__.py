"""Chapter naming helpers shared by commit, status, and assembly flows."""

from .codec import (
    decode_chapter_file_name,
    decode_chapter_title_tag,
    encode_chapter_file_name,
    encode_chapter_title_tag,
    escape_ffmetadata,
    list_chapter_objects,
)

__all__ = [
    "decode_chapter_file_name",
    "decode_chapter_title_tag",
    "encode_chapter_file_name",
    "encode_chapter_title_tag",
    "escape_ffmetadata",
    "list_chapter_objects",
]
