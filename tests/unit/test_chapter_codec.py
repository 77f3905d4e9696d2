"""Unit tests for chapter file-name and title-tag codec helpers."""

from __future__ import annotations

import pytest

from chaptervoice.chapters.codec import (
    decode_chapter_file_name,
    decode_chapter_title_tag,
    encode_chapter_file_name,
    encode_chapter_title_tag,
    escape_ffmetadata,
    find_chapter_object,
    list_chapter_objects,
    superseded_file_names,
)


def test_encode_chapter_file_name_pads_index_and_percent_encodes_title() -> None:
    """Stored names should use a 4-digit 1-based prefix and URI-component escaping."""

    assert encode_chapter_file_name(0, "Intro", "mp3") == "0001__Intro.mp3"
    assert encode_chapter_file_name(11, "Don't Panic!", "m4b") == "0012__Don't%20Panic!.m4b"
    assert encode_chapter_file_name(2, "Café", "mp3") == "0003__Caf%C3%A9.mp3"


def test_encode_chapter_file_name_sanitizes_unsafe_characters() -> None:
    """Path separators become spaces and reserved characters are dropped."""

    name = encode_chapter_file_name(0, 'a/b\\c <d>:"e"|f?*\n  g', "mp3")

    assert name == "0001__a%20b%20c%20def%20g.mp3"


def test_encode_chapter_file_name_falls_back_to_default_title() -> None:
    """Titles that sanitize to nothing should become `Chapter N`."""

    assert encode_chapter_file_name(4, '  <>?*  ', "m4b") == "0005__Chapter%205.m4b"


def test_encode_chapter_file_name_truncates_long_titles() -> None:
    """Sanitized titles are capped at 180 characters before encoding."""

    name = encode_chapter_file_name(0, "x" * 500, "mp3")

    assert name == f"0001__{'x' * 180}.mp3"


def test_encode_chapter_file_name_caps_encoded_length_of_multibyte_titles() -> None:
    """Long CJK titles stay under the file-name limit without splitting an escape."""

    title = "第一章" * 10
    name = encode_chapter_file_name(1, title, "m4b")

    assert len(name.encode("utf-8")) <= 255
    assert name == f"0002__{'%E7%AC%AC%E4%B8%80%E7%AB%A0' * 7}%E7%AC%AC.m4b"
    decoded = decode_chapter_file_name(name)
    assert decoded is not None
    assert title.startswith(decoded.title)


@pytest.mark.parametrize(
    ("index", "audio_format"),
    [(-1, "mp3"), (0, "wav")],
)
def test_encode_chapter_file_name_rejects_invalid_input(index: int, audio_format: str) -> None:
    """Negative indices and unsupported formats should be rejected."""

    with pytest.raises(ValueError):
        encode_chapter_file_name(index, "Title", audio_format)


def test_decode_chapter_file_name_inverts_encoding() -> None:
    """Decoding should recover the sanitized title, index, and format."""

    decoded = decode_chapter_file_name(encode_chapter_file_name(41, "Act 3: The End", "m4b"))

    assert decoded is not None
    assert decoded.index == 41
    assert decoded.title == "Act 3 The End"
    assert decoded.format == "m4b"


@pytest.mark.parametrize(
    "file_name",
    [
        "complete.m4b",
        "audiobook.meta.json",
        "0000__Zero.mp3",
        "0001__Title.wav",
        "0001_Title.mp3",
        "abc__Title.mp3",
        "0001__.mp3",
    ],
)
def test_decode_chapter_file_name_rejects_non_chapter_names(file_name: str) -> None:
    """Anything not shaped like a chapter name should decode to `None`."""

    assert decode_chapter_file_name(file_name) is None


def test_decode_chapter_file_name_is_case_insensitive_and_lenient() -> None:
    """Upper-case extensions decode, and malformed escapes keep the raw segment."""

    upper = decode_chapter_file_name("0002__Title.MP3")
    broken = decode_chapter_file_name("0003__100%25%.m4b")
    invalid_utf8 = decode_chapter_file_name("0004__%FF.mp3")

    assert upper is not None and upper.format == "mp3" and upper.index == 1
    assert broken is not None and broken.title == "100%25%"
    assert invalid_utf8 is not None and invalid_utf8.title == "%FF"


def test_chapter_title_tag_roundtrip_and_separators() -> None:
    """Title tags should encode as `0001 - Title` and accept `-`, `.`, `:` on decode."""

    assert encode_chapter_title_tag(0, "Intro\nPart") == "0001 - Intro Part"
    assert encode_chapter_title_tag(6, "  ") == "0007 - Chapter 7"
    assert decode_chapter_title_tag("0001 - Intro") == (0, "Intro")
    assert decode_chapter_title_tag("12. Twelve") == (11, "Twelve")
    assert decode_chapter_title_tag("3:Three") == (2, "Three")
    assert decode_chapter_title_tag("0 - Zero") is None
    assert decode_chapter_title_tag("no number") is None
    assert decode_chapter_title_tag("") is None


def test_escape_ffmetadata_escapes_special_characters() -> None:
    """ffmetadata values escape `\\ = ; #` and flatten newlines."""

    assert escape_ffmetadata("a=b;c#d\\e\nf\rg") == "a\\=b\\;c\\#d\\\\e f g"


def test_list_chapter_objects_keeps_lexicographically_greatest_per_index() -> None:
    """Duplicates for one index collapse to the greatest name; others are ignored."""

    names = [
        "0002__Beta.mp3",
        "0001__Alpha.mp3",
        "0001__Zulu.mp3",
        "complete.mp3",
        "complete.mp3.manifest.json",
        "audiobook.meta.json",
        "notes.txt",
    ]

    chapters = list_chapter_objects(names)

    assert [(item.index, item.file_name) for item in chapters] == [
        (0, "0001__Zulu.mp3"),
        (1, "0002__Beta.mp3"),
    ]
    assert find_chapter_object(names, 1) is not None
    assert find_chapter_object(names, 5) is None


def test_superseded_file_names_lists_alternates_for_index() -> None:
    """Alternates for the same index other than `keep` must be returned."""

    names = ["0001__Old.mp3", "0001__New.mp3", "0001__New.m4b", "0002__Other.mp3", "complete.mp3"]

    assert superseded_file_names(names, 0, keep="0001__New.mp3") == [
        "0001__Old.mp3",
        "0001__New.m4b",
    ]
    assert superseded_file_names(names, 1) == ["0002__Other.mp3"]
