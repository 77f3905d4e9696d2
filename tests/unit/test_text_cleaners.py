"""Unit tests for speech-oriented text cleanup."""

from __future__ import annotations

from chaptervoice.text.cleaners import (
    CollapseWhitespace,
    FixHyphenation,
    JoinWrappedLines,
    NormalizeQuotes,
    RemoveBracketedReferences,
    RemovePageNumbers,
    TextCleaner,
)


def test_individual_rules() -> None:
    """Each rule should remove one class of extraction artifact."""

    assert RemovePageNumbers().apply("Text\n  12  \nPage 13\nMore") == "Text\n\n\nMore"
    assert FixHyphenation().apply("extra-\n  ordinary") == "extraordinary"
    assert RemoveBracketedReferences().apply("Known [12] and [3, 4] see [Fig. 2].") == (
        "Known  and  see ."
    )
    assert NormalizeQuotes().apply("“Hi” ‘there’") == "\"Hi\" 'there'"
    assert CollapseWhitespace().apply(" a \t b c ") == "a b c"


def test_join_wrapped_lines_keeps_paragraph_breaks() -> None:
    text = "First line\nwrapped here.\n\nSecond\nparagraph."

    assert JoinWrappedLines().apply(text) == "First line wrapped here.\n\nSecond paragraph."


def test_text_cleaner_applies_default_rules_in_order() -> None:
    """The default pipeline should yield text a voice can read without artifacts."""

    raw = "The “quick” fox jum-\nped over [7] the\nlazy dog.\n\n42\n\nThe end."

    assert TextCleaner().clean(raw) == "The \"quick\" fox jumped over the lazy dog.\n\nThe end."


def test_text_cleaner_accepts_custom_rules() -> None:
    assert TextCleaner([CollapseWhitespace()]).clean("  a   b  ") == "a b"
