"""Text preprocessing applied to content units before speech synthesis."""

from .cleaners import (
    CollapseWhitespace,
    FixHyphenation,
    JoinWrappedLines,
    NormalizeQuotes,
    RemoveBracketedReferences,
    RemovePageNumbers,
    TextCleaner,
)

__all__ = [
    "TextCleaner",
    "RemovePageNumbers",
    "FixHyphenation",
    "RemoveBracketedReferences",
    "NormalizeQuotes",
    "JoinWrappedLines",
    "CollapseWhitespace",
]
