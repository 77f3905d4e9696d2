"""Speech-oriented text cleanup rules.

Responsibilities:
- Strip extraction artifacts that a TTS voice would read aloud verbatim.
- Keep cleanup deterministic so resumed runs send identical text.
"""

from __future__ import annotations

import re
from typing import Protocol


class CleanerRule(Protocol):
    """Protocol for text cleaning rules."""

    def apply(self, text: str) -> str:
        """Apply a single cleaning transformation."""


class RemovePageNumbers:
    """Remove lines that contain only a page number."""

    def apply(self, text: str) -> str:
        return re.sub(r"(?m)^\s*(?:page\s+)?\d+\s*$", "", text, flags=re.IGNORECASE)


class FixHyphenation:
    """Join words split with a hyphen at a line break."""

    def apply(self, text: str) -> str:
        return re.sub(r"(\w)-\n\s*(\w)", r"\1\2", text)


class RemoveBracketedReferences:
    """Drop inline figure and numeric footnote references such as `[12]` or `[Fig. 3]`."""

    _PATTERN = re.compile(r"\[(?:\d+(?:[,–-]\s*\d+)*|fig(?:ure)?\.?\s*\d+)\]", re.IGNORECASE)

    def apply(self, text: str) -> str:
        return self._PATTERN.sub("", text)


class NormalizeQuotes:
    """Convert typographic quotes to their ASCII equivalents."""

    _TABLE = str.maketrans(
        {
            "“": '"',
            "”": '"',
            "„": '"',
            "‘": "'",
            "’": "'",
        }
    )

    def apply(self, text: str) -> str:
        return text.translate(self._TABLE)


class JoinWrappedLines:
    """Turn hard-wrapped lines into flowing paragraphs.

    Single line breaks become spaces; blank-line paragraph breaks survive.
    """

    def apply(self, text: str) -> str:
        paragraphs = re.split(r"\n\s*\n", text)
        joined = (
            " ".join(line.strip() for line in part.splitlines() if line.strip())
            for part in paragraphs
        )
        return "\n\n".join(part for part in joined if part)


class CollapseWhitespace:
    """Collapse runs of spaces and tabs."""

    def apply(self, text: str) -> str:
        return re.sub(r"[ \t\u00a0]+", " ", text).strip()


class TextCleaner:
    """Apply a sequence of deterministic cleaner rules."""

    def __init__(self, rules: list[CleanerRule] | None = None) -> None:
        self.rules = rules or [
            RemovePageNumbers(),
            FixHyphenation(),
            RemoveBracketedReferences(),
            NormalizeQuotes(),
            JoinWrappedLines(),
            CollapseWhitespace(),
        ]

    def clean(self, text: str) -> str:
        """Apply all configured rules in order."""

        current = text
        for rule in self.rules:
            current = rule.apply(current)
        return current
