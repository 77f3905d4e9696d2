"""EPUB section extraction.

Responsibilities:
- Walk the EPUB spine in reading order and extract plain text per document.
- Title each section with its table-of-contents label when one exists.
"""

from __future__ import annotations

from pathlib import Path
import warnings

import ebooklib
from bs4 import BeautifulSoup
from ebooklib import epub

from ..models.datatypes import ContentUnit

warnings.filterwarnings("ignore", category=UserWarning, module="ebooklib.epub")
warnings.filterwarnings("ignore", category=FutureWarning, module="ebooklib.epub")


class EpubExtractionError(RuntimeError):
    """Raised when an EPUB cannot be opened or parsed."""


def _normalize_href(href: str) -> str:
    cleaned = href.split("#", 1)[0].strip()
    if cleaned.startswith("./"):
        cleaned = cleaned[2:]
    return cleaned.lstrip("/")


def collect_toc_labels(toc: object) -> dict[str, str]:
    """Map normalized document hrefs to their first TOC label."""

    labels: dict[str, str] = {}

    def walk(entry: object) -> None:
        if isinstance(entry, (list, tuple)):
            for item in entry:
                walk(item)
            return
        href = getattr(entry, "href", None)
        title = getattr(entry, "title", None)
        if isinstance(href, str) and isinstance(title, str) and title.strip():
            labels.setdefault(_normalize_href(href), title.strip())

    walk(toc)
    return labels


class EpubSectionReader:
    """Read an EPUB as ordered section units."""

    def read_units(self, epub_path: Path) -> list[ContentUnit]:
        """Return one unit per spine document, including documents without text."""

        if not epub_path.exists():
            raise EpubExtractionError(f"Input EPUB not found: {epub_path}")
        try:
            book = epub.read_epub(str(epub_path))
        except (OSError, KeyError, epub.EpubException) as exc:
            raise EpubExtractionError(f"Could not read EPUB {epub_path}: {exc}") from exc

        toc_labels = collect_toc_labels(book.toc)
        units: list[ContentUnit] = []
        for entry in book.spine:
            item_id = entry[0] if isinstance(entry, tuple) else entry
            item = book.get_item_with_id(item_id)
            if item is None or item.get_type() != ebooklib.ITEM_DOCUMENT:
                continue
            soup = BeautifulSoup(item.get_content(), "html.parser")
            text = soup.get_text(separator="\n").strip()
            units.append(
                ContentUnit(
                    position=len(units),
                    text=text,
                    title=toc_labels.get(_normalize_href(item.get_name())),
                )
            )
        return units
