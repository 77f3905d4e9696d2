"""Content-unit loading dispatch for supported document types."""

from __future__ import annotations

from pathlib import Path

from ..errors import ValidationError
from ..models.datatypes import ContentUnit
from .epub_sections import EpubSectionReader
from .pdf_pages import PdfPageReader

SUPPORTED_SUFFIXES = (".pdf", ".epub")


def load_content_units(path: Path) -> list[ContentUnit]:
    """Load ordered pages (PDF) or sections (EPUB) from `path`."""

    suffix = path.suffix.lower()
    if suffix == ".pdf":
        return PdfPageReader().read_units(path)
    if suffix == ".epub":
        return EpubSectionReader().read_units(path)
    raise ValidationError(
        f"Unsupported document type `{path.suffix or path.name}`; "
        f"supported: {', '.join(SUPPORTED_SUFFIXES)}."
    )
