"""Document input readers.

This package turns PDF pages and EPUB sections into ordered content units.
"""

from .content_units import load_content_units
from .epub_sections import EpubExtractionError, EpubSectionReader
from .pdf_pages import PdfExtractionError, PdfPageReader

__all__ = [
    "EpubExtractionError",
    "EpubSectionReader",
    "PdfExtractionError",
    "PdfPageReader",
    "load_content_units",
]
