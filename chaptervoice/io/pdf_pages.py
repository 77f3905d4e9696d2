"""Page-wise PDF text extraction.

Responsibilities:
- Extract per-page text with `pdftotext` (poppler) when it is installed.
- Fall back to `pypdf` when the poppler binaries are missing.
- Return one content unit per page, titled by its 1-based page number.
"""

from __future__ import annotations

from pathlib import Path
import re
import subprocess

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from ..models.datatypes import ContentUnit
from ..runtime_tools import resolve_executable


class PdfExtractionError(RuntimeError):
    """Raised when text extraction from a PDF cannot be completed."""


class _MissingPopplerError(PdfExtractionError):
    """Raised when `pdftotext` or `pdfinfo` is not installed."""


class PdfPageReader:
    """Read a text-based PDF as ordered page units."""

    def read_units(self, pdf_path: Path) -> list[ContentUnit]:
        """Return one unit per page, including pages without text."""

        return [
            ContentUnit(position=position, text=text, title=f"Page {position + 1}")
            for position, text in enumerate(self.extract_pages(pdf_path))
        ]

    def extract_pages(self, pdf_path: Path) -> list[str]:
        """Extract text per page."""

        if not pdf_path.exists():
            raise PdfExtractionError(f"Input PDF not found: {pdf_path}")
        try:
            page_count = self._page_count(pdf_path)
            return [
                self._run_pdftotext(pdf_path, page) for page in range(1, page_count + 1)
            ]
        except _MissingPopplerError:
            return self._extract_pages_with_pypdf(pdf_path)

    def _run_pdftotext(self, pdf_path: Path, page: int) -> str:
        command = [
            resolve_executable("pdftotext"),
            "-enc",
            "UTF-8",
            "-f",
            str(page),
            "-l",
            str(page),
            str(pdf_path),
            "-",
        ]
        result = self._run_tool(command, "pdftotext")
        return result.replace("\f", "\n").strip()

    def _page_count(self, pdf_path: Path) -> int:
        output = self._run_tool([resolve_executable("pdfinfo"), str(pdf_path)], "pdfinfo")
        match = re.search(r"(?m)^Pages:\s+(\d+)\s*$", output)
        if not match:
            raise PdfExtractionError(f"Could not determine page count for PDF: {pdf_path}")
        return int(match.group(1))

    @staticmethod
    def _run_tool(command: list[str], tool_name: str) -> str:
        try:
            result = subprocess.run(command, check=False, capture_output=True, text=True)
        except FileNotFoundError as exc:
            raise _MissingPopplerError(f"`{tool_name}` was not found.") from exc
        if result.returncode != 0:
            details = result.stderr.strip() or "unknown error"
            raise PdfExtractionError(f"{tool_name} failed: {details}")
        return result.stdout

    @staticmethod
    def _extract_pages_with_pypdf(pdf_path: Path) -> list[str]:
        try:
            reader = PdfReader(str(pdf_path))
            return [
                (page.extract_text() or "").replace("\f", "\n").strip()
                for page in reader.pages
            ]
        except PdfReadError as exc:
            raise PdfExtractionError(f"Could not read PDF {pdf_path}: {exc}") from exc
