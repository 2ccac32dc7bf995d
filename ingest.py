"""
Pacing guide ingestion — PDF text extraction.

Pulls plain text out of an uploaded pacing guide, optionally limited to a
1-based inclusive page range, ready to hand to the lesson extractor.
"""

from __future__ import annotations

import re
from typing import BinaryIO

from pypdf import PdfReader
from pypdf.errors import PdfReadError

_BLANK_RUN = re.compile(r"\n{3,}")


class PDFExtractionError(ValueError):
    """The upload is not a readable PDF or the page range is invalid."""


def parse_page(value, default: int | None = None) -> int | None:
    """Form field → page number; blank means default."""
    if value in (None, ""):
        return default
    try:
        page = int(value)
    except (TypeError, ValueError):
        raise PDFExtractionError(f"Invalid page number: {value!r}")
    if page < 1:
        raise PDFExtractionError("Page numbers start at 1")
    return page


def extract_text(stream: BinaryIO, start_page: int = 1, end_page: int | None = None) -> str:
    """Text of pages start_page..end_page (inclusive, 1-based)."""
    try:
        reader = PdfReader(stream)
        total = len(reader.pages)
    except (PdfReadError, OSError, ValueError) as e:
        raise PDFExtractionError(f"Could not read PDF: {e}")

    end = min(end_page or total, total)
    if start_page > end:
        raise PDFExtractionError(f"Page range {start_page}-{end_page or total} is outside a {total}-page document")

    pages: list[str] = []
    for index in range(start_page - 1, end):
        try:
            text = reader.pages[index].extract_text()
        except (PdfReadError, KeyError, ValueError, TypeError) as e:
            raise PDFExtractionError(f"Could not read page {index + 1}: {e}")
        if text:
            pages.append(text.strip())
    return _BLANK_RUN.sub("\n\n", "\n\n".join(pages)).strip()
