"""PDF text extraction with PyMuPDF."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import fitz

from hrrag.errors import DocumentExtractionError
from hrrag.indexing.models import PageText

logger = logging.getLogger(__name__)


@dataclass
class PdfExtraction:
    pages: list[PageText]
    total_pages: int

    @property
    def text_length(self) -> int:
        return sum(len(page.text) for page in self.pages)


def extract_text_from_pdf(data: bytes) -> PdfExtraction:
    """Extract per-page text; pages without text (scans, blanks) are dropped.

    ``total_pages`` is the real page count, including dropped pages.
    Raises ``DocumentExtractionError`` when the file cannot be opened or
    contains no text at all.
    """
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as exc:
        raise DocumentExtractionError(f"Could not open PDF: {exc}") from exc

    with doc:
        total_pages = doc.page_count
        pages = []
        for page_index in range(total_pages):
            text = doc[page_index].get_text("text").strip()
            if text:
                pages.append(PageText(page_number=page_index + 1, text=text))

    if not pages:
        raise DocumentExtractionError(
            "PDF contains no extractable text (is it a scanned document?)."
        )
    logger.debug("extracted %d/%d pages with text", len(pages), total_pages)
    return PdfExtraction(pages=pages, total_pages=total_pages)
