"""PDF text extraction for documents pulled out of the browser session."""

from dataclasses import dataclass
from typing import Optional

import fitz  # PyMuPDF


@dataclass
class PdfText:
    """Extracted document content."""
    text: str = ""
    pages: int = 0
    info: Optional[dict] = None


def extract_pdf_text(raw_bytes: bytes) -> PdfText:
    """
    Extract full text, page count and the document info dictionary.

    Raises whatever PyMuPDF raises for empty or non-PDF input; callers treat
    that as a failed analysis.
    """
    with fitz.open(stream=raw_bytes, filetype="pdf") as doc:
        pages_text = [page.get_text("text") for page in doc]
        page_count = doc.page_count
        meta = doc.metadata or {}

    info = {key: value for key, value in meta.items() if value} or None
    text = "\n\n".join(t.strip() for t in pages_text if t.strip())
    return PdfText(text=text, pages=page_count, info=info)
