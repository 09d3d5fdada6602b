"""
rasterize.py

Renders the first page of a PDF upload to a PNG image.

The scan pipeline only ever receives raster images. When a user
uploads a PDF (for example a scanned ID card exported as PDF),
this module turns page 1 into an image first.
"""

import logging
from typing import Optional

import fitz  # PyMuPDF

from docscan.config import PDF_RENDER_SCALE
from docscan.services.errors import DocumentRenderError

logger = logging.getLogger(__name__)


def is_pdf(data: bytes, filename: Optional[str] = None) -> bool:
    """True when the payload is a PDF (magic bytes or .pdf extension)."""
    if data[:5] == b"%PDF-":
        return True
    return bool(filename) and filename.lower().endswith(".pdf")


def render_first_page(document: bytes, scale: float = PDF_RENDER_SCALE) -> bytes:
    """
    Render page 1 of a PDF to PNG bytes.

    Parameters:
    - document: PDF file data (kept in memory)
    - scale: zoom factor; 1.0 = 72 DPI

    Returns:
    - PNG image bytes

    Raises:
    - DocumentRenderError for empty, corrupt or page-less documents
    """

    if not document:
        raise DocumentRenderError("Document is empty")

    try:
        pdf_document = fitz.open(stream=document, filetype="pdf")
    except Exception as error:
        raise DocumentRenderError(f"Cannot open PDF: {error}") from error

    try:
        if len(pdf_document) == 0:
            raise DocumentRenderError("PDF has no pages")

        page = pdf_document[0]
        pixmap = page.get_pixmap(matrix=fitz.Matrix(scale, scale), alpha=False)

        logger.info(f"Rendered PDF page 1 at scale {scale}: {pixmap.width}x{pixmap.height}")

        return pixmap.tobytes("png")
    except DocumentRenderError:
        raise
    except Exception as error:
        raise DocumentRenderError(f"Cannot render PDF page 1: {error}") from error
    finally:
        pdf_document.close()
