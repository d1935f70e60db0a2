"""
PDF text extraction with PyMuPDF, falling back to OCR for scanned documents.
"""
import io
import logging
from dataclasses import dataclass, field
from typing import Any, Dict

import fitz  # PyMuPDF
from PIL import Image

from .exceptions import ExtractionFailure
from .ocr_utils import is_ocr_ready, ocr_image

logger = logging.getLogger(__name__)

# Below this many characters of embedded text the PDF is treated as a scan
SCANNED_TEXT_THRESHOLD = 100


@dataclass
class PDFExtraction:
    text: str
    page_count: int
    method: str  # text_layer | ocr
    is_scanned: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)


class PDFProcessor:
    """Reads contracts, notices and receipts delivered as PDF."""

    def __init__(self, ocr_languages: str = "eng+ara", ocr_enabled: bool = True, ocr_dpi: int = 200, max_ocr_pages: int = 10):
        self.ocr_languages = ocr_languages
        self.ocr_enabled = ocr_enabled
        self.ocr_dpi = ocr_dpi
        self.max_ocr_pages = max_ocr_pages

    @staticmethod
    def is_pdf(data: bytes) -> bool:
        return data.startswith(b"%PDF")

    def _ocr_pages(self, doc: "fitz.Document") -> str:
        pages = []
        for number in range(min(doc.page_count, self.max_ocr_pages)):
            pixmap = doc[number].get_pixmap(dpi=self.ocr_dpi)
            with Image.open(io.BytesIO(pixmap.tobytes("png"))) as image:
                pages.append(ocr_image(image, self.ocr_languages))
        return "\n\n".join(text for text in pages if text)

    def extract(self, data: bytes) -> PDFExtraction:
        """
        Return the document's text, OCR'ing the first pages when the text
        layer is too thin to be real.

        Raises ExtractionFailure when the bytes cannot be parsed as a PDF.
        """
        if not self.is_pdf(data):
            raise ExtractionFailure("Not a PDF document")

        try:
            with fitz.open(stream=data, filetype="pdf") as doc:
                text_layer = "\n".join(page.get_text() for page in doc)
                extraction = PDFExtraction(
                    text=text_layer,
                    page_count=doc.page_count,
                    method="text_layer",
                    metadata=dict(doc.metadata or {}),
                )
                if len(text_layer.strip()) >= SCANNED_TEXT_THRESHOLD:
                    return extraction

                extraction.is_scanned = True
                if not (self.ocr_enabled and is_ocr_ready()):
                    logger.warning("Scanned PDF without OCR; using the thin text layer", extra={"subsys": "pdf"})
                    return extraction

                try:
                    ocr_text = self._ocr_pages(doc)
                except ExtractionFailure as e:
                    logger.warning(f"OCR of scanned PDF failed: {e}", extra={"subsys": "pdf"})
                    return extraction

                if ocr_text:
                    extraction.text, extraction.method = ocr_text, "ocr"
                return extraction
        except ExtractionFailure:
            raise
        except Exception as e:
            # MuPDF error classes vary across PyMuPDF releases
            raise ExtractionFailure(f"Unreadable PDF: {e}") from e
