"""
Content extractor: best-effort conversion of attachment bytes to plain text.

Routing by resolved MIME class:
- PDF   -> embedded text layer (OCR for scanned pages)
- image -> Tesseract OCR, Latin and Arabic scripts
- audio -> transcription, when a transcriber is configured
- other -> empty excerpt

``extract`` never raises. Failures are logged and degrade to an empty
excerpt; the raw bytes can still travel to the reasoning service inline.
CPU-bound work runs in a thread pool so the event loop keeps serving other
conversations.
"""
from __future__ import annotations

import asyncio
import re
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Optional

from .exceptions import ExtractionFailure
from .modality import InputModality, classify_mime
from .ocr_utils import ocr_image_bytes
from .pdf_utils import PDFProcessor
from .stt import Transcriber
from .utils.logging import get_logger

logger = get_logger(__name__)

_BLANK_RUNS = re.compile(r"\n[ \t]*\n(?:[ \t]*\n)+")


def truncate_text(text: str, max_chars: int) -> str:
    """
    Cut ``text`` to at most ``max_chars`` characters.

    Slicing works on code points, so a multi-byte UTF-8 sequence is never
    split; a dangling high surrogate left by the cut is dropped as well.
    """
    if max_chars <= 0:
        return ""
    if len(text) <= max_chars:
        return text
    cut = text[:max_chars]
    if cut and "\ud800" <= cut[-1] <= "\udbff":
        cut = cut[:-1]
    return cut


def normalize_excerpt(text: str) -> str:
    """Collapse runs of blank lines that PDF and OCR output are full of."""
    return _BLANK_RUNS.sub("\n\n", text.replace("\r\n", "\n")).strip()


class ContentExtractor:
    """Routes attachment bytes to the right extraction backend."""

    def __init__(
        self,
        max_chars: int = 8000,
        ocr_languages: str = "eng+ara",
        ocr_enabled: bool = True,
        transcriber: Optional[Transcriber] = None,
        max_workers: int = 2,
    ):
        self.max_chars = max_chars
        self.ocr_languages = ocr_languages
        self.ocr_enabled = ocr_enabled
        self.transcriber = transcriber
        self.pdf = PDFProcessor(ocr_languages=ocr_languages, ocr_enabled=ocr_enabled)
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="extract")

    @classmethod
    def from_config(cls, config: Dict[str, Any], transcriber: Optional[Transcriber] = None) -> "ContentExtractor":
        return cls(
            max_chars=config.get("EXTRACT_MAX_CHARS", 8000),
            ocr_languages=config.get("OCR_LANGUAGES", "eng+ara"),
            ocr_enabled=config.get("OCR_ENABLE", True),
            transcriber=transcriber if config.get("STT_ENABLE") else None,
            max_workers=config.get("EXTRACTION_WORKERS", 2),
        )

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _extract_sync(self, data: bytes, modality: InputModality) -> str:
        if modality is InputModality.PDF_DOCUMENT:
            return self.pdf.extract(data).text
        if modality is InputModality.IMAGE:
            if not self.ocr_enabled:
                return ""
            return ocr_image_bytes(data, self.ocr_languages)
        return ""

    async def extract(self, data: bytes, mime_type: str, file_name: Optional[str] = None) -> str:
        """Return a truncated plain-text excerpt of ``data``, or "" when not applicable."""
        modality = classify_mime(mime_type)
        start = time.monotonic()
        try:
            if modality is InputModality.AUDIO:
                if self.transcriber is None:
                    return ""
                text = await self.transcriber.transcribe(data, mime_type, file_name)
            elif modality in (InputModality.PDF_DOCUMENT, InputModality.IMAGE):
                loop = asyncio.get_running_loop()
                text = await loop.run_in_executor(self._executor, self._extract_sync, data, modality)
            else:
                return ""
        except ExtractionFailure as e:
            logger.warning(f"Extraction skipped for {mime_type}: {e}", extra={"subsys": "extract", "event": "extract.failed"})
            return ""
        except Exception as e:
            logger.error(f"Unexpected extraction error for {mime_type}: {e}", exc_info=True, extra={"subsys": "extract", "event": "extract.error"})
            return ""

        excerpt = truncate_text(normalize_excerpt(text or ""), self.max_chars)
        logger.info(
            f"📄 Extracted {len(excerpt)} chars from {mime_type} in {(time.monotonic() - start) * 1000:.0f}ms",
            extra={"subsys": "extract", "event": "extract.ok"},
        )
        return excerpt
