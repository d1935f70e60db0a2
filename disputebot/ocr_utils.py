"""OCR for photographed documents, backed by Tesseract."""

import io
import logging
import shutil
from functools import lru_cache

import pytesseract
from PIL import Image, UnidentifiedImageError

from .exceptions import ExtractionFailure

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def is_ocr_ready() -> bool:
    """True when the tesseract binary is on PATH. Checked once per process."""
    binary = shutil.which("tesseract")
    if binary is None:
        logger.warning(
            "tesseract not found on PATH; images and scanned PDFs will yield no excerpt",
            extra={"subsys": "ocr", "event": "ocr.unavailable"},
        )
        return False
    logger.info(f"OCR available via {binary}", extra={"subsys": "ocr", "event": "ocr.ready"})
    return True


def ocr_image(image: "Image.Image", languages: str = "eng+ara") -> str:
    """Recognise text in a decoded image. Raises ExtractionFailure."""
    if not is_ocr_ready():
        raise ExtractionFailure("OCR is not available")
    try:
        # Grayscale improves recognition on phone photos of paper
        return pytesseract.image_to_string(image.convert("L"), lang=languages).strip()
    except pytesseract.TesseractNotFoundError as e:
        raise ExtractionFailure(f"Tesseract binary missing: {e}") from e
    except (pytesseract.TesseractError, RuntimeError) as e:
        raise ExtractionFailure(f"Tesseract failed: {e}") from e


def ocr_image_bytes(data: bytes, languages: str = "eng+ara") -> str:
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError) as e:
        raise ExtractionFailure(f"Could not decode image: {e}") from e
    with image:
        return ocr_image(image, languages)
