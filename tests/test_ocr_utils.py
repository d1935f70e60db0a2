import io

import pytest
import pytesseract
from PIL import Image

from disputebot import ocr_utils
from disputebot.exceptions import ExtractionFailure


def png_bytes() -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (40, 20), "white").save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def ocr_ready(monkeypatch):
    monkeypatch.setattr(ocr_utils, "is_ocr_ready", lambda: True)


def test_missing_binary_is_not_reported_as_bad_image(ocr_ready, monkeypatch):
    def not_found(image, lang):
        raise pytesseract.TesseractNotFoundError()

    monkeypatch.setattr(ocr_utils.pytesseract, "image_to_string", not_found)

    with pytest.raises(ExtractionFailure) as excinfo:
        ocr_utils.ocr_image_bytes(png_bytes())

    assert "Tesseract binary missing" in str(excinfo.value)


def test_undecodable_bytes_are_reported_as_bad_image(ocr_ready):
    with pytest.raises(ExtractionFailure) as excinfo:
        ocr_utils.ocr_image_bytes(b"definitely not an image")

    assert "Could not decode image" in str(excinfo.value)


def test_recognised_text_is_stripped(ocr_ready, monkeypatch):
    seen = {}

    def recognise(image, lang):
        seen["mode"] = image.mode
        seen["lang"] = lang
        return "  Ajman Municipality  \n"

    monkeypatch.setattr(ocr_utils.pytesseract, "image_to_string", recognise)

    assert ocr_utils.ocr_image_bytes(png_bytes(), "eng+ara") == "Ajman Municipality"
    assert seen == {"mode": "L", "lang": "eng+ara"}


def test_ocr_unavailable_raises(monkeypatch):
    monkeypatch.setattr(ocr_utils, "is_ocr_ready", lambda: False)

    with pytest.raises(ExtractionFailure):
        ocr_utils.ocr_image_bytes(png_bytes())
