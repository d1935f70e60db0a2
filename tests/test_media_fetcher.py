import pytest

from disputebot.exceptions import FileProcessingError, NotFoundError
from disputebot.media_fetcher import MediaFetcher
from disputebot.modality import AttachmentRef


@pytest.mark.asyncio
async def test_generic_content_type_is_overridden_from_path(make_telegram):
    telegram = make_telegram(files={"F1": (b"%PDF-1.4 body", "application/octet-stream", "documents/file_9.pdf")})
    fetcher = MediaFetcher(telegram)

    attachment = await fetcher.fetch_attachment(AttachmentRef(kind="document", file_id="F1"))

    assert attachment.data == b"%PDF-1.4 body"
    assert attachment.declared_mime_type == "application/octet-stream"
    assert attachment.resolved_mime_type == "application/pdf"


@pytest.mark.asyncio
async def test_platform_declared_type_wins(make_telegram):
    telegram = make_telegram(files={"P1": (b"\xff\xd8\xffjpeg", "application/octet-stream", "photos/file_2")})
    fetcher = MediaFetcher(telegram)

    attachment = await fetcher.fetch_attachment(AttachmentRef(kind="photo", file_id="P1", declared_mime_type="image/jpeg"))

    assert attachment.resolved_mime_type == "image/jpeg"
    assert attachment.kind == "photo"


@pytest.mark.asyncio
async def test_unnamed_download_is_sniffed(make_telegram):
    telegram = make_telegram(files={"D1": (b"%PDF-1.7", None, "documents/file_4")})
    fetcher = MediaFetcher(telegram)

    attachment = await fetcher.fetch_attachment(AttachmentRef(kind="document", file_id="D1"))

    assert attachment.resolved_mime_type == "application/pdf"


@pytest.mark.asyncio
async def test_oversized_file_is_rejected(make_telegram):
    telegram = make_telegram(files={"BIG": (b"x" * 100, "application/pdf", "documents/big.pdf")})
    fetcher = MediaFetcher(telegram, max_bytes=10)

    with pytest.raises(FileProcessingError):
        await fetcher.fetch("BIG")


@pytest.mark.asyncio
async def test_not_found_propagates(make_telegram):
    telegram = make_telegram()
    telegram.fetch_error = NotFoundError("expired")

    with pytest.raises(NotFoundError):
        await MediaFetcher(telegram).fetch("OLD")
