"""
Media fetcher: resolves a platform file handle to raw bytes and a MIME type.

No retries happen here; ``TransientNetworkError`` is surfaced for the caller to
decide, ``NotFoundError`` when the handle is invalid or expired.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Optional

from .exceptions import FileProcessingError
from .modality import AttachmentRef, resolve_mime_type
from .telegram_client import TelegramClient
from .utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class FetchedMedia:
    data: bytes
    declared_mime_type: Optional[str]
    source_path: str


@dataclass(frozen=True)
class Attachment:
    """Downloaded attachment with both the declared and the trusted MIME type."""

    data: bytes
    declared_mime_type: Optional[str]
    resolved_mime_type: str
    file_name: Optional[str] = None
    kind: str = "document"


class MediaFetcher:
    """Downloads Telegram-hosted files within a size budget."""

    def __init__(self, telegram: TelegramClient, max_bytes: int = 20 * 1024 * 1024):
        self.telegram = telegram
        self.max_bytes = max_bytes

    async def fetch(self, file_handle: str) -> FetchedMedia:
        """Resolve ``file_handle`` through getFile and download the body."""
        start = time.monotonic()
        info = await self.telegram.get_file(file_handle)

        size = info.get("file_size")
        if size and size > self.max_bytes:
            raise FileProcessingError(f"File is {size} bytes, limit is {self.max_bytes}")

        data, content_type = await self.telegram.download_file(info["file_path"])
        if len(data) > self.max_bytes:
            raise FileProcessingError(f"Downloaded {len(data)} bytes, limit is {self.max_bytes}")

        logger.info(
            f"📥 Fetched {len(data)} bytes in {(time.monotonic() - start) * 1000:.0f}ms",
            extra={"subsys": "media", "event": "fetch.ok"},
        )
        return FetchedMedia(data=data, declared_mime_type=content_type, source_path=info["file_path"])

    async def fetch_attachment(self, ref: AttachmentRef) -> Attachment:
        """Fetch ``ref`` and resolve the MIME type the extractor should trust."""
        fetched = await self.fetch(ref.file_id)

        # The platform's declared type wins over the download's Content-Type,
        # which is usually a generic octet-stream.
        declared = ref.declared_mime_type or fetched.declared_mime_type
        resolved = resolve_mime_type(declared, ref.file_name or fetched.source_path, fetched.data)
        if resolved != (declared or "").lower():
            logger.debug(
                f"MIME override: declared={declared!r} resolved={resolved!r}",
                extra={"subsys": "media", "event": "mime.override"},
            )

        return Attachment(
            data=fetched.data,
            declared_mime_type=declared,
            resolved_mime_type=resolved,
            file_name=ref.file_name,
            kind=ref.kind,
        )
