"""
Inbound update parsing and MIME classification.

Turns a raw Telegram webhook update into an :class:`InboundMessage` (identity,
text or caption, at most one attachment reference) and resolves the MIME type
of downloaded media when the platform metadata is generic or missing.
"""

from __future__ import annotations

import mimetypes
import re
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Dict, Optional

from .identity import ConversationIdentity
from .utils.logging import get_logger

logger = get_logger(__name__)

_RESET_COMMAND = re.compile(r"^/(reset|start)(@\w+)?$", re.IGNORECASE)

GENERIC_MIME_TYPES = frozenset({"", "application/octet-stream", "binary/octet-stream", "application/unknown"})

# (magic prefix, MIME type) pairs checked in order
_MAGIC_NUMBERS = (
    (b"%PDF", "application/pdf"),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"OggS", "audio/ogg"),
    (b"ID3", "audio/mpeg"),
)

# Telegram voice notes are OGG/Opus without a file name
mimetypes.add_type("audio/ogg", ".oga")
mimetypes.add_type("audio/ogg", ".ogg")


class InputModality(Enum):
    """Defines the class of an attachment for extraction routing."""

    TEXT_ONLY = auto()
    IMAGE = auto()
    PDF_DOCUMENT = auto()
    AUDIO = auto()
    UNKNOWN = auto()


@dataclass(frozen=True)
class AttachmentRef:
    """Reference to a platform-hosted file, resolved later by the media fetcher."""

    kind: str  # photo | voice | audio | document
    file_id: str
    declared_mime_type: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = None


@dataclass(frozen=True)
class InboundMessage:
    identity: ConversationIdentity
    message_id: Optional[int]
    text: str
    attachment: Optional[AttachmentRef] = None

    @property
    def is_reset(self) -> bool:
        return is_reset_command(self.text)

    @property
    def is_empty(self) -> bool:
        return not self.text.strip() and self.attachment is None


def is_reset_command(text: Optional[str]) -> bool:
    return bool(text) and bool(_RESET_COMMAND.match(text.strip()))


def _attachment_from_message(message: Dict[str, Any]) -> Optional[AttachmentRef]:
    photos = message.get("photo")
    if photos:
        # Sizes are ordered smallest to largest
        largest = photos[-1]
        return AttachmentRef(
            kind="photo",
            file_id=largest["file_id"],
            declared_mime_type="image/jpeg",
            file_size=largest.get("file_size"),
        )

    for kind in ("document", "audio", "voice"):
        media = message.get(kind)
        if media and media.get("file_id"):
            return AttachmentRef(
                kind=kind,
                file_id=media["file_id"],
                declared_mime_type=media.get("mime_type") or ("audio/ogg" if kind == "voice" else None),
                file_name=media.get("file_name"),
                file_size=media.get("file_size"),
            )
    return None


def parse_update(update: Dict[str, Any]) -> Optional[InboundMessage]:
    """
    Extract the parts of a webhook update the bridge acts on.

    Returns None for updates without a message (edits, callbacks, channel posts)
    or without a usable chat identity.
    """
    if not isinstance(update, dict):
        return None

    message = update.get("message")
    if not isinstance(message, dict):
        return None

    chat = message.get("chat") or {}
    chat_id = chat.get("id")
    if chat_id is None:
        logger.debug("Update without chat id ignored", extra={"subsys": "ingest", "event": "parse.no_chat"})
        return None

    sender = message.get("from") or {}
    user_id = sender.get("id", chat_id)

    text = message.get("text") or message.get("caption") or ""
    try:
        attachment = _attachment_from_message(message)
    except (KeyError, TypeError, IndexError) as e:
        logger.warning(f"Malformed attachment in update: {e}", extra={"subsys": "ingest", "event": "parse.bad_attachment"})
        attachment = None

    return InboundMessage(
        identity=ConversationIdentity(chat_id=int(chat_id), user_id=int(user_id)),
        message_id=message.get("message_id"),
        text=text,
        attachment=attachment,
    )


def sniff_mime_type(data: bytes) -> Optional[str]:
    """Detect a MIME type from the leading magic number, if recognised."""
    head = data[:16]
    for magic, mime in _MAGIC_NUMBERS:
        if head.startswith(magic):
            return mime
    if head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return "image/webp"
    return None


def resolve_mime_type(declared: Optional[str], name_hint: Optional[str], data: bytes = b"") -> str:
    """
    Pick the MIME type to trust for an attachment.

    A specific declared type wins. Generic placeholders such as
    ``application/octet-stream`` are overridden from the file name or path
    extension, then from the content's magic number.
    """
    declared = (declared or "").split(";")[0].strip().lower()
    if declared not in GENERIC_MIME_TYPES:
        return declared

    if name_hint:
        guessed, _ = mimetypes.guess_type(name_hint)
        if guessed:
            return guessed

    sniffed = sniff_mime_type(data) if data else None
    return sniffed or "application/octet-stream"


def classify_mime(mime_type: str) -> InputModality:
    if mime_type == "application/pdf":
        return InputModality.PDF_DOCUMENT
    if mime_type.startswith("image/"):
        return InputModality.IMAGE
    if mime_type.startswith("audio/"):
        return InputModality.AUDIO
    return InputModality.UNKNOWN
