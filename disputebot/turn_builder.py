"""
Turn builder: assembles one conversation turn from user text, attachments and
their extracted excerpts.

Media parts always precede the text part so the reasoning service reads the
media before the instructions appended for it.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple, Union

from .media_fetcher import Attachment
from .prompts import PromptTemplates


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class MediaPart:
    data: bytes
    mime_type: str
    file_name: Optional[str] = None


Part = Union[TextPart, MediaPart]


@dataclass(frozen=True)
class ConversationTurn:
    parts: Tuple[Part, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.parts

    @property
    def media_parts(self) -> Tuple[MediaPart, ...]:
        return tuple(p for p in self.parts if isinstance(p, MediaPart))

    @property
    def text(self) -> str:
        return "\n\n".join(p.text for p in self.parts if isinstance(p, TextPart))

    def with_appended_text(self, suffix: str) -> "ConversationTurn":
        """Copy of this turn with ``suffix`` appended to its text part."""
        parts = list(self.parts)
        for i in range(len(parts) - 1, -1, -1):
            if isinstance(parts[i], TextPart):
                parts[i] = TextPart(f"{parts[i].text}\n\n{suffix}")
                return ConversationTurn(tuple(parts))
        return ConversationTurn(tuple(parts) + (TextPart(suffix),))


class TurnBuilder:
    def __init__(self, templates: PromptTemplates):
        self.templates = templates

    def build(
        self,
        user_text: str,
        attachments: Sequence[Attachment] = (),
        excerpts: Sequence[str] = (),
    ) -> ConversationTurn:
        """
        Build a turn. ``excerpts[i]`` is the extracted text of ``attachments[i]``.

        An empty turn means there is nothing to process.
        """
        text = (user_text or "").strip()
        if not attachments and not text:
            return ConversationTurn()

        if attachments and not text:
            text = self.templates.placeholder

        blocks = [
            self.templates.render_attachment_block(att.resolved_mime_type, excerpt)
            for att, excerpt in zip(attachments, excerpts)
            if excerpt
        ]
        if blocks:
            text = "\n\n".join([text, *blocks, self.templates.field_instruction])

        media = tuple(
            MediaPart(data=att.data, mime_type=att.resolved_mime_type, file_name=att.file_name)
            for att in attachments
        )
        return ConversationTurn(media + (TextPart(text),))
