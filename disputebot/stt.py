"""
Speech-to-text for voice notes and audio attachments via the OpenAI
transcription endpoint. Disabled unless STT_ENABLE is set.
"""
from __future__ import annotations

import mimetypes
from typing import Optional

import httpx
import openai

from .exceptions import ExtractionFailure
from .utils.logging import get_logger

logger = get_logger(__name__)


class Transcriber:
    def __init__(self, client: openai.AsyncOpenAI, model: str = "whisper-1"):
        self.client = client
        self.model = model

    async def transcribe(self, data: bytes, mime_type: str, file_name: Optional[str] = None) -> str:
        extension = mimetypes.guess_extension(mime_type) or ".ogg"
        name = file_name or f"voice{extension}"
        try:
            result = await self.client.audio.transcriptions.create(
                model=self.model,
                file=(name, data, mime_type),
            )
        except (openai.OpenAIError, httpx.HTTPError) as e:
            raise ExtractionFailure(f"Transcription failed: {type(e).__name__}: {e}") from e

        text = (getattr(result, "text", "") or "").strip()
        logger.info(f"👂 Transcribed {len(data)} bytes into {len(text)} chars", extra={"subsys": "stt"})
        return text
