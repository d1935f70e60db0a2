"""
Reasoning service boundary.

The dialogue agent is a black box: it owns remote sessions and answers a turn
with a lazy, one-shot stream of text fragments. :class:`ReasoningService` is
the seam the session registry and invocation adapter depend on; the OpenAI
implementation maps sessions onto server-side Conversations and turns onto
streamed Responses.
"""
from __future__ import annotations

import abc
import base64
from typing import Any, AsyncIterator, Dict, List

import httpx
import openai

from .exceptions import APIError, TransientNetworkError
from .identity import ConversationIdentity
from .turn_builder import ConversationTurn, MediaPart, TextPart
from .utils.logging import get_logger

logger = get_logger(__name__)

INLINE_IMAGE_TYPES = frozenset({"image/jpeg", "image/png", "image/gif", "image/webp"})


class ReasoningService(abc.ABC):
    @abc.abstractmethod
    async def create_session(self, identity: ConversationIdentity) -> str:
        raise NotImplementedError()

    @abc.abstractmethod
    async def delete_session(self, handle: str) -> None:
        raise NotImplementedError()

    @abc.abstractmethod
    def submit(self, handle: str, turn: ConversationTurn) -> AsyncIterator[str]:
        """Send ``turn`` within session ``handle`` and stream back text fragments."""
        raise NotImplementedError()


def _data_url(part: MediaPart) -> str:
    return f"data:{part.mime_type};base64,{base64.b64encode(part.data).decode('ascii')}"


def turn_to_input_content(turn: ConversationTurn) -> List[Dict[str, Any]]:
    """Map a turn onto Responses API input content, preserving part order."""
    content: List[Dict[str, Any]] = []
    for part in turn.parts:
        if isinstance(part, TextPart):
            content.append({"type": "input_text", "text": part.text})
        elif part.mime_type in INLINE_IMAGE_TYPES:
            content.append({"type": "input_image", "image_url": _data_url(part)})
        elif part.mime_type == "application/pdf":
            content.append({
                "type": "input_file",
                "filename": part.file_name or "document.pdf",
                "file_data": _data_url(part),
            })
        else:
            logger.debug(f"No inline representation for {part.mime_type}; sending text only", extra={"subsys": "reasoning"})
    return content


def _translate_error(action: str, error: Exception) -> APIError:
    if isinstance(error, (openai.APITimeoutError, openai.APIConnectionError, httpx.TimeoutException)):
        return TransientNetworkError(f"{action} failed: {type(error).__name__}")
    if isinstance(error, openai.RateLimitError):
        return TransientNetworkError(f"{action} rate limited: {error}")
    return APIError(f"{action} failed: {type(error).__name__}: {error}")


class OpenAIReasoningService(ReasoningService):
    """Reasoning service backed by OpenAI Conversations + streamed Responses."""

    def __init__(self, client: openai.AsyncOpenAI, model: str, instructions: str):
        self.client = client
        self.model = model
        self.instructions = instructions

    @staticmethod
    def build_client(config: Dict[str, Any]) -> openai.AsyncOpenAI:
        return openai.AsyncOpenAI(
            api_key=config.get("OPENAI_API_KEY"),
            base_url=config.get("OPENAI_API_BASE") or "https://api.openai.com/v1",
            timeout=httpx.Timeout(float(config.get("TEXTGEN_TIMEOUT_SECONDS", 60.0))),
            max_retries=0,  # The invocation adapter owns retries
        )

    async def create_session(self, identity: ConversationIdentity) -> str:
        try:
            conversation = await self.client.conversations.create(metadata={"conversation": identity.key})
        except (openai.OpenAIError, httpx.HTTPError) as e:
            raise _translate_error("Conversation create", e) from e
        logger.info(f"🆕 Conversation {conversation.id} created", extra=identity.log_extra(subsys="reasoning", event="session.create"))
        return conversation.id

    async def delete_session(self, handle: str) -> None:
        try:
            await self.client.conversations.delete(handle)
        except (openai.OpenAIError, httpx.HTTPError) as e:
            raise _translate_error("Conversation delete", e) from e
        logger.info(f"🗑️ Conversation {handle} deleted", extra={"subsys": "reasoning", "event": "session.delete"})

    async def submit(self, handle: str, turn: ConversationTurn) -> AsyncIterator[str]:
        try:
            stream = await self.client.responses.create(
                model=self.model,
                conversation=handle,
                instructions=self.instructions,
                input=[{"role": "user", "content": turn_to_input_content(turn)}],
                stream=True,
            )
            async for event in stream:
                if event.type == "response.output_text.delta":
                    if event.delta:
                        yield event.delta
                elif event.type == "response.refusal.delta":
                    logger.info("Model refusal streamed; treating as empty output", extra={"subsys": "reasoning", "event": "response.refusal"})
                elif event.type == "response.failed":
                    error = getattr(event.response, "error", None)
                    raise APIError(f"Response failed: {getattr(error, 'message', 'unknown error')}")
                elif event.type == "error":
                    raise APIError(f"Response stream error: {getattr(event, 'message', 'unknown error')}")
                elif event.type == "response.incomplete":
                    details = getattr(event.response, "incomplete_details", None)
                    logger.warning(f"Response incomplete: {getattr(details, 'reason', 'unknown')}", extra={"subsys": "reasoning"})
        except (openai.OpenAIError, httpx.HTTPError) as e:
            raise _translate_error("Response stream", e) from e
