"""
Turn-processing controller.

Receives parsed webhook updates and drives one turn end to end: reset command,
per-conversation serialization, media fetch, extraction, turn assembly,
invocation and delivery. This is the error boundary; nothing raised below it
escapes ``handle_update``.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .dispatcher import ReplyDispatcher
from .exceptions import FileProcessingError, NotFoundError, TransientNetworkError
from .extractor import ContentExtractor
from .invocation import InvocationAdapter
from .media_fetcher import Attachment, MediaFetcher
from .modality import InboundMessage, parse_update
from .prompts import PromptTemplates
from .session_registry import SessionRegistry
from .telegram_client import TelegramClient
from .turn_builder import TurnBuilder
from .utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class TurnOutcome:
    """What happened to one inbound message; returned for observability and tests."""

    status: str  # ignored | reset | empty | delivered | media_error | error
    reply: Optional[str] = None
    invoked: bool = False


class BotController:
    def __init__(
        self,
        telegram: TelegramClient,
        registry: SessionRegistry,
        fetcher: MediaFetcher,
        extractor: ContentExtractor,
        builder: TurnBuilder,
        adapter: InvocationAdapter,
        dispatcher: ReplyDispatcher,
        templates: PromptTemplates,
        streaming: bool = True,
        typing_indicator: bool = True,
    ):
        self.telegram = telegram
        self.registry = registry
        self.fetcher = fetcher
        self.extractor = extractor
        self.builder = builder
        self.adapter = adapter
        self.dispatcher = dispatcher
        self.templates = templates
        self.streaming = streaming
        self.typing_indicator = typing_indicator

    async def handle_update(self, update: Dict[str, Any]) -> TurnOutcome:
        """Process one webhook update. Never raises."""
        try:
            message = parse_update(update)
        except Exception as e:
            logger.error(f"Could not parse update: {e}", exc_info=True, extra={"subsys": "controller"})
            return TurnOutcome("ignored")

        if message is None:
            return TurnOutcome("ignored")

        try:
            return await self.process_message(message)
        except Exception as e:
            logger.error(
                f"🚨 Turn failed: {e}",
                exc_info=True,
                extra=message.identity.log_extra(subsys="controller", event="turn.error"),
            )
            reply = self.templates.reply("technical_error")
            await self._safe_send(message, reply)
            return TurnOutcome("error", reply=reply)

    async def _safe_send(self, message: InboundMessage, text: str) -> None:
        try:
            await self.dispatcher.deliver(text, message.identity, streaming=False)
        except Exception as e:
            logger.error(
                f"Could not deliver error reply: {e}",
                extra=message.identity.log_extra(subsys="controller", event="deliver.failed"),
            )

    async def process_message(self, message: InboundMessage) -> TurnOutcome:
        identity = message.identity

        if message.is_reset:
            reply = self.templates.reply("reset_ack")

            async def acknowledge(_existed: bool) -> None:
                await self.dispatcher.deliver(reply, identity, streaming=False)

            existed = await self.registry.reset(identity, then=acknowledge)
            logger.info(
                f"🔄 Reset handled (session existed: {existed})",
                extra=identity.log_extra(subsys="controller", event="turn.reset"),
            )
            return TurnOutcome("reset", reply=reply)

        if message.is_empty:
            return TurnOutcome("empty")

        start = time.monotonic()
        async with self.registry.session(identity) as handle:
            if self.typing_indicator:
                async with self.telegram.typing(identity.chat_id):
                    outcome = await self._run_turn(message, handle)
            else:
                outcome = await self._run_turn(message, handle)

        logger.info(
            f"🏁 Turn {outcome.status} in {(time.monotonic() - start) * 1000:.0f}ms",
            extra=identity.log_extra(subsys="controller", event=f"turn.{outcome.status}"),
        )
        return outcome

    async def _collect_attachments(self, message: InboundMessage) -> List[Attachment]:
        if message.attachment is None:
            return []
        return [await self.fetcher.fetch_attachment(message.attachment)]

    async def _run_turn(self, message: InboundMessage, handle: str) -> TurnOutcome:
        identity = message.identity

        try:
            attachments = await self._collect_attachments(message)
        except TransientNetworkError as e:
            logger.warning(f"Media download failed: {e}", extra=identity.log_extra(subsys="controller", event="media.transient"))
            reply = self.templates.reply("technical_error")
            await self.dispatcher.deliver(reply, identity)
            return TurnOutcome("media_error", reply=reply)
        except (NotFoundError, FileProcessingError) as e:
            logger.warning(f"Media unavailable: {e}", extra=identity.log_extra(subsys="controller", event="media.not_found"))
            reply = self.templates.reply("unsupported_file")
            await self.dispatcher.deliver(reply, identity)
            return TurnOutcome("media_error", reply=reply)

        excerpts = [
            await self.extractor.extract(att.data, att.resolved_mime_type, att.file_name)
            for att in attachments
        ]

        turn = self.builder.build(message.text, attachments, excerpts)
        if turn.is_empty:
            return TurnOutcome("empty")

        on_fragment = None
        if self.streaming:
            on_fragment = self.dispatcher.open_stream(identity).push
        try:
            reply = await self.adapter.invoke(handle, turn, on_fragment)
            await self.dispatcher.deliver(reply, identity, streaming=self.streaming)
        finally:
            self.dispatcher.discard_stream(identity)

        return TurnOutcome("delivered", reply=reply, invoked=True)
