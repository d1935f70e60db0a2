"""
Reply dispatcher: one-shot sends and streamed edits of a single message. [REH][CA]

Streaming keeps one-message discipline: the first flush sends a message and
every later flush edits that same message id. Flushes happen once the reply
grew by ``min_chars`` or ``max_buffer_ms`` passed with pending text, and edits
are spaced at least ``min_edit_interval_ms`` apart. Intermediate edit failures
(rate limits, transient errors) are swallowed; ``finish`` guarantees the final
text with one last edit-or-send, deleting the partial message when a fresh
send had to replace it.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Dict, List, Optional

from .exceptions import APIError
from .identity import ConversationIdentity
from .telegram_client import TELEGRAM_MAX_MESSAGE_CHARS, TelegramClient, is_not_modified_error
from .utils.logging import get_logger

logger = get_logger(__name__)

# Longest wait honoured for a rate-limited final edit
MAX_FINAL_RETRY_AFTER_S = 5.0


def split_message(text: str, limit: int = TELEGRAM_MAX_MESSAGE_CHARS) -> List[str]:
    """Split ``text`` into chunks of at most ``limit`` chars, preferring paragraph and line breaks."""
    chunks: List[str] = []
    remaining = text
    while len(remaining) > limit:
        window = remaining[:limit]
        cut = window.rfind("\n\n")
        if cut < limit // 2:
            cut = window.rfind("\n")
        if cut < limit // 2:
            cut = window.rfind(" ")
        if cut <= 0:
            cut = limit
        chunks.append(remaining[:cut].rstrip())
        remaining = remaining[cut:].lstrip()
    if remaining or not chunks:
        chunks.append(remaining)
    return chunks


class ReplyStream:
    """Incremental delivery of one reply into a single Telegram message."""

    def __init__(
        self,
        telegram: TelegramClient,
        chat_id: int,
        min_chars: int = 150,
        max_buffer_ms: float = 1500,
        min_edit_interval_ms: float = 700,
        reply_to_message_id: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.telegram = telegram
        self.chat_id = chat_id
        self.min_chars = min_chars
        self.max_buffer_s = max_buffer_ms / 1000.0
        self.min_edit_interval_s = min_edit_interval_ms / 1000.0
        self.reply_to_message_id = reply_to_message_id
        self.clock = clock

        self.message_id: Optional[int] = None
        self.shown_text = ""
        self.edit_count = 0
        self.last_flush = clock()
        self.finished = False

    async def push(self, accumulated: str) -> None:
        """Offer the reply so far; flushes only when thresholds allow."""
        if self.finished:
            return
        now = self.clock()
        grown = len(accumulated) - len(self.shown_text)
        due = grown >= self.min_chars or (accumulated != self.shown_text and now - self.last_flush >= self.max_buffer_s)
        if not due:
            return
        if self.message_id is not None and now - self.last_flush < self.min_edit_interval_s:
            return
        await self._flush(accumulated)

    async def _flush(self, text: str) -> None:
        visible = text[:TELEGRAM_MAX_MESSAGE_CHARS]
        try:
            if self.message_id is None:
                self.message_id = await self.telegram.send_message(
                    self.chat_id, visible, reply_to_message_id=self.reply_to_message_id
                )
            else:
                await self.telegram.edit_message_text(self.chat_id, self.message_id, visible)
                self.edit_count += 1
            self.shown_text = text
        except Exception as e:
            if not is_not_modified_error(e):
                logger.debug(f"Intermediate stream update dropped: {e}", extra={"subsys": "dispatch", "chat_id": self.chat_id})
        finally:
            self.last_flush = self.clock()

    async def _final_edit(self, text: str) -> bool:
        for attempt in range(2):
            try:
                await self.telegram.edit_message_text(self.chat_id, self.message_id, text)
                self.edit_count += 1
                return True
            except APIError as e:
                if is_not_modified_error(e):
                    return True
                if attempt == 0 and e.retry_after is not None:
                    await asyncio.sleep(min(e.retry_after, MAX_FINAL_RETRY_AFTER_S))
                    continue
                logger.warning(f"Final edit failed: {e}", extra={"subsys": "dispatch", "chat_id": self.chat_id})
                return False
        return False

    async def _drop_partial(self, message_id: int) -> None:
        """Remove a partial message superseded by the fallback send (best effort)."""
        try:
            await self.telegram.delete_message(self.chat_id, message_id)
        except Exception as e:
            logger.debug(f"Stale partial {message_id} not deleted: {e}", extra={"subsys": "dispatch", "chat_id": self.chat_id})

    async def finish(self, final_text: str) -> None:
        """Make ``final_text`` the visible terminal state of this reply."""
        self.finished = True
        chunks = split_message(final_text)
        first, rest = chunks[0], chunks[1:]

        if self.message_id is None or not await self._final_edit(first):
            stale_id = self.message_id
            self.message_id = await self.telegram.send_message(
                self.chat_id, first, reply_to_message_id=self.reply_to_message_id
            )
            if stale_id is not None:
                await self._drop_partial(stale_id)
        self.shown_text = first

        for chunk in rest:
            await self.telegram.send_message(self.chat_id, chunk)

        logger.info(
            f"📤 Reply delivered ({len(final_text)} chars, {self.edit_count} edit(s), {len(chunks)} message(s))",
            extra={"subsys": "dispatch", "event": "deliver.stream", "chat_id": self.chat_id},
        )


class ReplyDispatcher:
    def __init__(
        self,
        telegram: TelegramClient,
        min_chars: int = 150,
        max_buffer_ms: float = 1500,
        min_edit_interval_ms: float = 700,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.telegram = telegram
        self.min_chars = min_chars
        self.max_buffer_ms = max_buffer_ms
        self.min_edit_interval_ms = min_edit_interval_ms
        self.clock = clock
        self._streams: Dict[ConversationIdentity, ReplyStream] = {}

    @classmethod
    def from_config(cls, telegram: TelegramClient, config: Dict[str, Any]) -> "ReplyDispatcher":
        return cls(
            telegram,
            min_chars=config.get("STREAMING_MIN_CHARS", 150),
            max_buffer_ms=config.get("STREAMING_MAX_BUFFER_MS", 1500),
            min_edit_interval_ms=config.get("EDIT_COALESCE_MIN_MS", 700),
        )

    def open_stream(self, identity: ConversationIdentity, reply_to_message_id: Optional[int] = None) -> ReplyStream:
        stream = ReplyStream(
            self.telegram,
            identity.chat_id,
            min_chars=self.min_chars,
            max_buffer_ms=self.max_buffer_ms,
            min_edit_interval_ms=self.min_edit_interval_ms,
            reply_to_message_id=reply_to_message_id,
            clock=self.clock,
        )
        self._streams[identity] = stream
        return stream

    def discard_stream(self, identity: ConversationIdentity) -> Optional[ReplyStream]:
        return self._streams.pop(identity, None)

    async def deliver(
        self,
        reply_text: str,
        identity: ConversationIdentity,
        streaming: bool = False,
        reply_to_message_id: Optional[int] = None,
    ) -> None:
        """Deliver the final reply, finishing the open stream when streaming."""
        stream = self._streams.pop(identity, None)
        if streaming and stream is not None:
            await stream.finish(reply_text)
            return

        chunks = split_message(reply_text)
        for i, chunk in enumerate(chunks):
            await self.telegram.send_message(
                identity.chat_id, chunk, reply_to_message_id=reply_to_message_id if i == 0 else None
            )
        logger.info(
            f"📤 Reply sent ({len(reply_text)} chars, {len(chunks)} message(s))",
            extra=identity.log_extra(subsys="dispatch", event="deliver.send"),
        )
