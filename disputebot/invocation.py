"""
Invocation adapter: drives the reasoning service for one turn. [REH]

State machine per invocation:

    ATTEMPT(n) --non-empty reply--> DONE
    ATTEMPT(n) --empty / error, n < max_retries--> ATTEMPT(n+1)
    ATTEMPT(n) --empty / error, n == max_retries--> BLOCKED | FAILED

Retries resend the original turn with one extra neutral rephrasing appended,
cycling through the configured set; rephrasings never compound. Empty output
is read as the service filtering the content, so BLOCKED answers with a fixed
fallback message instead of an empty string. FAILED is reserved for every
attempt timing out, which is answered with the technical-error reply.
Exceptions never escape ``invoke``.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from .exceptions import EmptyResponseError, TransientNetworkError
from .prompts import PromptTemplates
from .reasoning import ReasoningService
from .turn_builder import ConversationTurn
from .utils.logging import get_logger

logger = get_logger(__name__)

FragmentCallback = Callable[[str], Awaitable[None]]


class InvocationState(Enum):
    ATTEMPT = "attempt"
    DONE = "done"
    BLOCKED = "blocked"
    FAILED = "failed"


@dataclass
class InvocationResult:
    text: str
    state: InvocationState
    attempts: int
    errors: List[str] = field(default_factory=list)


class ReplyAccumulator:
    """Growing reply text for one attempt."""

    def __init__(self) -> None:
        self._parts: List[str] = []
        self.text = ""

    def add(self, fragment: str) -> str:
        self._parts.append(fragment)
        self.text = "".join(self._parts)
        return self.text

    @property
    def is_empty(self) -> bool:
        return not self.text.strip()


class InvocationAdapter:
    def __init__(
        self,
        service: ReasoningService,
        templates: PromptTemplates,
        max_retries: int = 2,
        attempt_timeout_s: float = 60.0,
        retry_delay_s: float = 0.5,
    ):
        self.service = service
        self.templates = templates
        self.max_retries = max_retries
        self.attempt_timeout_s = attempt_timeout_s
        self.retry_delay_s = retry_delay_s

    def turn_for_attempt(self, turn: ConversationTurn, attempt: int) -> ConversationTurn:
        if attempt == 0:
            return turn
        return turn.with_appended_text(self.templates.retry_phrasing(attempt))

    async def _consume(
        self,
        handle: str,
        turn: ConversationTurn,
        on_fragment: Optional[FragmentCallback],
    ) -> str:
        accumulator = ReplyAccumulator()
        async for fragment in self.service.submit(handle, turn):
            if not fragment:
                continue
            text = accumulator.add(fragment)
            if on_fragment is not None:
                await on_fragment(text)
        if accumulator.is_empty:
            raise EmptyResponseError("Reasoning service returned no text")
        return accumulator.text

    async def run(
        self,
        handle: str,
        turn: ConversationTurn,
        on_fragment: Optional[FragmentCallback] = None,
    ) -> InvocationResult:
        errors: List[str] = []
        timeouts = 0
        attempt = 0

        while True:
            started = time.monotonic()
            try:
                reply = await asyncio.wait_for(
                    self._consume(handle, self.turn_for_attempt(turn, attempt), on_fragment),
                    timeout=self.attempt_timeout_s,
                )
                logger.info(
                    f"✅ Reply of {len(reply)} chars on attempt {attempt + 1} in {(time.monotonic() - started) * 1000:.0f}ms",
                    extra={"subsys": "invoke", "event": "invoke.done"},
                )
                return InvocationResult(text=reply, state=InvocationState.DONE, attempts=attempt + 1, errors=errors)
            except EmptyResponseError as e:
                errors.append(str(e))
                logger.warning(f"Empty reply on attempt {attempt + 1}", extra={"subsys": "invoke", "event": "invoke.empty"})
            except (asyncio.TimeoutError, TransientNetworkError) as e:
                timeouts += 1
                errors.append(f"{type(e).__name__}: {e}")
                logger.warning(f"Attempt {attempt + 1} timed out or lost connection: {e}", extra={"subsys": "invoke", "event": "invoke.timeout"})
            except Exception as e:
                errors.append(f"{type(e).__name__}: {e}")
                logger.error(f"Attempt {attempt + 1} failed mid-stream: {e}", exc_info=True, extra={"subsys": "invoke", "event": "invoke.error"})

            if attempt >= self.max_retries:
                break
            attempt += 1
            if self.retry_delay_s > 0:
                await asyncio.sleep(self.retry_delay_s)

        attempts = attempt + 1
        if timeouts == attempts:
            logger.error(f"All {attempts} attempts timed out", extra={"subsys": "invoke", "event": "invoke.failed"})
            return InvocationResult(
                text=self.templates.reply("technical_error"),
                state=InvocationState.FAILED,
                attempts=attempts,
                errors=errors,
            )

        logger.warning(f"🚫 No usable reply after {attempts} attempts; blocked", extra={"subsys": "invoke", "event": "invoke.blocked"})
        return InvocationResult(
            text=self.templates.reply("blocked_fallback"),
            state=InvocationState.BLOCKED,
            attempts=attempts,
            errors=errors,
        )

    async def invoke(
        self,
        handle: str,
        turn: ConversationTurn,
        on_fragment: Optional[FragmentCallback] = None,
    ) -> str:
        """Return the final reply text for ``turn``; never empty, never raises."""
        return (await self.run(handle, turn, on_fragment)).text
