"""
Session registry: one live agent session per conversation. [CA][RM]

Maps a ConversationIdentity to a remote session handle, rotating it after an
idle timeout. Every operation for an identity runs under that identity's lock,
so concurrent turns from one conversation cannot create two remote sessions or
race an expiry against an in-flight turn. asyncio.Lock wakes waiters in FIFO
order, which keeps turns for one conversation in arrival order.
"""
from __future__ import annotations

import asyncio
import contextlib
import time
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional

from .identity import ConversationIdentity
from .reasoning import ReasoningService
from .utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class Session:
    identity: ConversationIdentity
    handle: str
    last_activity: float


class SessionRegistry:
    def __init__(
        self,
        service: ReasoningService,
        idle_timeout_s: float = 180.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.service = service
        self.idle_timeout_s = idle_timeout_s
        self.clock = clock
        self._sessions: Dict[ConversationIdentity, Session] = {}
        self._locks: Dict[ConversationIdentity, asyncio.Lock] = {}
        self._lock_users: Dict[ConversationIdentity, int] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, identity: ConversationIdentity) -> Optional[Session]:
        """Peek at the current session without touching it."""
        return self._sessions.get(identity)

    @contextlib.asynccontextmanager
    async def _locked(self, identity: ConversationIdentity) -> AsyncIterator[None]:
        # Reference-count lock users so the table only holds identities with
        # a holder or a waiter.
        lock = self._locks.get(identity)
        if lock is None:
            lock = self._locks[identity] = asyncio.Lock()
        self._lock_users[identity] = self._lock_users.get(identity, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._lock_users[identity] - 1
            if remaining:
                self._lock_users[identity] = remaining
            else:
                del self._lock_users[identity]
                del self._locks[identity]

    def _is_expired(self, session: Session, now: float) -> bool:
        return now - session.last_activity > self.idle_timeout_s

    async def _discard(self, session: Session, reason: str) -> None:
        """Drop a session locally and delete it remotely (best effort)."""
        self._sessions.pop(session.identity, None)
        try:
            await self.service.delete_session(session.handle)
        except Exception as e:
            logger.warning(
                f"Remote delete of {session.handle} failed ({reason}): {e}",
                extra=session.identity.log_extra(subsys="sessions", event="session.delete_failed"),
            )

    async def _ensure_locked(self, identity: ConversationIdentity) -> str:
        now = self.clock()
        session = self._sessions.get(identity)

        if session is not None and self._is_expired(session, now):
            logger.info(
                f"⌛ Session for {identity} idle {now - session.last_activity:.0f}s; rotating",
                extra=identity.log_extra(subsys="sessions", event="session.expired"),
            )
            await self._discard(session, "expired")
            session = None

        if session is None:
            handle = await self.service.create_session(identity)
            session = Session(identity=identity, handle=handle, last_activity=now)
            self._sessions[identity] = session

        session.last_activity = self.clock()
        return session.handle

    async def ensure_session(self, identity: ConversationIdentity) -> str:
        """Return the live session handle for ``identity``, creating or rotating it."""
        async with self._locked(identity):
            return await self._ensure_locked(identity)

    @contextlib.asynccontextmanager
    async def session(self, identity: ConversationIdentity) -> AsyncIterator[str]:
        """
        Hold ``identity`` for a whole turn and yield its session handle.

        Later turns for the same identity wait until the block exits; the
        session's activity timestamp is refreshed again on exit.
        """
        async with self._locked(identity):
            handle = await self._ensure_locked(identity)
            try:
                yield handle
            finally:
                current = self._sessions.get(identity)
                if current is not None and current.handle == handle:
                    current.last_activity = self.clock()

    async def reset(
        self,
        identity: ConversationIdentity,
        then: Optional[Callable[[bool], Awaitable[None]]] = None,
    ) -> bool:
        """
        Delete the session for ``identity`` regardless of age. True if one existed.

        ``then(existed)`` runs before the identity is released, so an
        acknowledgment goes out ahead of any turn queued behind the reset.
        """
        async with self._locked(identity):
            session = self._sessions.get(identity)
            existed = session is not None
            if existed:
                await self._discard(session, "reset")
                logger.info("🔄 Session reset", extra=identity.log_extra(subsys="sessions", event="session.reset"))
            if then is not None:
                await then(existed)
            return existed

    async def evict_expired(self) -> int:
        """Rotate out every idle session. Returns how many were evicted."""
        evicted = 0
        for identity in list(self._sessions):
            async with self._locked(identity):
                session = self._sessions.get(identity)
                if session is not None and self._is_expired(session, self.clock()):
                    await self._discard(session, "idle sweep")
                    evicted += 1
        if evicted:
            logger.info(f"🧹 Evicted {evicted} idle session(s)", extra={"subsys": "sessions", "event": "sweep"})
        return evicted

    async def run_janitor(self, interval_s: float) -> None:
        """Periodically evict idle sessions until cancelled."""
        while True:
            await asyncio.sleep(interval_s)
            try:
                await self.evict_expired()
            except Exception as e:
                logger.error(f"Session sweep failed: {e}", exc_info=True, extra={"subsys": "sessions"})

    async def close(self) -> None:
        """Delete every remote session; called at shutdown."""
        identities: List[ConversationIdentity] = list(self._sessions)
        for identity in identities:
            async with self._locked(identity):
                session = self._sessions.get(identity)
                if session is not None:
                    await self._discard(session, "shutdown")
