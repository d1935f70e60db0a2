"""Conversation identity derived from the platform's chat and user identifiers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict


@dataclass(frozen=True)
class ConversationIdentity:
    """Stable key for one ongoing dialogue. Immutable once formed."""

    chat_id: int
    user_id: int

    @property
    def key(self) -> str:
        return f"telegram_{self.chat_id}_{self.user_id}"

    def log_extra(self, **fields: Any) -> Dict[str, Any]:
        """Structured logging fields for records about this conversation."""
        return {"chat_id": self.chat_id, "user_id": self.user_id, **fields}

    def __str__(self) -> str:
        return self.key
