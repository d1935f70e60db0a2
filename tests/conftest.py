"""
Shared fixtures: real prompt templates plus in-memory fakes for Telegram and
the reasoning service.
"""
import asyncio
import contextlib
import itertools
from typing import Any, Dict, List, Optional, Tuple

import pytest

from disputebot.config import PROMPTS_DIR
from disputebot.identity import ConversationIdentity
from disputebot.prompts import load_prompt_templates
from disputebot.reasoning import ReasoningService


@pytest.fixture
def templates():
    return load_prompt_templates({"PROMPT_TEMPLATE_DIR": PROMPTS_DIR, "PROMPT_TEMPLATE_VERSION": "v1"})


@pytest.fixture
def identity():
    return ConversationIdentity(chat_id=42, user_id=7)


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


class FakeReasoningService(ReasoningService):
    """Scripted reasoning service; each submit pops the next script entry.

    An entry is either a list of fragments, or an exception instance to raise
    before any fragment is produced.
    """

    def __init__(self, script: Optional[List[Any]] = None, default: Optional[List[str]] = None):
        self.script = list(script or [])
        self.default = default if default is not None else ["ok"]
        self.created: List[str] = []
        self.deleted: List[str] = []
        self.submitted: List[Tuple[str, Any]] = []
        self.fail_delete = False
        self._ids = itertools.count(1)

    async def create_session(self, identity):
        await asyncio.sleep(0)
        handle = f"conv_{next(self._ids)}"
        self.created.append(handle)
        return handle

    async def delete_session(self, handle):
        if self.fail_delete:
            raise RuntimeError("remote delete exploded")
        self.deleted.append(handle)

    async def submit(self, handle, turn):
        self.submitted.append((handle, turn))
        entry = self.script.pop(0) if self.script else self.default
        if isinstance(entry, BaseException):
            raise entry
        for fragment in entry:
            yield fragment


@pytest.fixture
def service():
    return FakeReasoningService()


class FakeTelegram:
    """Records every outbound call the bridge makes."""

    configured = True

    def __init__(self, files: Optional[Dict[str, Tuple[bytes, Optional[str], str]]] = None):
        self.files = files or {}
        self.sent: List[Dict[str, Any]] = []
        self.edits: List[Dict[str, Any]] = []
        self.actions: List[Tuple[int, str]] = []
        self.edit_errors: List[Exception] = []
        self.always_fail_edits: Optional[Exception] = None
        self.deleted: List[int] = []
        self.delete_error: Optional[Exception] = None
        self.fetch_error: Optional[Exception] = None
        self.webhook: Optional[Tuple[str, Optional[str]]] = None
        self._ids = itertools.count(500)

    async def start(self):
        pass

    async def stop(self):
        pass

    async def send_message(self, chat_id, text, reply_to_message_id=None):
        message_id = next(self._ids)
        self.sent.append({"chat_id": chat_id, "text": text, "message_id": message_id})
        return message_id

    async def edit_message_text(self, chat_id, message_id, text):
        if self.always_fail_edits is not None:
            raise self.always_fail_edits
        if self.edit_errors:
            raise self.edit_errors.pop(0)
        self.edits.append({"chat_id": chat_id, "message_id": message_id, "text": text})

    async def delete_message(self, chat_id, message_id):
        if self.delete_error is not None:
            raise self.delete_error
        self.deleted.append(message_id)

    async def send_chat_action(self, chat_id, action="typing"):
        self.actions.append((chat_id, action))

    @contextlib.asynccontextmanager
    async def typing(self, chat_id, interval=4.0):
        self.actions.append((chat_id, "typing"))
        yield

    async def get_file(self, file_id):
        if self.fetch_error is not None:
            raise self.fetch_error
        data, _, path = self.files[file_id]
        return {"file_id": file_id, "file_path": path, "file_size": len(data)}

    async def download_file(self, file_path):
        for data, content_type, path in self.files.values():
            if path == file_path:
                return data, content_type
        raise AssertionError(f"unexpected download {file_path}")

    async def set_webhook(self, url, secret_token=None):
        self.webhook = (url, secret_token)

    def visible_messages(self) -> List[int]:
        return [m["message_id"] for m in self.sent if m["message_id"] not in self.deleted]

    def visible_text(self, message_id: int) -> str:
        """Last text shown for ``message_id`` after sends and edits."""
        text = next(m["text"] for m in self.sent if m["message_id"] == message_id)
        for edit in self.edits:
            if edit["message_id"] == message_id:
                text = edit["text"]
        return text


@pytest.fixture
def telegram():
    return FakeTelegram()


@pytest.fixture
def make_service():
    return FakeReasoningService


@pytest.fixture
def make_telegram():
    return FakeTelegram
