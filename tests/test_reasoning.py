from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from disputebot.exceptions import APIError, TransientNetworkError
from disputebot.reasoning import OpenAIReasoningService, turn_to_input_content
from disputebot.turn_builder import ConversationTurn, MediaPart, TextPart


class FakeStream:
    def __init__(self, events):
        self.events = list(events)

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self.events:
            raise StopAsyncIteration
        return self.events.pop(0)


def delta(text):
    return SimpleNamespace(type="response.output_text.delta", delta=text)


def make_service(events=None, create_error=None):
    client = MagicMock()
    client.responses.create = AsyncMock(return_value=FakeStream(events or []), side_effect=create_error)
    client.conversations.create = AsyncMock(return_value=SimpleNamespace(id="conv_abc"))
    client.conversations.delete = AsyncMock()
    return OpenAIReasoningService(client, "gpt-4.1-mini", "You are a rental disputes assistant."), client


async def collect(service, turn):
    return [fragment async for fragment in service.submit("conv_abc", turn)]


def test_input_content_preserves_order_and_inlines_media():
    turn = ConversationTurn((
        MediaPart(b"\x89PNG", "image/png"),
        MediaPart(b"%PDF", "application/pdf", "lease.pdf"),
        MediaPart(b"OggS", "audio/ogg"),
        TextPart("What do these show?"),
    ))

    content = turn_to_input_content(turn)

    assert [c["type"] for c in content] == ["input_image", "input_file", "input_text"]
    assert content[0]["image_url"] == "data:image/png;base64,iVBORw=="
    assert content[1]["filename"] == "lease.pdf"
    assert content[1]["file_data"].startswith("data:application/pdf;base64,")


@pytest.mark.asyncio
async def test_sessions_map_to_conversations(identity):
    service, client = make_service()

    handle = await service.create_session(identity)
    await service.delete_session(handle)

    assert handle == "conv_abc"
    client.conversations.create.assert_awaited_once_with(metadata={"conversation": "telegram_42_7"})
    client.conversations.delete.assert_awaited_once_with("conv_abc")


@pytest.mark.asyncio
async def test_submit_streams_text_deltas_only():
    events = [
        SimpleNamespace(type="response.created"),
        delta("Under "),
        SimpleNamespace(type="response.refusal.delta", delta="no"),
        delta("Article 9"),
        SimpleNamespace(type="response.completed"),
    ]
    service, client = make_service(events)

    fragments = await collect(service, ConversationTurn((TextPart("hi"),)))

    assert fragments == ["Under ", "Article 9"]
    kwargs = client.responses.create.await_args.kwargs
    assert kwargs["conversation"] == "conv_abc"
    assert kwargs["stream"] is True
    assert kwargs["input"] == [{"role": "user", "content": [{"type": "input_text", "text": "hi"}]}]


@pytest.mark.asyncio
async def test_failed_response_raises():
    events = [SimpleNamespace(type="response.failed", response=SimpleNamespace(error=SimpleNamespace(message="server_error")))]
    service, _ = make_service(events)

    with pytest.raises(APIError, match="server_error"):
        await collect(service, ConversationTurn((TextPart("hi"),)))


@pytest.mark.asyncio
async def test_timeouts_are_transient():
    error = openai.APITimeoutError(request=httpx.Request("POST", "https://api.openai.com/v1/responses"))
    service, _ = make_service(create_error=error)

    with pytest.raises(TransientNetworkError):
        await collect(service, ConversationTurn((TextPart("hi"),)))


def test_build_client_disables_sdk_retries():
    client = OpenAIReasoningService.build_client({"OPENAI_API_KEY": "sk-test", "TEXTGEN_TIMEOUT_SECONDS": 12})

    assert client.max_retries == 0
    assert str(client.base_url).startswith("https://api.openai.com/v1")
