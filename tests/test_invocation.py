import asyncio

import pytest

from disputebot.exceptions import TransientNetworkError
from disputebot.invocation import InvocationAdapter, InvocationState
from disputebot.turn_builder import ConversationTurn, MediaPart, TextPart

TURN = ConversationTurn((TextPart("My landlord kept the deposit."),))


def make_adapter(service, templates, **kwargs):
    kwargs.setdefault("retry_delay_s", 0)
    return InvocationAdapter(service, templates, **kwargs)


@pytest.mark.asyncio
async def test_always_empty_exhausts_retries_then_falls_back(make_service, templates):
    service = make_service(default=[])
    adapter = make_adapter(service, templates, max_retries=2)

    result = await adapter.run("conv_1", TURN)

    assert len(service.submitted) == 3
    assert result.state is InvocationState.BLOCKED
    assert result.attempts == 3
    assert result.text == templates.reply("blocked_fallback")


@pytest.mark.asyncio
async def test_whitespace_only_reply_counts_as_empty(make_service, templates):
    service = make_service(script=[[" ", "\n"]], default=["Article 9 applies."])
    adapter = make_adapter(service, templates)

    result = await adapter.run("conv_1", TURN)

    assert result.state is InvocationState.DONE
    assert result.attempts == 2
    assert result.text == "Article 9 applies."


@pytest.mark.asyncio
async def test_success_on_second_attempt(make_service, templates):
    service = make_service(script=[[], ["Hello", ", ", "tenant"]])
    adapter = make_adapter(service, templates)

    result = await adapter.run("conv_1", TURN)

    assert result.text == "Hello, tenant"
    assert result.state is InvocationState.DONE
    assert len(service.submitted) == 2


@pytest.mark.asyncio
async def test_exception_is_treated_like_an_empty_reply(make_service, templates):
    service = make_service(script=[RuntimeError("boom"), ["recovered"]])
    adapter = make_adapter(service, templates)

    assert await adapter.invoke("conv_1", TURN) == "recovered"


@pytest.mark.asyncio
async def test_persistent_errors_end_blocked_not_raised(make_service, templates):
    service = make_service(script=[ValueError("bad"), RuntimeError("worse"), KeyError("worst")])
    adapter = make_adapter(service, templates, max_retries=2)

    result = await adapter.run("conv_1", TURN)

    assert result.state is InvocationState.BLOCKED
    assert len(result.errors) == 3


@pytest.mark.asyncio
async def test_all_attempts_timing_out_is_a_technical_failure(make_service, templates):
    service = make_service()

    async def never_answers(handle, turn):
        service.submitted.append((handle, turn))
        await asyncio.sleep(10)
        yield "too late"

    service.submit = never_answers
    adapter = make_adapter(service, templates, max_retries=1, attempt_timeout_s=0.01)

    result = await adapter.run("conv_1", TURN)

    assert result.state is InvocationState.FAILED
    assert result.text == templates.reply("technical_error")
    assert len(service.submitted) == 2


@pytest.mark.asyncio
async def test_transient_network_errors_count_as_timeouts(make_service, templates):
    service = make_service(script=[TransientNetworkError("reset")] * 3)
    adapter = make_adapter(service, templates, max_retries=2)

    result = await adapter.run("conv_1", TURN)

    assert result.state is InvocationState.FAILED


@pytest.mark.asyncio
async def test_mixed_timeout_and_empty_is_blocked(make_service, templates):
    service = make_service(script=[TransientNetworkError("reset"), []])
    adapter = make_adapter(service, templates, max_retries=1)

    result = await adapter.run("conv_1", TURN)

    assert result.state is InvocationState.BLOCKED


@pytest.mark.asyncio
async def test_retry_rephrasings_cycle_without_compounding(make_service, templates):
    service = make_service(default=[])
    max_retries = len(templates.retry_phrasings) + 2
    adapter = make_adapter(service, templates, max_retries=max_retries)

    await adapter.run("conv_1", TURN)

    texts = [turn.text for _, turn in service.submitted]
    assert texts[0] == TURN.text
    for attempt, text in enumerate(texts[1:], start=1):
        expected = templates.retry_phrasing(attempt)
        assert text == f"{TURN.text}\n\n{expected}"
        assert sum(text.count(p) for p in templates.retry_phrasings) == 1
    assert texts[1] == texts[1 + len(templates.retry_phrasings)]


@pytest.mark.asyncio
async def test_retry_keeps_media_parts(make_service, templates):
    turn = ConversationTurn((MediaPart(b"%PDF-1.4", "application/pdf", "lease.pdf"), TextPart("Check this")))
    service = make_service(script=[[], ["done"]])
    adapter = make_adapter(service, templates)

    await adapter.run("conv_1", turn)

    retried = service.submitted[1][1]
    assert retried.media_parts == turn.media_parts
    assert turn.text == "Check this"


@pytest.mark.asyncio
async def test_fragments_are_reported_accumulated(make_service, templates):
    service = make_service(script=[["Dear ", "tenant", "."]])
    adapter = make_adapter(service, templates)
    seen = []

    async def on_fragment(text):
        seen.append(text)

    await adapter.invoke("conv_1", TURN, on_fragment)

    assert seen == ["Dear ", "Dear tenant", "Dear tenant."]
