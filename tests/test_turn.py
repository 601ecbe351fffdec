"""Tests for turn processing: ordering, history and error handling."""

import httpx
import pytest

from chat_relay.errors import CompletionError
from chat_relay.relay.conversation import Conversation
from chat_relay.relay.directive import compile_directive_pattern
from chat_relay.relay.turn import UPSTREAM_ERROR_MESSAGE, TurnProcessor

from conftest import PNG_BYTES, FakeCompletion, make_pipeline


def make_processor(completion, handler=None) -> TurnProcessor:
    return TurnProcessor(completion, make_pipeline(handler))


@pytest.mark.asyncio
async def test_plain_turn_streams_text_then_completes(emitter, websocket):
    conversation = Conversation("sys")
    completion = FakeCompletion(["Hello", " there", "!"])

    outcome = await make_processor(completion).run(conversation, emitter, "hi")

    assert websocket.sent == [
        {"role": "ai", "content": "Hello"},
        {"role": "ai", "content": " there"},
        {"role": "ai", "content": "!"},
        {"role": "ai_complete", "promptDetected": False},
    ]
    assert outcome.response == "Hello there!"
    assert outcome.directive is None
    assert [(m.role, m.content) for m in conversation.snapshot()[-2:]] == [
        ("user", "hi"),
        ("assistant", "Hello there!"),
    ]


@pytest.mark.asyncio
async def test_full_history_is_sent_each_turn(emitter):
    conversation = Conversation("sys")
    completion = FakeCompletion(["ok"])
    processor = make_processor(completion)

    await processor.run(conversation, emitter, "one")
    await processor.run(conversation, emitter, "two")

    second = completion.histories[1]
    assert [(m.role, m.content) for m in second] == [
        ("system", "sys"),
        ("user", "one"),
        ("assistant", "ok"),
        ("user", "two"),
    ]


@pytest.mark.asyncio
async def test_directive_across_chunks_triggers_images(emitter, websocket):
    conversation = Conversation("sys")
    chunks = ["Sure! Here is the _pro", "mpt: a red fox_", " Enjoy."]
    completion = FakeCompletion(chunks)

    outcome = await make_processor(completion).run(conversation, emitter, "draw a fox")

    roles = websocket.roles()
    assert roles == ["ai", "ai", "ai_complete", "image", "image"]
    assert websocket.sent[2] == {"role": "ai_complete", "promptDetected": True}

    visible = "".join(e["content"] for e in websocket.sent if e["role"] == "ai")
    full = "".join(chunks)
    assert visible == compile_directive_pattern().sub("", full)
    assert "prompt" not in visible

    assert outcome.directive.payload == "a red fox"
    assert outcome.images_sent == 2
    # History keeps the raw response, directive included.
    assert conversation.snapshot()[-1].content == full


@pytest.mark.asyncio
async def test_payload_is_url_escaped_in_image_requests(emitter):
    requested: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(request.url.raw_path.decode())
        return httpx.Response(200, content=PNG_BYTES)

    completion = FakeCompletion(["_prompt: a red fox_"])
    await make_processor(completion, handler).run(Conversation("sys"), emitter, "x")

    assert len(requested) == 2
    assert all(path.startswith("/prompt/a%20red%20fox?") for path in requested)


@pytest.mark.asyncio
async def test_variant_failure_becomes_error_event_in_index_order(emitter, websocket):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.params.get("width") == "512":
            return httpx.Response(404)
        return httpx.Response(200, content=PNG_BYTES)

    completion = FakeCompletion(["_prompt: a red fox_"])
    outcome = await make_processor(completion, handler).run(
        Conversation("sys"), emitter, "x"
    )

    image_phase = websocket.sent[-2:]
    assert image_phase[0]["role"] == "ai"
    assert image_phase[0]["content"].startswith("Image 1 could not be generated")
    assert image_phase[1]["role"] == "image"
    assert outcome.images_sent == 1
    assert outcome.image_failures == 1


@pytest.mark.asyncio
async def test_all_variants_failing_still_emits_one_event_each(emitter, websocket):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("down", request=request)

    completion = FakeCompletion(["_prompt: a red fox_"])
    await make_processor(completion, handler).run(Conversation("sys"), emitter, "x")

    assert websocket.roles() == ["ai_complete", "ai", "ai"]
    assert websocket.sent[1]["content"].startswith("Image 1")
    assert websocket.sent[2]["content"].startswith("Image 2")


@pytest.mark.asyncio
async def test_empty_payload_reports_no_directive(emitter, websocket):
    completion = FakeCompletion(["Here: _prompt: _ done"])
    outcome = await make_processor(completion).run(Conversation("sys"), emitter, "x")

    assert {"role": "ai_complete", "promptDetected": False} in websocket.sent
    assert "image" not in websocket.roles()
    assert outcome.directive is None


@pytest.mark.asyncio
async def test_upstream_error_before_output(emitter, websocket):
    conversation = Conversation("sys")
    completion = FakeCompletion(error=CompletionError(500, "boom"))

    outcome = await make_processor(completion).run(conversation, emitter, "hi")

    assert websocket.sent == [{"role": "ai", "content": UPSTREAM_ERROR_MESSAGE}]
    assert outcome.failed is True
    assert [m.role for m in conversation.snapshot()] == ["system", "user"]


@pytest.mark.asyncio
async def test_upstream_error_after_partial_output_keeps_partial(emitter, websocket):
    conversation = Conversation("sys")
    completion = FakeCompletion(["Half an ans"], error=CompletionError(502, "drop"))

    await make_processor(completion).run(conversation, emitter, "hi")

    assert websocket.sent == [
        {"role": "ai", "content": "Half an ans"},
        {"role": "ai", "content": UPSTREAM_ERROR_MESSAGE},
    ]
    assert conversation.snapshot()[-1].content == "Half an ans"
    assert "ai_complete" not in websocket.roles()


@pytest.mark.asyncio
async def test_upstream_error_releases_withheld_tail(emitter, websocket):
    conversation = Conversation("sys")
    completion = FakeCompletion(["Done _pro"], error=CompletionError(502, "drop"))

    await make_processor(completion).run(conversation, emitter, "hi")

    assert websocket.sent == [
        {"role": "ai", "content": "Done "},
        {"role": "ai", "content": "_pro"},
        {"role": "ai", "content": UPSTREAM_ERROR_MESSAGE},
    ]
    shown = "".join(e["content"] for e in websocket.sent[:-1])
    assert conversation.snapshot()[-1].content == shown


@pytest.mark.asyncio
async def test_upstream_error_inside_directive_hides_it(emitter, websocket):
    conversation = Conversation("sys")
    completion = FakeCompletion(
        ["Look ", "_prompt: a fox"], error=CompletionError(502, "drop")
    )

    await make_processor(completion).run(conversation, emitter, "hi")

    assert websocket.sent == [
        {"role": "ai", "content": "Look "},
        {"role": "ai", "content": UPSTREAM_ERROR_MESSAGE},
    ]


@pytest.mark.asyncio
async def test_empty_response_is_not_appended(emitter, websocket):
    conversation = Conversation("sys")
    await make_processor(FakeCompletion([])).run(conversation, emitter, "hi")

    assert websocket.sent == [{"role": "ai_complete", "promptDetected": False}]
    assert [m.role for m in conversation.snapshot()] == ["system", "user"]
