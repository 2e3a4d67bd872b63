import asyncio
import json

import pytest

from llm_relay.common.errors import UpstreamTransportError
from llm_relay.common.response_encoder import encode_chat_completion
from llm_relay.common.stream_engine import (
    ChatChunkNormalizer,
    ChunkRewriter,
    ResponsesToChatRewriter,
    normalize_chat_chunk,
    passthrough,
    reconstruct,
    reduce_chat_chunk,
    reduce_responses_event,
)
from llm_relay.domain.canonical import StreamAccumulator


class TrackingSource:
    """Byte source that records whether it was closed."""

    def __init__(self, chunks, error=None, hang=False):
        self._chunks = list(chunks)
        self.error = error
        self.hang = hang
        self.closed = False
        self.reads = 0

    def __aiter__(self):
        return self

    async def __anext__(self):
        self.reads += 1
        if self._chunks:
            return self._chunks.pop(0)
        if self.error is not None:
            raise self.error
        if self.hang:
            await asyncio.Event().wait()
        raise StopAsyncIteration

    async def aclose(self):
        self.closed = True


def _payloads(body: bytes) -> list[str]:
    return [line[6:] for line in body.decode("utf-8").split("\n") if line.startswith("data: ")]


async def _collect(stream) -> bytes:
    return b"".join([chunk async for chunk in stream])


def _bytewise(data: bytes) -> list[bytes]:
    return [data[i:i + 1] for i in range(len(data))]


# =============================================================================
# Buffered reconstruction
# =============================================================================

@pytest.mark.asyncio
async def test_text_deltas_and_usage_are_reconstructed(sse):
    body = sse(
        {"type": "response.output_text.delta", "item_id": "msg_1", "content_index": 0, "delta": "Hel"},
        {"type": "response.output_text.delta", "item_id": "msg_1", "content_index": 0, "delta": "lo"},
        {
            "type": "response.completed",
            "response": {"usage": {"prompt_tokens": 5, "completion_tokens": 2, "total_tokens": 7}},
        },
    )

    response = await reconstruct(TrackingSource([body]), reduce_responses_event)
    document = encode_chat_completion(response, model="gpt-5.2-codex")

    assert document["choices"][0]["message"]["content"] == "Hello"
    assert document["usage"]["total_tokens"] == 7
    assert document["usage"]["prompt_tokens"] == 5


@pytest.mark.asyncio
async def test_byte_at_a_time_delivery_matches_single_chunk(sse):
    body = sse(
        {"type": "response.output_item.added", "item": {"type": "message", "role": "assistant"}},
        {"type": "response.output_text.delta", "item_id": "m", "content_index": 0, "delta": "héllo "},
        {"type": "response.output_text.delta", "item_id": "m", "content_index": 0, "delta": "世界"},
        {
            "type": "response.output_item.done",
            "item": {"type": "function_call", "call_id": "call_1", "name": "search", "arguments": "{\"q\": 1}"},
        },
        {"type": "response.completed", "response": {"usage": {"input_tokens": 3, "output_tokens": 4}}},
    )

    whole = await reconstruct(TrackingSource([body]), reduce_responses_event)
    pieces = await reconstruct(TrackingSource(_bytewise(body)), reduce_responses_event)

    assert pieces.text == whole.text == "héllo 世界"
    assert pieces.tool_calls == whole.tool_calls
    assert pieces.usage == whole.usage
    assert pieces.usage.total_tokens == 7


@pytest.mark.asyncio
async def test_tool_call_arguments_are_kept_verbatim(sse):
    arguments = '{"q":1}'
    body = sse(
        {
            "type": "response.output_item.done",
            "item": {"type": "function_call", "id": "fc_1", "call_id": "call_9", "name": "search", "arguments": arguments},
        }
    )

    response = await reconstruct(TrackingSource([body]), reduce_responses_event)
    document = encode_chat_completion(response, model="m")

    tool_calls = document["choices"][0]["message"]["tool_calls"]
    assert len(tool_calls) == 1
    assert tool_calls[0] == {
        "id": "call_9",
        "type": "function",
        "function": {"name": "search", "arguments": arguments},
    }


@pytest.mark.asyncio
async def test_malformed_lines_are_dropped_in_buffered_mode(sse):
    body = sse(
        "data: {not json",
        ": comment",
        "event: response.output_text.delta",
        {"type": "response.output_text.delta", "delta": "ok"},
        {"type": "some.future.event", "delta": "ignored"},
    )

    response = await reconstruct(TrackingSource([body]), reduce_responses_event)

    assert response.text == "ok"
    assert response.usage.total_tokens == 0


@pytest.mark.asyncio
async def test_buffered_mode_closes_source():
    source = TrackingSource([b'data: {"type":"response.output_text.delta","delta":"x"}\n'])
    await reconstruct(source, reduce_responses_event)
    assert source.closed is True


@pytest.mark.asyncio
async def test_buffered_mode_surfaces_transport_errors():
    source = TrackingSource(
        [b'data: {"type":"response.output_text.delta","delta":"x"}\n\n'],
        error=UpstreamTransportError("connection reset"),
    )

    with pytest.raises(UpstreamTransportError):
        await reconstruct(source, reduce_responses_event)
    assert source.closed is True


@pytest.mark.asyncio
async def test_buffered_mode_cancellation_releases_source():
    source = TrackingSource([b'data: {"type":"response.output_text.delta","delta":"x"}\n\n'], hang=True)

    task = asyncio.create_task(reconstruct(source, reduce_responses_event))
    while source.reads < 2:
        await asyncio.sleep(0)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert source.closed is True


# =============================================================================
# Reducers
# =============================================================================

def test_text_done_appends_only_uncovered_suffix():
    acc = StreamAccumulator()
    reduce_responses_event(acc, {"type": "response.output_text.delta", "item_id": "m", "content_index": 0, "delta": "Hel"})
    reduce_responses_event(acc, {"type": "response.output_text.done", "item_id": "m", "content_index": 0, "text": "Hello"})

    assert acc.text_buffer == "Hello"


def test_text_done_without_deltas_appends_full_text():
    acc = StreamAccumulator()
    reduce_responses_event(acc, {"type": "response.output_text.done", "item_id": "m", "content_index": 0, "text": "All at once"})
    assert acc.text_buffer == "All at once"


def test_text_done_after_complete_deltas_adds_nothing():
    acc = StreamAccumulator()
    reduce_responses_event(acc, {"type": "response.output_text.delta", "item_id": "m", "content_index": 0, "delta": "Hi"})
    reduce_responses_event(acc, {"type": "response.output_text.done", "item_id": "m", "content_index": 0, "text": "Hi"})
    assert acc.text_buffer == "Hi"


def test_item_added_message_sets_role():
    acc = StreamAccumulator()
    reduce_responses_event(acc, {"type": "response.output_item.added", "item": {"type": "message", "role": "developer"}})
    reduce_responses_event(acc, {"type": "response.output_item.added", "item": {"type": "reasoning"}})
    assert acc.role == "developer"


def test_tool_call_id_falls_back_to_item_id():
    acc = StreamAccumulator()
    reduce_responses_event(
        acc,
        {"type": "response.output_item.done", "item": {"type": "function_call", "id": "fc_1", "name": "a", "arguments": "{}"}},
    )
    assert acc.tool_calls[0].id == "fc_1"


def test_completed_event_overwrites_usage():
    acc = StreamAccumulator()
    reduce_responses_event(acc, {"type": "response.completed", "response": {"usage": {"input_tokens": 1, "output_tokens": 1}}})
    reduce_responses_event(acc, {"type": "response.completed", "response": {"usage": {"input_tokens": 10, "output_tokens": 5}}})
    assert acc.usage.to_dict() == {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15}


def test_chat_chunks_merge_tool_calls_by_index():
    acc = StreamAccumulator()
    reduce_chat_chunk(acc, {"choices": [{"delta": {"role": "assistant", "content": "Let me "}}]})
    reduce_chat_chunk(acc, {"choices": [{"delta": {"content": "check."}}]})
    reduce_chat_chunk(
        acc,
        {
            "choices": [
                {
                    "delta": {
                        "tool_calls": [
                            {"index": 1, "id": "call_b", "function": {"name": "second", "arguments": ""}},
                            {"index": 0, "id": "call_a", "function": {"name": "first", "arguments": "{\"x\""}},
                        ]
                    }
                }
            ]
        },
    )
    reduce_chat_chunk(acc, {"choices": [{"delta": {"tool_calls": [{"index": 0, "function": {"arguments": ": 1}"}}]}}]})
    reduce_chat_chunk(acc, {"choices": [], "usage": {"prompt_tokens": 9, "completion_tokens": 3, "total_tokens": 12}})

    assert acc.text_buffer == "Let me check."
    assert [(c.id, c.name, c.arguments) for c in acc.tool_calls] == [
        ("call_b", "second", ""),
        ("call_a", "first", '{"x": 1}'),
    ]
    assert acc.usage.total_tokens == 12


# =============================================================================
# Passthrough
# =============================================================================

@pytest.mark.asyncio
async def test_passthrough_normalizes_chat_chunks(sse):
    body = sse(
        ": OPENROUTER PROCESSING",
        {"id": "c1", "choices": [{"index": 0, "delta": {"content": "Hi"}}]},
        {"id": "c1", "choices": [{"index": 0, "delta": {"tool_calls": [{"id": "call_1", "function": {"name": "f"}}]}}]},
    )

    out = await _collect(passthrough(TrackingSource([body]), ChatChunkNormalizer()))
    payloads = _payloads(out)

    assert b"OPENROUTER" not in out
    assert payloads[-1] == "[DONE]"
    first = json.loads(payloads[0])
    second = json.loads(payloads[1])
    assert first["object"] == "chat.completion.chunk"
    assert second["choices"][0]["delta"]["tool_calls"] == [
        {"index": 0, "id": "call_1", "type": "function", "function": {"name": "f"}}
    ]


@pytest.mark.asyncio
async def test_passthrough_forwards_unparseable_and_other_lines_verbatim(sse):
    body = sse("event: message", "data: {broken", {"a": 1})

    out = await _collect(passthrough(TrackingSource([body]), ChunkRewriter()))

    assert out == b'event: message\ndata: {broken\ndata: {"a": 1}\n\ndata: [DONE]\n\n'


@pytest.mark.asyncio
async def test_passthrough_emits_exactly_one_done(sse):
    body = sse({"a": 1}) + b"data: [DONE]\n\n"

    out = await _collect(passthrough(TrackingSource(_bytewise(body)), ChunkRewriter()))

    assert _payloads(out).count("[DONE]") == 1


@pytest.mark.asyncio
async def test_passthrough_synthesizes_done(sse):
    body = sse({"a": 1}, done=False)
    out = await _collect(passthrough(TrackingSource([body]), ChunkRewriter()))
    assert _payloads(out) == ['{"a": 1}', "[DONE]"]


@pytest.mark.asyncio
async def test_passthrough_transport_error_becomes_terminal_event():
    source = TrackingSource(
        [b'data: {"a": 1}\n\n'],
        error=UpstreamTransportError("Request error: connection reset"),
    )

    out = await _collect(passthrough(source, ResponsesToChatRewriter(model="m")))
    payloads = _payloads(out)

    assert payloads[-1] == "[DONE]"
    assert payloads.count("[DONE]") == 1
    error = json.loads(payloads[-2])
    assert error["error"]["message"] == "Request error: connection reset"
    assert source.closed is True


@pytest.mark.asyncio
async def test_passthrough_releases_source_when_client_disconnects(sse):
    source = TrackingSource([sse({"a": 1}, done=False)], hang=True)
    stream = passthrough(source, ChunkRewriter())

    first = await anext(stream)
    await stream.aclose()

    assert first == b'data: {"a": 1}\n\n'
    assert source.closed is True


@pytest.mark.asyncio
async def test_passthrough_is_incremental():
    source = TrackingSource([b'data: {"n": 1}\n\n', b'data: {"n": 2}\n\n'])
    stream = passthrough(source, ChunkRewriter())

    await anext(stream)

    assert source.reads == 1
    await stream.aclose()


def test_normalize_chat_chunk_does_not_mutate_input():
    chunk = {"choices": [{"delta": {"tool_calls": [{"function": {"arguments": "{}"}}]}}]}
    original = json.dumps(chunk, sort_keys=True)

    normalized = normalize_chat_chunk(chunk)

    assert json.dumps(chunk, sort_keys=True) == original
    assert normalized["object"] == "chat.completion.chunk"
    assert normalized["choices"][0]["delta"]["tool_calls"][0] == {
        "index": 0,
        "id": None,
        "type": "function",
        "function": {"arguments": "{}"},
    }


def test_normalize_chat_chunk_keeps_existing_object():
    assert normalize_chat_chunk({"object": "custom"})["object"] == "custom"


# =============================================================================
# Responses -> Chat rewriting
# =============================================================================

@pytest.mark.asyncio
async def test_responses_stream_is_rewritten_as_chat_chunks(sse):
    body = sse(
        "event: response.created",
        {"type": "response.created", "response": {"model": "gpt-5.2-codex-2025"}},
        {"type": "response.output_text.delta", "delta": "Hel"},
        {"type": "response.output_text.delta", "delta": "lo"},
        {
            "type": "response.output_item.added",
            "item": {"type": "function_call", "id": "fc_1", "call_id": "call_1", "name": "search"},
        },
        {"type": "response.function_call_arguments.delta", "item_id": "fc_1", "delta": "{\"q\":"},
        {"type": "response.function_call_arguments.delta", "item_id": "fc_1", "delta": "1}"},
        {
            "type": "response.output_item.done",
            "item": {"type": "function_call", "id": "fc_1", "call_id": "call_1", "name": "search", "arguments": "{\"q\":1}"},
        },
        {"type": "response.completed", "response": {"usage": {"input_tokens": 5, "output_tokens": 2}}},
    )

    out = await _collect(passthrough(TrackingSource([body]), ResponsesToChatRewriter(model="gpt-5.2-codex")))
    payloads = _payloads(out)

    assert b"event:" not in out
    assert payloads[-1] == "[DONE]"
    chunks = [json.loads(p) for p in payloads[:-1]]
    assert all(c["object"] == "chat.completion.chunk" for c in chunks)
    assert len({c["id"] for c in chunks}) == 1
    assert chunks[0]["model"] == "gpt-5.2-codex-2025"
    assert chunks[0]["choices"][0]["delta"] == {"role": "assistant", "content": "Hel"}
    assert chunks[1]["choices"][0]["delta"] == {"content": "lo"}

    tool_start = chunks[2]["choices"][0]["delta"]["tool_calls"][0]
    assert tool_start == {"index": 0, "id": "call_1", "type": "function", "function": {"name": "search", "arguments": ""}}
    arguments = "".join(
        c["choices"][0]["delta"]["tool_calls"][0]["function"]["arguments"] for c in chunks[3:5]
    )
    assert arguments == '{"q":1}'

    final = chunks[-1]
    assert len(chunks) == 6
    assert final["choices"][0]["finish_reason"] == "stop"
    assert final["usage"] == {"prompt_tokens": 5, "completion_tokens": 2, "total_tokens": 7}


@pytest.mark.asyncio
async def test_final_text_without_deltas_reaches_streaming_client(sse):
    events = [
        {"type": "response.output_text.done", "item_id": "msg_1", "content_index": 0, "text": "Hello"},
        {"type": "response.completed", "response": {}},
    ]

    streamed = await _collect(passthrough(TrackingSource([sse(*events)]), ResponsesToChatRewriter(model="m")))
    buffered = await reconstruct(TrackingSource([sse(*events)]), reduce_responses_event)

    chunks = [json.loads(p) for p in _payloads(streamed)[:-1]]
    assert "".join(c["choices"][0]["delta"].get("content", "") for c in chunks) == "Hello"
    assert buffered.text == "Hello"


def test_responses_rewriter_emits_only_undelivered_final_text():
    rewriter = ResponsesToChatRewriter(model="m")
    rewriter.rewrite({"type": "response.output_text.delta", "item_id": "msg_1", "content_index": 0, "delta": "Hel"})

    tail = rewriter.rewrite({"type": "response.output_text.done", "item_id": "msg_1", "content_index": 0, "text": "Hello"})
    repeat = rewriter.rewrite({"type": "response.output_text.done", "item_id": "msg_1", "content_index": 0, "text": "Hello"})

    assert tail[0]["choices"][0]["delta"] == {"content": "lo"}
    assert repeat == []


def test_responses_rewriter_sends_role_on_first_chunk_even_when_empty():
    rewriter = ResponsesToChatRewriter(model="m")

    final = rewriter.rewrite({"type": "response.completed", "response": {}})

    assert final[0]["choices"][0]["delta"] == {"role": "assistant"}
    assert final[0]["choices"][0]["finish_reason"] == "stop"


def test_responses_rewriter_emits_arguments_from_item_done_when_not_streamed():
    rewriter = ResponsesToChatRewriter(model="m")

    chunks = rewriter.rewrite(
        {
            "type": "response.output_item.done",
            "item": {"type": "function_call", "id": "fc_9", "call_id": "call_9", "name": "lookup", "arguments": "{}"},
        }
    )

    tool_call = chunks[0]["choices"][0]["delta"]["tool_calls"][0]
    assert tool_call == {"index": 0, "id": "call_9", "type": "function", "function": {"name": "lookup", "arguments": "{}"}}


def test_responses_rewriter_finish_emits_stop_once():
    rewriter = ResponsesToChatRewriter(model="m")

    first = rewriter.finish()
    second = rewriter.finish()

    assert first[0]["choices"][0]["finish_reason"] == "stop"
    assert second == []


def test_responses_rewriter_translates_failure():
    rewriter = ResponsesToChatRewriter(model="m")

    out = rewriter.rewrite({"type": "response.failed", "response": {"error": {"message": "quota exceeded"}}})

    assert out == [{"error": {"message": "quota exceeded"}}]
    assert rewriter.finish() == []
