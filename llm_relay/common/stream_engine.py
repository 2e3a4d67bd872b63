"""
Stream Reconstruction Engine

Consumes an upstream SSE byte stream in one of two modes:

- Buffered: every event is reduced into a StreamAccumulator, which is frozen
  into a CanonicalResponse at end of stream.
- Passthrough: every event is rewritten and re-emitted as soon as its line is
  complete; memory use is bounded by the longest line.

A line that fails to parse never aborts the stream: buffered mode drops it,
passthrough mode forwards it verbatim.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import aclosing
from typing import Any, AsyncIterator, Callable, Optional

from llm_relay.common.errors import ProtocolParseError, UpstreamTransportError
from llm_relay.common.sse import (
    LineKind,
    encode_sse_done,
    encode_sse_json,
    iter_sse_lines,
    parse_event,
)
from llm_relay.domain.canonical import (
    CanonicalResponse,
    StreamAccumulator,
    ToolCallAccumulator,
    Usage,
)

logger = logging.getLogger(__name__)

Reducer = Callable[[StreamAccumulator, dict[str, Any]], None]


# =============================================================================
# Reducers
# =============================================================================

def _part_key(event: dict[str, Any]) -> tuple[Any, ...]:
    return (event.get("item_id", event.get("output_index")), event.get("content_index", 0))


def reduce_responses_event(acc: StreamAccumulator, event: dict[str, Any]) -> None:
    """Apply one OpenAI Responses stream event. Unknown event types are ignored."""
    event_type = event.get("type")

    if event_type == "response.output_text.delta":
        delta = event.get("delta")
        if isinstance(delta, str):
            acc.append_text(delta, _part_key(event))

    elif event_type == "response.output_text.done":
        text = event.get("text")
        if not isinstance(text, str):
            return
        key = _part_key(event)
        covered = acc.part_text.get(key, "")
        # Only the part of the final text the deltas have not delivered yet
        if text.startswith(covered):
            acc.append_text(text[len(covered):], key)

    elif event_type == "response.output_item.added":
        item = event.get("item")
        if isinstance(item, dict) and item.get("type") == "message":
            acc.role = item.get("role") or acc.role

    elif event_type == "response.output_item.done":
        item = event.get("item")
        if isinstance(item, dict) and item.get("type") == "function_call":
            acc.tool_calls.append(
                ToolCallAccumulator(
                    id=item.get("call_id") or item.get("id"),
                    name=item.get("name") or "",
                    arguments=item.get("arguments") or "",
                )
            )

    elif event_type == "response.completed":
        response = event.get("response")
        usage = response.get("usage") if isinstance(response, dict) else None
        if not isinstance(usage, dict):
            usage = event.get("usage")
        if isinstance(usage, dict):
            acc.usage = Usage.from_payload(usage)


def reduce_chat_chunk(acc: StreamAccumulator, event: dict[str, Any]) -> None:
    """Apply one Chat Completions stream chunk."""
    usage = event.get("usage")
    if isinstance(usage, dict):
        acc.usage = Usage.from_payload(usage)

    choices = event.get("choices")
    if not isinstance(choices, list):
        return

    for choice in choices:
        if not isinstance(choice, dict):
            continue
        delta = choice.get("delta")
        if not isinstance(delta, dict):
            continue

        role = delta.get("role")
        if isinstance(role, str) and role:
            acc.role = role

        content = delta.get("content")
        if isinstance(content, str):
            acc.append_text(content)

        tool_calls = delta.get("tool_calls")
        if not isinstance(tool_calls, list):
            continue
        for position, tool_call in enumerate(tool_calls):
            if not isinstance(tool_call, dict):
                continue
            index = tool_call.get("index")
            if not isinstance(index, int):
                index = position

            entry = acc.tool_call_index.get(index)
            if entry is None:
                entry = ToolCallAccumulator()
                acc.tool_call_index[index] = entry
                acc.tool_calls.append(entry)

            if tool_call.get("id"):
                entry.id = tool_call["id"]
            fn = tool_call.get("function")
            if isinstance(fn, dict):
                if isinstance(fn.get("name"), str):
                    entry.name += fn["name"]
                if isinstance(fn.get("arguments"), str):
                    entry.arguments += fn["arguments"]


# =============================================================================
# Buffered mode
# =============================================================================

async def _close_source(upstream: AsyncIterator[bytes]) -> None:
    aclose = getattr(upstream, "aclose", None)
    if aclose is not None:
        await aclose()


async def reconstruct(upstream: AsyncIterator[bytes], reducer: Reducer) -> CanonicalResponse:
    """
    Reduce a whole upstream stream into one CanonicalResponse.

    Raises:
        UpstreamTransportError: The byte source failed
        asyncio.CancelledError: The request was cancelled; no partial response is produced
    """
    acc = StreamAccumulator()
    try:
        async with aclosing(iter_sse_lines(upstream)) as lines:
            async for line in lines:
                if line.kind is not LineKind.DATA:
                    continue
                try:
                    event = parse_event(line.payload)
                except ProtocolParseError as e:
                    logger.debug("Dropping unparseable SSE line: %s", e.line)
                    continue
                reducer(acc, event)
    finally:
        await _close_source(upstream)
    return acc.freeze()


# =============================================================================
# Passthrough mode
# =============================================================================

class ChunkRewriter:
    """
    Per-response event rewriter used in passthrough mode.

    rewrite() maps one upstream event to zero or more client events, finish()
    returns the events to emit before the closing [DONE].
    """

    # Whether non-data lines (e.g. "event:" fields) reach the client unchanged
    forward_other_lines: bool = True

    def rewrite(self, event: dict[str, Any]) -> list[dict[str, Any]]:
        return [event]

    def finish(self) -> list[dict[str, Any]]:
        return []


class ChatChunkNormalizer(ChunkRewriter):
    """Normalize OpenAI-compatible chunks that some providers emit loosely."""

    def rewrite(self, event: dict[str, Any]) -> list[dict[str, Any]]:
        return [normalize_chat_chunk(event)]


def normalize_chat_chunk(chunk: dict[str, Any]) -> dict[str, Any]:
    """
    Default `object` and normalize each tool-call delta to
    {index, id, type, function}. The input chunk is not modified.
    """
    transformed = dict(chunk)
    transformed["object"] = chunk.get("object") or "chat.completion.chunk"

    choices = chunk.get("choices")
    if not isinstance(choices, list):
        return transformed

    new_choices: list[Any] = []
    for choice in choices:
        delta = choice.get("delta") if isinstance(choice, dict) else None
        tool_calls = delta.get("tool_calls") if isinstance(delta, dict) else None
        if not isinstance(tool_calls, list):
            new_choices.append(choice)
            continue
        new_delta = dict(delta)
        new_delta["tool_calls"] = [
            {
                "index": tc.get("index") if tc.get("index") is not None else 0,
                "id": tc.get("id"),
                "type": tc.get("type") or "function",
                "function": tc.get("function") or {},
            }
            if isinstance(tc, dict)
            else tc
            for tc in tool_calls
        ]
        new_choices.append({**choice, "delta": new_delta})
    transformed["choices"] = new_choices
    return transformed


class ResponsesToChatRewriter(ChunkRewriter):
    """
    Translate OpenAI Responses stream events into Chat Completions chunks.

    Text deltas become content deltas, function_call items become tool-call
    deltas, and response.completed becomes the final chunk carrying usage.
    """

    forward_other_lines = False

    def __init__(self, model: str, response_id: Optional[str] = None) -> None:
        self.model = model
        self.chunk_id = response_id or f"chatcmpl-{uuid.uuid4().hex}"
        self.created = int(time.time())
        self._role_sent = False
        self._finished = False
        # item id -> tool call index in the client stream
        self._tool_indexes: dict[str, int] = {}
        self._streamed_arguments: set[str] = set()
        # (item id, content index) -> text already sent to the client
        self._part_text: dict[tuple[Any, ...], str] = {}

    def _chunk(
        self,
        delta: dict[str, Any],
        finish_reason: Optional[str] = None,
        usage: Optional[Usage] = None,
    ) -> dict[str, Any]:
        if not self._role_sent:
            delta = {"role": "assistant", **delta}
            self._role_sent = True
        chunk: dict[str, Any] = {
            "id": self.chunk_id,
            "object": "chat.completion.chunk",
            "created": self.created,
            "model": self.model,
            "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
        }
        if usage is not None:
            chunk["usage"] = usage.to_dict()
        return chunk

    def _tool_index(self, item_id: str) -> int:
        if item_id not in self._tool_indexes:
            self._tool_indexes[item_id] = len(self._tool_indexes)
        return self._tool_indexes[item_id]

    def rewrite(self, event: dict[str, Any]) -> list[dict[str, Any]]:
        event_type = event.get("type")

        if event_type == "response.created":
            response = event.get("response")
            if isinstance(response, dict) and isinstance(response.get("model"), str):
                self.model = response["model"]
            return []

        if event_type == "response.output_text.delta":
            delta = event.get("delta")
            if isinstance(delta, str) and delta:
                key = _part_key(event)
                self._part_text[key] = self._part_text.get(key, "") + delta
                return [self._chunk({"content": delta})]
            return []

        if event_type == "response.output_text.done":
            text = event.get("text")
            if not isinstance(text, str):
                return []
            key = _part_key(event)
            covered = self._part_text.get(key, "")
            if not text.startswith(covered) or len(text) == len(covered):
                return []
            self._part_text[key] = text
            return [self._chunk({"content": text[len(covered):]})]

        if event_type == "response.output_item.added":
            item = event.get("item")
            if not isinstance(item, dict) or item.get("type") != "function_call":
                return []
            item_id = item.get("id") or item.get("call_id") or ""
            return [
                self._chunk(
                    {
                        "tool_calls": [
                            {
                                "index": self._tool_index(item_id),
                                "id": item.get("call_id") or item.get("id"),
                                "type": "function",
                                "function": {"name": item.get("name") or "", "arguments": ""},
                            }
                        ]
                    }
                )
            ]

        if event_type == "response.function_call_arguments.delta":
            item_id = event.get("item_id") or ""
            delta = event.get("delta")
            if item_id not in self._tool_indexes or not isinstance(delta, str) or not delta:
                return []
            self._streamed_arguments.add(item_id)
            return [
                self._chunk(
                    {"tool_calls": [{"index": self._tool_indexes[item_id], "function": {"arguments": delta}}]}
                )
            ]

        if event_type == "response.output_item.done":
            item = event.get("item")
            if not isinstance(item, dict) or item.get("type") != "function_call":
                return []
            item_id = item.get("id") or item.get("call_id") or ""
            if item_id in self._streamed_arguments:
                return []
            arguments = item.get("arguments") or ""
            if item_id in self._tool_indexes:
                if not arguments:
                    return []
                tool_call = {"index": self._tool_indexes[item_id], "function": {"arguments": arguments}}
            else:
                tool_call = {
                    "index": self._tool_index(item_id),
                    "id": item.get("call_id") or item.get("id"),
                    "type": "function",
                    "function": {"name": item.get("name") or "", "arguments": arguments},
                }
            return [self._chunk({"tool_calls": [tool_call]})]

        if event_type == "response.completed":
            response = event.get("response")
            usage = response.get("usage") if isinstance(response, dict) else None
            self._finished = True
            return [
                self._chunk(
                    {},
                    finish_reason="stop",
                    usage=Usage.from_payload(usage) if isinstance(usage, dict) else None,
                )
            ]

        if event_type in ("error", "response.failed"):
            response = event.get("response")
            error = response.get("error") if isinstance(response, dict) else None
            if not isinstance(error, dict):
                error = {"message": event.get("message") or "Upstream response failed"}
            self._finished = True
            return [{"error": error}]

        return []

    def finish(self) -> list[dict[str, Any]]:
        if self._finished:
            return []
        self._finished = True
        return [self._chunk({}, finish_reason="stop")]


async def passthrough(upstream: AsyncIterator[bytes], rewriter: ChunkRewriter) -> AsyncIterator[bytes]:
    """
    Re-emit an upstream stream event by event.

    - Comment and blank lines are dropped
    - Other non-data lines are forwarded unchanged (if the rewriter allows)
    - Unparseable data lines are forwarded verbatim
    - Exactly one [DONE] closes the client stream
    - A transport failure becomes a terminal error event
    """
    done_sent = False
    failed = False
    try:
        async with aclosing(iter_sse_lines(upstream)) as lines:
            async for line in lines:
                if line.kind in (LineKind.BLANK, LineKind.COMMENT):
                    continue

                if line.kind is LineKind.OTHER:
                    if rewriter.forward_other_lines:
                        yield f"{line.raw}\n".encode("utf-8")
                    continue

                if line.kind is LineKind.DONE:
                    for out in rewriter.finish():
                        yield encode_sse_json(out)
                    if not done_sent:
                        done_sent = True
                        yield encode_sse_done()
                    continue

                try:
                    event = parse_event(line.payload)
                except ProtocolParseError:
                    logger.debug("Forwarding unparseable SSE line verbatim: %s", line.raw)
                    yield f"{line.raw}\n".encode("utf-8")
                    continue

                for out in rewriter.rewrite(event):
                    yield encode_sse_json(out)

    except UpstreamTransportError as e:
        logger.error("Upstream stream failed: %s", e.message)
        failed = True
        yield encode_sse_json({"error": {"message": e.message, "type": e.error_type, "code": e.code}})
    finally:
        await _close_source(upstream)

    if not done_sent:
        if not failed:
            for out in rewriter.finish():
                yield encode_sse_json(out)
        yield encode_sse_done()
