"""
Response Encoder

Renders a reconstructed CanonicalResponse as a client-facing document.
Encoding is a pure function of the response: the identifier and timestamp
are fixed when the accumulator is frozen.
"""

from __future__ import annotations

import json
from typing import Any

from llm_relay.domain.canonical import CanonicalResponse, RequestContext

FINISH_REASON = "stop"


def encode_chat_completion(response: CanonicalResponse, *, model: str) -> dict[str, Any]:
    """
    Render a Chat Completions document.

    tool_calls is present only when the response carries tool calls; their
    argument strings are passed through verbatim.
    """
    message: dict[str, Any] = {
        "role": response.role,
        "content": response.text,
    }
    if response.tool_calls:
        message["tool_calls"] = [call.to_dict() for call in response.tool_calls]

    return {
        "id": response.response_id,
        "object": "chat.completion",
        "created": response.created,
        "model": model,
        "choices": [
            {
                "index": 0,
                "message": message,
                "finish_reason": FINISH_REASON,
            }
        ],
        "usage": response.usage.to_dict(),
    }


def encode_text_completion(response: CanonicalResponse, *, model: str) -> dict[str, Any]:
    """Render a legacy Completions document for prompt-style requests."""
    return {
        "id": response.response_id.replace("chatcmpl-", "cmpl-", 1),
        "object": "text_completion",
        "created": response.created,
        "model": model,
        "choices": [
            {
                "index": 0,
                "text": response.text,
                "logprobs": None,
                "finish_reason": FINISH_REASON,
            }
        ],
        "usage": response.usage.to_dict(),
    }


def encode_response(response: CanonicalResponse, context: RequestContext) -> dict[str, Any]:
    """Pick the document shape matching the inbound request."""
    if context.is_completion_request:
        return encode_text_completion(response, model=context.model)
    return encode_chat_completion(response, model=context.model)


def encode_json(document: dict[str, Any]) -> bytes:
    return json.dumps(document, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
