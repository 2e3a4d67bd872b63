"""
Codex Transformer

Relays Chat Completions requests to the ChatGPT Codex backend, which speaks
the OpenAI Responses API (input items in, Responses stream events out).
"""

from typing import Any

from llm_relay.common.stream_engine import (
    ChunkRewriter,
    Reducer,
    ResponsesToChatRewriter,
    reduce_responses_event,
)
from llm_relay.domain.canonical import (
    CanonicalMessage,
    CanonicalRequest,
    ImagePart,
    RequestContext,
    TextPart,
    ToolSpec,
)
from llm_relay.transformers.base import Transformer

# Asks the provider to return reasoning items with encrypted content
ENCRYPTED_REASONING_INCLUDE = "reasoning.encrypted_content"

CODEX_MODEL = "gpt-5.2-codex"


def render_input_content(message: CanonicalMessage) -> list[dict[str, Any]]:
    content: list[dict[str, Any]] = []
    for part in message.parts:
        if isinstance(part, TextPart):
            content.append({"type": "input_text", "text": part.value})
        elif isinstance(part, ImagePart):
            content.append({"type": "input_image", "image_url": part.url})
    return content


def render_input_items(request: CanonicalRequest) -> list[dict[str, Any]]:
    """One input item per canonical message, in order."""
    return [
        {"role": message.role.value, "content": render_input_content(message)}
        for message in request.messages
    ]


def render_response_tools(tools: list[Any]) -> list[Any]:
    out: list[Any] = []
    for tool in tools:
        if isinstance(tool, ToolSpec):
            out.append(
                {
                    "type": "function",
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters,
                }
            )
        else:
            out.append(tool)
    return out


class CodexTransformer(Transformer):
    """OpenAI Responses API upstream."""

    name = "codex"
    model_aliases = {
        "gpt-5.2-codex": CODEX_MODEL,
        "gpt-5.2-codex-latest": CODEX_MODEL,
        "gpt5": CODEX_MODEL,
        "gpt-5": CODEX_MODEL,
        "codex": CODEX_MODEL,
    }

    @property
    def default_model(self) -> str:
        return self.settings.CODEX_DEFAULT_MODEL

    @property
    def upstream_url(self) -> str:
        return self.settings.CODEX_UPSTREAM_URL

    @property
    def headers_file(self) -> str:
        return self.settings.CODEX_HEADERS_FILE

    @property
    def reducer(self) -> Reducer:
        return reduce_responses_event

    def build_body(self, request: CanonicalRequest) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": request.model,
            "instructions": request.instructions,
            "input": render_input_items(request),
            "tools": render_response_tools(request.tools),
        }
        if request.tool_choice is not None:
            body["tool_choice"] = request.tool_choice
        body["parallel_tool_calls"] = request.parallel_tool_calls
        body["store"] = False
        body["stream"] = True

        include: list[str] = []
        if request.reasoning_enabled:
            include.append(ENCRYPTED_REASONING_INCLUDE)
        body["include"] = include
        if request.reasoning_enabled:
            body["reasoning"] = request.reasoning.to_wire()
        return body

    def provider_headers(self, request: CanonicalRequest) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }

    def new_rewriter(self, context: RequestContext) -> ChunkRewriter:
        return ResponsesToChatRewriter(model=context.model)
