"""
Canonical Message Model

Provider-agnostic representation of a chat request and of the reconstructed
response. The normalizer produces these types from inbound bodies and the
transformers render them into upstream wire bodies.
"""

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union


class Role(str, Enum):
    """Roles a canonical message may carry."""
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


VALID_EFFORTS = ("low", "medium", "high", "none", "minimal")
VALID_SUMMARIES = ("auto", "concise", "detailed", "none")

DEFAULT_REASONING_EFFORT = "minimal"
DEFAULT_REASONING_SUMMARY = "auto"


@dataclass(frozen=True)
class TextPart:
    """Text content part."""
    value: str = ""


@dataclass(frozen=True)
class ImagePart:
    """Image content part referenced by URL (http(s) or data URI)."""
    url: str


ContentPart = Union[TextPart, ImagePart]


@dataclass(frozen=True)
class CanonicalMessage:
    """
    One conversation turn. Parts keep their input order.

    Tool-turn fields are carried verbatim for upstreams that speak the Chat
    message dialect: tool_calls of an assistant turn, and tool_call_id of a
    tool result (which is otherwise a user-role message).
    """
    role: Role
    parts: tuple[ContentPart, ...] = ()
    tool_calls: tuple[Any, ...] = ()
    tool_call_id: Optional[str] = None

    def get_text(self) -> str:
        return "".join(p.value for p in self.parts if isinstance(p, TextPart))

    @property
    def has_image(self) -> bool:
        return any(isinstance(p, ImagePart) for p in self.parts)


@dataclass(frozen=True)
class ToolSpec:
    """Function tool declaration extracted from a function-typed tool entry."""
    name: str
    description: Optional[str] = None
    parameters: Any = None


# Tools the normalizer could not interpret stay as the raw dict at their position.
ToolEntry = Union[ToolSpec, Any]


@dataclass(frozen=True)
class ReasoningConfig:
    """
    Resolved reasoning parameters.

    effort and summary are always members of VALID_EFFORTS / VALID_SUMMARIES;
    the normalizer substitutes the configured default for anything else.
    """
    effort: str = DEFAULT_REASONING_EFFORT
    summary: str = DEFAULT_REASONING_SUMMARY
    enabled: bool = False

    def to_wire(self) -> dict[str, str]:
        return {"effort": self.effort, "summary": self.summary}


@dataclass
class CanonicalRequest:
    """
    Canonical Request

    Invariants:
    - instructions is never empty
    - messages never contains a system-role message
    """
    model: str
    instructions: str
    messages: list[CanonicalMessage] = field(default_factory=list)
    tools: list[ToolEntry] = field(default_factory=list)
    tool_choice: Any = None
    reasoning: Optional[ReasoningConfig] = None
    stream: bool = False
    parallel_tool_calls: bool = False

    # Legacy prompt/suffix input
    is_completion_request: bool = False
    # Generation parameters forwarded by chat-array transformers
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    # Derived from the inbound conversation, used by provider header sets
    has_images: bool = False
    has_agent_turns: bool = False
    # Request-level metadata some providers expect as headers
    organization_id: Optional[str] = None
    project_id: Optional[str] = None

    @property
    def reasoning_enabled(self) -> bool:
        return self.reasoning is not None and self.reasoning.enabled


@dataclass
class Usage:
    """Token usage in Chat Completions naming."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_payload(cls, payload: Any) -> "Usage":
        """
        Build from an upstream usage object.

        Accepts both Chat (prompt_tokens/completion_tokens) and Responses
        (input_tokens/output_tokens) spellings. Missing fields become 0 and a
        missing total is the sum of the other two.
        """
        if not isinstance(payload, dict):
            return cls()
        prompt = _as_int(payload.get("prompt_tokens", payload.get("input_tokens")))
        completion = _as_int(payload.get("completion_tokens", payload.get("output_tokens")))
        total = payload.get("total_tokens")
        return cls(
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=_as_int(total) if total is not None else prompt + completion,
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


@dataclass
class ToolCallAccumulator:
    """A tool call being reconstructed; arguments stay the raw upstream string."""
    id: Optional[str] = None
    name: str = ""
    arguments: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


@dataclass(frozen=True)
class CanonicalResponse:
    """Fully reconstructed logical message."""
    role: str
    text: str
    tool_calls: tuple[ToolCallAccumulator, ...]
    usage: Usage
    response_id: str
    created: int


@dataclass
class StreamAccumulator:
    """
    Reducer state for one in-flight upstream response.

    text_buffer and tool_calls are append-only, role is last-writer-wins and
    usage is replaced wholesale by terminal usage events.
    """
    text_buffer: str = ""
    role: str = Role.ASSISTANT.value
    tool_calls: list[ToolCallAccumulator] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
    # Per content part text received through deltas, keyed by the part location
    part_text: dict[tuple[Any, ...], str] = field(default_factory=dict)
    # Chat chunk tool calls keyed by their upstream index
    tool_call_index: dict[int, ToolCallAccumulator] = field(default_factory=dict)

    def append_text(self, text: str, key: Optional[tuple[Any, ...]] = None) -> None:
        if not text:
            return
        self.text_buffer += text
        if key is not None:
            self.part_text[key] = self.part_text.get(key, "") + text

    def freeze(self) -> CanonicalResponse:
        return CanonicalResponse(
            role=self.role,
            text=self.text_buffer,
            tool_calls=tuple(
                ToolCallAccumulator(id=c.id, name=c.name, arguments=c.arguments)
                for c in self.tool_calls
            ),
            usage=Usage(**self.usage.to_dict()),
            response_id=f"chatcmpl-{uuid.uuid4().hex}",
            created=int(time.time()),
        )


@dataclass
class RequestContext:
    """
    Per-request correlation object.

    Carries what the response phase needs to know about the request phase
    (client streaming preference, legacy prompt mode, resolved model) for the
    lifetime of one request.
    """
    transformer: str
    model: str
    client_stream: bool = False
    is_completion_request: bool = False
