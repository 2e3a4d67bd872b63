"""
Request Normalizer

Converts an inbound Chat Completions (or legacy Completions) request body into
a CanonicalRequest. Malformed fields are dropped or defaulted, never raised.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from llm_relay.domain.canonical import (
    DEFAULT_REASONING_EFFORT,
    DEFAULT_REASONING_SUMMARY,
    VALID_EFFORTS,
    VALID_SUMMARIES,
    CanonicalMessage,
    CanonicalRequest,
    ContentPart,
    ImagePart,
    ReasoningConfig,
    Role,
    TextPart,
    ToolSpec,
)

logger = logging.getLogger(__name__)

DEFAULT_INSTRUCTIONS = "You are a helpful assistant."


@dataclass(frozen=True)
class NormalizerDefaults:
    """Per-transformer defaults the normalizer falls back to."""
    default_model: str
    model_aliases: Mapping[str, str] = field(default_factory=dict)
    instructions: str = DEFAULT_INSTRUCTIONS
    reasoning: ReasoningConfig = field(default_factory=ReasoningConfig)


def validate_reasoning_config(config: Optional[Mapping[str, Any]]) -> ReasoningConfig:
    """
    Validate static reasoning configuration.

    Each rejected value is logged as a warning and replaced by its default;
    nothing invalid is ever returned.

    Args:
        config: Mapping with optional "enable", "effort" and "summary" keys

    Returns:
        ReasoningConfig: Validated configuration
    """
    config = config or {}
    enabled = False
    effort = DEFAULT_REASONING_EFFORT
    summary = DEFAULT_REASONING_SUMMARY

    value = config.get("enable")
    if value is not None:
        if isinstance(value, bool):
            enabled = value
        else:
            logger.warning(
                "Invalid reasoning.enable value: %r. Expected boolean. Using default: %s",
                value,
                enabled,
            )

    value = config.get("effort")
    if value is not None:
        if value in VALID_EFFORTS:
            effort = value
        else:
            logger.warning(
                "Invalid reasoning.effort value: %r. Expected one of: %s. Using default: %s",
                value,
                ", ".join(VALID_EFFORTS),
                effort,
            )

    value = config.get("summary")
    if value is not None:
        if value in VALID_SUMMARIES:
            summary = value
        else:
            logger.warning(
                "Invalid reasoning.summary value: %r. Expected one of: %s. Using default: %s",
                value,
                ", ".join(VALID_SUMMARIES),
                summary,
            )

    return ReasoningConfig(effort=effort, summary=summary, enabled=enabled)


def resolve_model_name(
    name: Any,
    aliases: Optional[Mapping[str, str]] = None,
    default_model: str = "",
) -> str:
    """
    Resolve the upstream model name.

    "gpt5:high" -> alias lookup of "gpt5". Unknown names pass through verbatim,
    blank or non-string input resolves to the default model.
    """
    if not isinstance(name, str) or not name.strip():
        return default_model
    base = name.strip().split(":", 1)[0].strip()
    return (aliases or {}).get(base, base)


def resolve_reasoning(raw_reasoning: Any, defaults: ReasoningConfig) -> ReasoningConfig:
    """
    Resolve per-request reasoning.

    Enabled when configuration enables it or the request supplies a reasoning
    value. Per-call effort/summary overrides are accepted only when valid.
    """
    requested = raw_reasoning is not None and raw_reasoning is not False
    if not (defaults.enabled or requested):
        return ReasoningConfig(effort=defaults.effort, summary=defaults.summary, enabled=False)

    overrides = raw_reasoning if isinstance(raw_reasoning, dict) else {}
    effort = overrides.get("effort")
    summary = overrides.get("summary")
    return ReasoningConfig(
        effort=effort if effort in VALID_EFFORTS else defaults.effort,
        summary=summary if summary in VALID_SUMMARIES else defaults.summary,
        enabled=True,
    )


def normalize_content(content: Any) -> tuple[ContentPart, ...]:
    """
    Convert message content into canonical parts.

    - str -> one TextPart
    - list -> element-wise; unrecognized elements are dropped
    - anything else -> one TextPart of its string form
    """
    if isinstance(content, str):
        return (TextPart(content),)

    if isinstance(content, list):
        parts: list[ContentPart] = []
        for item in content:
            part = _normalize_part(item)
            if part is not None:
                parts.append(part)
        return tuple(parts)

    return (TextPart(str(content or "")),)


def _normalize_part(item: Any) -> Optional[ContentPart]:
    if isinstance(item, str):
        return TextPart(item)
    if not isinstance(item, dict):
        return None

    item_type = item.get("type")
    if item_type == "text":
        text = item.get("text")
        return TextPart(text if isinstance(text, str) else "")
    if item_type == "image_url":
        image_url = item.get("image_url")
        url = image_url.get("url") if isinstance(image_url, dict) else None
        if isinstance(url, str) and url:
            return ImagePart(url)
    return None


def extract_system_text(content: Any) -> str:
    """Text of a system message; array content is joined with newlines."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        texts: list[str] = []
        for part in content:
            if not isinstance(part, dict):
                continue
            text = part.get("text") or part.get("content")
            if isinstance(text, str) and text:
                texts.append(text)
        return "\n".join(texts)
    return ""


def normalize_tools(tools: Any) -> list[Any]:
    """Function-shaped tools become ToolSpec; other entries pass through in place."""
    if not isinstance(tools, list):
        return []

    out: list[Any] = []
    for tool in tools:
        function = tool.get("function") if isinstance(tool, dict) else None
        if not isinstance(function, dict):
            out.append(tool)
            continue
        out.append(
            ToolSpec(
                name=function.get("name"),
                description=function.get("description"),
                parameters=function.get("parameters"),
            )
        )
    return out


def normalize_tool_choice(tool_choice: Any) -> Any:
    if not tool_choice:
        return None
    if isinstance(tool_choice, str):
        return tool_choice
    if isinstance(tool_choice, dict) and tool_choice.get("type") == "function":
        function = tool_choice.get("function")
        if isinstance(function, dict) and function.get("name"):
            return {"type": "function", "name": function["name"]}
    return tool_choice


def _normalize_prompt(raw: dict[str, Any]) -> list[CanonicalMessage]:
    messages = [CanonicalMessage(role=Role.USER, parts=normalize_content(raw.get("prompt")))]
    suffix = raw.get("suffix")
    if suffix:
        messages.append(CanonicalMessage(role=Role.ASSISTANT, parts=normalize_content(suffix)))
    return messages


def normalize(raw: Any, defaults: NormalizerDefaults) -> CanonicalRequest:
    """
    Normalize an inbound request body.

    Args:
        raw: Decoded JSON body (anything that is not a dict is treated as {})
        defaults: Transformer defaults (model, aliases, instructions, reasoning)

    Returns:
        CanonicalRequest: Canonical request
    """
    if not isinstance(raw, dict):
        raw = {}

    instructions = raw.get("instructions") if isinstance(raw.get("instructions"), str) else ""
    messages: list[CanonicalMessage] = []
    has_agent_turns = False
    is_completion_request = "prompt" in raw

    if is_completion_request:
        messages = _normalize_prompt(raw)
    else:
        raw_messages = raw.get("messages")
        system_seen = False
        for msg in raw_messages if isinstance(raw_messages, list) else []:
            if not isinstance(msg, dict) or not msg.get("role"):
                continue
            role = msg["role"]
            if role == Role.SYSTEM.value:
                if not system_seen:
                    system_seen = True
                    instructions = extract_system_text(msg.get("content"))
                continue
            if role in ("assistant", "tool"):
                has_agent_turns = True
            tool_calls = msg.get("tool_calls") if role == Role.ASSISTANT.value else None
            tool_call_id = msg.get("tool_call_id") if role == "tool" else None
            messages.append(
                CanonicalMessage(
                    role=Role.ASSISTANT if role == Role.ASSISTANT.value else Role.USER,
                    parts=normalize_content(msg.get("content")),
                    tool_calls=tuple(tool_calls) if isinstance(tool_calls, list) else (),
                    tool_call_id=tool_call_id if isinstance(tool_call_id, str) else None,
                )
            )

    if not instructions or not instructions.strip():
        instructions = defaults.instructions or DEFAULT_INSTRUCTIONS

    max_tokens = raw.get("max_tokens")
    temperature = raw.get("temperature")

    return CanonicalRequest(
        model=resolve_model_name(raw.get("model"), defaults.model_aliases, defaults.default_model),
        instructions=instructions,
        messages=messages,
        tools=normalize_tools(raw.get("tools")),
        tool_choice=normalize_tool_choice(raw.get("tool_choice")),
        reasoning=resolve_reasoning(raw.get("reasoning"), defaults.reasoning),
        stream=raw.get("stream") is True,
        parallel_tool_calls=bool(raw.get("parallel_tool_calls")),
        is_completion_request=is_completion_request,
        max_tokens=max_tokens if isinstance(max_tokens, int) and not isinstance(max_tokens, bool) else None,
        temperature=(
            temperature
            if isinstance(temperature, (int, float)) and not isinstance(temperature, bool)
            else None
        ),
        has_images=any(m.has_image for m in messages),
        has_agent_turns=has_agent_turns,
        organization_id=_optional_str(raw.get("organization_id")),
        project_id=_optional_str(raw.get("project_id")),
    )


def _optional_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None
