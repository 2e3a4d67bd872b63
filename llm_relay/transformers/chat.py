"""
Chat Completions body rendering shared by the message-array transformers.
"""

from typing import Any, Optional

from llm_relay.domain.canonical import CanonicalMessage, CanonicalRequest, ImagePart, Role, TextPart, ToolSpec

DEFAULT_MAX_TOKENS = 4096
DEFAULT_TEMPERATURE = 0


def render_chat_content(message: CanonicalMessage) -> Any:
    """A single text part renders as a plain string, anything else as content parts."""
    if len(message.parts) == 1 and isinstance(message.parts[0], TextPart):
        return message.parts[0].value

    content: list[dict[str, Any]] = []
    for part in message.parts:
        if isinstance(part, TextPart):
            content.append({"type": "text", "text": part.value})
        elif isinstance(part, ImagePart):
            content.append({"type": "image_url", "image_url": {"url": part.url}})
    return content


def render_chat_message(message: CanonicalMessage) -> dict[str, Any]:
    if message.tool_call_id is not None:
        return {"role": "tool", "tool_call_id": message.tool_call_id, "content": render_chat_content(message)}

    rendered: dict[str, Any] = {"role": message.role.value, "content": render_chat_content(message)}
    if message.tool_calls:
        rendered["tool_calls"] = list(message.tool_calls)
        # A tool-calling turn without text carries null content
        if not message.has_image and not message.get_text():
            rendered["content"] = None
    return rendered


def render_chat_messages(request: CanonicalRequest) -> list[dict[str, Any]]:
    messages: list[dict[str, Any]] = [{"role": Role.SYSTEM.value, "content": request.instructions}]
    messages.extend(render_chat_message(message) for message in request.messages)
    return messages


def render_chat_tools(tools: list[Any]) -> list[Any]:
    out: list[Any] = []
    for tool in tools:
        if not isinstance(tool, ToolSpec):
            out.append(tool)
            continue
        function: dict[str, Any] = {"name": tool.name}
        if tool.description is not None:
            function["description"] = tool.description
        if tool.parameters is not None:
            function["parameters"] = tool.parameters
        out.append({"type": "function", "function": function})
    return out


def render_chat_tool_choice(tool_choice: Any) -> Optional[Any]:
    """Canonical {"type": "function", "name": ...} back to the nested Chat shape."""
    if isinstance(tool_choice, dict) and tool_choice.get("type") == "function" and "name" in tool_choice:
        return {"type": "function", "function": {"name": tool_choice["name"]}}
    return tool_choice


def build_chat_body(request: CanonicalRequest) -> dict[str, Any]:
    body: dict[str, Any] = {
        "model": request.model,
        "messages": render_chat_messages(request),
        "max_tokens": request.max_tokens or DEFAULT_MAX_TOKENS,
        "temperature": request.temperature if request.temperature is not None else DEFAULT_TEMPERATURE,
        "stream": True,
    }
    if request.tools:
        body["tools"] = render_chat_tools(request.tools)
    if request.tool_choice is not None:
        body["tool_choice"] = render_chat_tool_choice(request.tool_choice)
    if request.tools or request.tool_choice is not None:
        body["parallel_tool_calls"] = request.parallel_tool_calls
    return body
