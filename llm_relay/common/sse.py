"""
SSE Line Framing

Splits an upstream byte stream into complete lines and classifies each line.

- Chunks may end anywhere, including inside a line or a multi-byte UTF-8 character
- Only complete lines are ever returned; the remainder is kept as the line tail
- Supports CRLF (\r\n)
"""

from __future__ import annotations

import codecs
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Union

from llm_relay.common.errors import ProtocolParseError

DATA_PREFIX = "data:"
COMMENT_PREFIX = ":"
DONE_SENTINEL = "[DONE]"


class LineKind(str, Enum):
    BLANK = "blank"
    COMMENT = "comment"
    DATA = "data"
    DONE = "done"
    OTHER = "other"


@dataclass(frozen=True)
class SSELine:
    kind: LineKind
    raw: str
    payload: str = ""


class SSELineSplitter:
    """
    Incremental line splitter.

    feed() returns the complete lines contained in everything received so far
    and keeps the trailing partial line in line_tail. Feeding a text in any
    number of chunks yields the same lines as feeding it at once.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self.line_tail = ""

    def feed(self, chunk: Union[bytes, str]) -> list[str]:
        if not chunk:
            return []
        text = chunk if isinstance(chunk, str) else self._decoder.decode(chunk)
        if not text:
            return []

        lines = (self.line_tail + text).split("\n")
        self.line_tail = lines.pop()
        return [line[:-1] if line.endswith("\r") else line for line in lines]

    def flush(self) -> list[str]:
        """Return the unterminated last line at end of stream, if any."""
        rest = self.line_tail + self._decoder.decode(b"", final=True)
        self.line_tail = ""
        if rest.endswith("\r"):
            rest = rest[:-1]
        return [rest] if rest else []


def classify_line(line: str) -> SSELine:
    """
    Classify one complete line.

    Data payloads are taken after the "data:" prefix and trimmed.
    """
    stripped = line.strip()
    if not stripped:
        return SSELine(LineKind.BLANK, line)
    if stripped.startswith(COMMENT_PREFIX):
        return SSELine(LineKind.COMMENT, line)
    if stripped.startswith(DATA_PREFIX):
        payload = stripped[len(DATA_PREFIX):].strip()
        if payload == DONE_SENTINEL:
            return SSELine(LineKind.DONE, line, payload)
        return SSELine(LineKind.DATA, line, payload)
    return SSELine(LineKind.OTHER, line)


def parse_event(payload: str) -> dict[str, Any]:
    """
    Parse one data payload as a JSON object.

    Raises:
        ProtocolParseError: Payload is not valid JSON or not an object
    """
    try:
        data = json.loads(payload)
    except (json.JSONDecodeError, TypeError) as e:
        raise ProtocolParseError(f"Invalid SSE data payload: {e}", payload) from e
    if not isinstance(data, dict):
        raise ProtocolParseError("SSE data payload is not a JSON object", payload)
    return data


async def iter_sse_lines(upstream: AsyncIterator[bytes]) -> AsyncIterator[SSELine]:
    """
    Classified lines of an upstream byte stream, in arrival order.

    Reads one chunk at a time; the unterminated tail is emitted at end of stream.
    """
    splitter = SSELineSplitter()
    async for chunk in upstream:
        for line in splitter.feed(chunk):
            yield classify_line(line)
    for line in splitter.flush():
        yield classify_line(line)


def encode_sse_data(payload: str) -> bytes:
    return f"data: {payload}\n\n".encode("utf-8")


def encode_sse_json(obj: dict[str, Any]) -> bytes:
    return encode_sse_data(json.dumps(obj, ensure_ascii=False))


def encode_sse_done() -> bytes:
    return encode_sse_data(DONE_SENTINEL)
