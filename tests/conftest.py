"""
Test Configuration Module
"""

import json
from typing import Any, AsyncGenerator, Optional

import pytest

from llm_relay.config import Settings
from llm_relay.providers.base import ProviderResponse, UpstreamClient
from llm_relay.transformers import reset_transformers


class FakeUpstreamClient(UpstreamClient):
    """Scripted upstream: yields the given chunks with one response object."""

    def __init__(
        self,
        chunks: Optional[list[bytes]] = None,
        status_code: int = 200,
        headers: Optional[dict[str, str]] = None,
        error: Optional[str] = None,
        mid_stream_error: Optional[str] = None,
    ):
        self.chunks = chunks or []
        self.status_code = status_code
        self.headers = headers or {"content-type": "text/event-stream"}
        self.error = error
        self.mid_stream_error = mid_stream_error
        self.calls: list[dict[str, Any]] = []
        self.closed = False

    async def forward_stream(
        self,
        url: str,
        headers: dict[str, Any],
        body: dict[str, Any],
    ) -> AsyncGenerator[tuple[bytes, ProviderResponse], None]:
        self.calls.append({"url": url, "headers": headers, "body": body})
        try:
            if self.error:
                yield b"", ProviderResponse(status_code=502, error=self.error)
                return

            response = ProviderResponse(status_code=self.status_code, headers=self.headers)
            for chunk in self.chunks:
                yield chunk, response
            if self.mid_stream_error:
                yield b"", ProviderResponse(status_code=502, error=self.mid_stream_error)
        finally:
            self.closed = True


def sse_bytes(*events: Any, done: bool = True) -> bytes:
    """Render events as an SSE body; strings are emitted as raw lines."""
    out = []
    for event in events:
        if isinstance(event, str):
            out.append(f"{event}\n")
        else:
            out.append(f"data: {json.dumps(event)}\n\n")
    if done:
        out.append("data: [DONE]\n\n")
    return "".join(out).encode("utf-8")


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings isolated from the environment's .env file"""
    return Settings(
        _env_file=None,
        DEBUG=False,
        TRANSFORMER="codex",
        KILO_API_KEY="kilo-secret",
        KILO_ORGANIZATION_ID=None,
        KILO_PROJECT_ID=None,
        COPILOT_API_KEY=None,
        COPILOT_TOKEN_FILE=str(tmp_path / "copilot-tokens.json"),
        CODEX_HEADERS_FILE="",
        KILO_HEADERS_FILE="",
        REASONING_ENABLE=False,
        REASONING_EFFORT="minimal",
        REASONING_SUMMARY="auto",
    )


@pytest.fixture(autouse=True)
def _reset_transformer_cache():
    reset_transformers()
    yield
    reset_transformers()


@pytest.fixture
def fake_upstream():
    """FakeUpstreamClient class"""
    return FakeUpstreamClient


@pytest.fixture
def sse():
    """SSE body builder"""
    return sse_bytes
