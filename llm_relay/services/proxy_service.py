"""Proxy Core Service Module

Implements the relay flow for one request:
normalize -> build body/headers -> send -> reconstruct or pass through -> encode."""

from __future__ import annotations

import json
import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, AsyncGenerator, AsyncIterator, Mapping, Optional

from llm_relay.common.errors import UpstreamTransportError
from llm_relay.common.header_overrides import load_headers_from_file
from llm_relay.common.proxy_headers import (
    build_outbound_headers,
    mask_headers_for_log,
    sanitize_upstream_response_headers,
)
from llm_relay.common.response_encoder import encode_json, encode_response
from llm_relay.common.stream_engine import passthrough, reconstruct
from llm_relay.config import Settings, get_settings
from llm_relay.domain.canonical import RequestContext
from llm_relay.providers.base import ProviderResponse, UpstreamClient

if TYPE_CHECKING:
    from llm_relay.transformers.base import Transformer

logger = logging.getLogger(__name__)

SSE_MEDIA_TYPE = "text/event-stream"
JSON_MEDIA_TYPE = "application/json"


def _smart_truncate(data: Any, max_list: int = 20, max_str: int = 1000) -> Any:
    """
    Recursively truncate data structures for logging.
    """
    if isinstance(data, dict):
        return {k: _smart_truncate(v, max_list, max_str) for k, v in data.items()}

    if isinstance(data, list):
        if len(data) > max_list:
            truncated = [_smart_truncate(x, max_list, max_str) for x in data[:max_list]]
            truncated.append(f"...({len(data) - max_list} more items)...")
            return truncated
        return [_smart_truncate(x, max_list, max_str) for x in data]

    # Image data URIs dominate request size
    if isinstance(data, str) and len(data) > max_str:
        return data[:max_str] + "...[truncated]"

    return data


@dataclass
class RelayResult:
    """
    Client-facing result of one relayed request

    Exactly one of body / stream is set.
    """

    status_code: int
    media_type: str
    headers: dict[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None
    stream: Optional[AsyncIterator[bytes]] = None

    @property
    def is_stream(self) -> bool:
        return self.stream is not None


async def upstream_bytes(
    first_chunk: bytes,
    upstream: AsyncGenerator[tuple[bytes, ProviderResponse], None],
) -> AsyncGenerator[bytes, None]:
    """
    Body bytes of an accepted upstream response

    Raises:
        UpstreamTransportError: The upstream connection failed mid-stream
    """
    try:
        if first_chunk:
            yield first_chunk
        async for chunk, resp in upstream:
            if resp.error:
                raise UpstreamTransportError(message=resp.error, status_code=resp.status_code)
            if chunk:
                yield chunk
    finally:
        await upstream.aclose()


class ProxyService:
    """
    Proxy Core Service

    Handles the complete flow of a relayed request:
    1. Normalize the inbound body into a canonical request
    2. Render the upstream body and synthesize outbound headers
    3. Forward upstream (always streamed)
    4. Relay upstream errors as-is
    5. Rebuild one document (buffered client) or re-emit events (streaming client)
    """

    def __init__(
        self,
        transformer: "Transformer",
        client: UpstreamClient,
        settings: Optional[Settings] = None,
    ):
        self.transformer = transformer
        self.client = client
        self.settings = settings or get_settings()

    async def process_request(
        self,
        body: Any,
        headers: Mapping[str, str],
    ) -> RelayResult:
        """
        Process Proxy Request

        Args:
            body: Decoded inbound JSON body
            headers: Inbound request headers

        Returns:
            RelayResult: Document or event stream for the client

        Raises:
            UpstreamTransportError: The upstream could not be reached (buffered and streaming)
                or failed while the document was being rebuilt (buffered only)
        """
        transformer = self.transformer
        request = transformer.normalize(body)
        context = RequestContext(
            transformer=transformer.name,
            model=request.model,
            client_stream=request.stream,
            is_completion_request=request.is_completion_request,
        )

        upstream_body = transformer.build_body(request)
        credential = await transformer.get_credential()
        outbound_headers = build_outbound_headers(
            headers,
            transformer.provider_headers(request),
            load_headers_from_file(transformer.headers_file),
            credential=credential,
            strip_authorization=self.settings.STRIP_AUTHORIZATION,
        )
        url = transformer.resolve_url(credential)

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "Original Request: transformer=%s body=%s",
                transformer.name,
                json.dumps(_smart_truncate(body), ensure_ascii=False),
            )
            logger.debug(
                "Transformed Request: url=%s headers=%s body=%s",
                url,
                mask_headers_for_log(outbound_headers),
                json.dumps(_smart_truncate(upstream_body), ensure_ascii=False),
            )

        upstream = self.client.forward_stream(url, outbound_headers, upstream_body)
        try:
            first_chunk, first_resp = await anext(upstream)
        except StopAsyncIteration:
            raise UpstreamTransportError(message="Upstream returned no response")

        if first_resp.error:
            await upstream.aclose()
            logger.error("Upstream request failed: url=%s error=%s", url, first_resp.error)
            raise UpstreamTransportError(message=first_resp.error, status_code=first_resp.status_code)

        if not first_resp.is_success:
            return await self._relay_error(first_chunk, first_resp, upstream)

        source = upstream_bytes(first_chunk, upstream)

        if context.client_stream:
            return RelayResult(
                status_code=first_resp.status_code,
                media_type=SSE_MEDIA_TYPE,
                headers={"Cache-Control": "no-cache"},
                stream=passthrough(source, transformer.new_rewriter(context)),
            )

        response = await reconstruct(source, transformer.reducer)
        document = encode_response(response, context)
        logger.debug(
            "Reconstructed response: id=%s tool_calls=%d usage=%s",
            response.response_id,
            len(response.tool_calls),
            response.usage.to_dict(),
        )
        return RelayResult(
            status_code=first_resp.status_code,
            media_type=JSON_MEDIA_TYPE,
            body=encode_json(document),
        )

    async def _relay_error(
        self,
        first_chunk: bytes,
        first_resp: ProviderResponse,
        upstream: AsyncGenerator[tuple[bytes, ProviderResponse], None],
    ) -> RelayResult:
        """Read the whole upstream error body and return it with the upstream status."""
        chunks = [first_chunk]
        async with aclosing(upstream) as rest:
            async for chunk, resp in rest:
                if resp.error:
                    break
                chunks.append(chunk)

        content = b"".join(chunks)
        logger.warning(
            "Upstream returned error: status=%s body=%s",
            first_resp.status_code,
            content[:2000].decode("utf-8", errors="replace"),
        )
        response_headers = sanitize_upstream_response_headers(first_resp.headers)
        media_type = response_headers.pop("content-type", None) or JSON_MEDIA_TYPE
        return RelayResult(
            status_code=first_resp.status_code,
            media_type=media_type,
            headers=response_headers,
            body=content,
        )
