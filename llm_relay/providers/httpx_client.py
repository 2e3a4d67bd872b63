"""
httpx upstream client

Streams the upstream response body chunk by chunk; nothing is read ahead of
the consumer.
"""

import logging
import time
from typing import Any, AsyncGenerator, Optional

import httpx

from llm_relay.common.proxy_headers import mask_headers_for_log
from llm_relay.config import get_settings
from llm_relay.providers.base import ProviderResponse, UpstreamClient

logger = logging.getLogger(__name__)


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


class HttpxUpstreamClient(UpstreamClient):
    """
    httpx based upstream client

    A transport may be injected (e.g. httpx.MockTransport in tests).
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout if timeout is not None else get_settings().HTTP_TIMEOUT
        self._transport = transport

    async def forward_stream(
        self,
        url: str,
        headers: dict[str, Any],
        body: dict[str, Any],
    ) -> AsyncGenerator[tuple[bytes, ProviderResponse], None]:
        """
        Forward streaming request upstream

        Args:
            url: Upstream URL
            headers: Request headers
            body: Request body

        Yields:
            tuple[bytes, ProviderResponse]: (Data chunk, Response info)
        """
        logger.debug(
            "Upstream Stream Request: url=%s headers=%s",
            url,
            mask_headers_for_log(headers),
        )

        start = time.perf_counter()
        provider_response: Optional[ProviderResponse] = None

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                async with client.stream("POST", url, headers=headers, json=body) as response:
                    provider_response = ProviderResponse(
                        status_code=response.status_code,
                        headers=dict(response.headers),
                    )

                    async for chunk in response.aiter_bytes():
                        if provider_response.first_byte_delay_ms is None:
                            provider_response.first_byte_delay_ms = _elapsed_ms(start)
                        yield chunk, provider_response

                    provider_response.total_time_ms = _elapsed_ms(start)

            # An empty body still has to report the response
            if provider_response.first_byte_delay_ms is None:
                yield b"", provider_response

        except httpx.TimeoutException as e:
            yield b"", ProviderResponse(
                status_code=504,
                error=f"Request timeout: {str(e)}",
                total_time_ms=_elapsed_ms(start),
            )

        except httpx.RequestError as e:
            yield b"", ProviderResponse(
                status_code=502,
                error=f"Request error: {str(e)}",
                total_time_ms=_elapsed_ms(start),
            )
