"""
Upstream Client Base Class

Defines the abstract interface for the upstream transport.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, Optional


@dataclass
class ProviderResponse:
    """
    Provider Response Data Class

    Encapsulates response information from the upstream provider.
    """

    # HTTP status code
    status_code: int
    # Response headers
    headers: dict[str, str] = field(default_factory=dict)
    # Time to first byte (ms)
    first_byte_delay_ms: Optional[int] = None
    # Total time (ms)
    total_time_ms: Optional[int] = None
    # Transport error message; set when no upstream response exists
    error: Optional[str] = None

    @property
    def is_success(self) -> bool:
        """Whether the upstream accepted the request"""
        return self.error is None and 200 <= self.status_code < 300


class UpstreamClient(ABC):
    """
    Upstream Client Abstract Base Class

    The relay always requests a streamed response, so the transport has a
    single streaming operation.
    """

    @abstractmethod
    async def forward_stream(
        self,
        url: str,
        headers: dict[str, Any],
        body: dict[str, Any],
    ) -> AsyncGenerator[tuple[bytes, ProviderResponse], None]:
        """
        Forward a streaming request to the upstream provider

        Transport failures are not raised: they are yielded as a final
        (b"", ProviderResponse) item whose error field is set.

        Args:
            url: Upstream URL
            headers: Outbound request headers
            body: Outbound request body

        Yields:
            tuple[bytes, ProviderResponse]: (Data chunk, Response info)
        """
        pass
