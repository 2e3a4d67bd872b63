"""
Upstream client module initialization
"""

from llm_relay.providers.base import ProviderResponse, UpstreamClient
from llm_relay.providers.httpx_client import HttpxUpstreamClient

__all__ = [
    "ProviderResponse",
    "UpstreamClient",
    "HttpxUpstreamClient",
]
