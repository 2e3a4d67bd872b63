"""
API Router Module Initialization
"""

from llm_relay.api.deps import get_proxy_service, get_upstream_client

__all__ = [
    "get_proxy_service",
    "get_upstream_client",
]
