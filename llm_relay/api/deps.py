"""
API Dependency Injection Module

Provides dependencies required by FastAPI routes.
"""

from typing import Annotated, Optional

from fastapi import Depends

from llm_relay.config import get_settings
from llm_relay.providers import HttpxUpstreamClient, UpstreamClient
from llm_relay.services import ProxyService
from llm_relay.transformers import get_transformer

# ============ Global Singletons ============

# Shared upstream client; holds no per-request state
_upstream_client: Optional[UpstreamClient] = None


def get_upstream_client() -> UpstreamClient:
    """Get the upstream client"""
    global _upstream_client
    if _upstream_client is None:
        _upstream_client = HttpxUpstreamClient()
    return _upstream_client


# ============ Service Dependencies ============

def get_proxy_service(
    client: Annotated[UpstreamClient, Depends(get_upstream_client)],
) -> ProxyService:
    """Get proxy service for the configured transformer"""
    settings = get_settings()
    transformer = get_transformer(settings.TRANSFORMER, settings)
    return ProxyService(transformer, client, settings)


ProxyServiceDep = Annotated[ProxyService, Depends(get_proxy_service)]
