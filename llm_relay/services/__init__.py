"""
Service Layer Module Initialization
"""

from llm_relay.services.credential_service import (
    CopilotTokenStore,
    CredentialProvider,
    StaticCredentialProvider,
)
from llm_relay.services.proxy_service import ProxyService, RelayResult

__all__ = [
    "ProxyService",
    "RelayResult",
    "CredentialProvider",
    "StaticCredentialProvider",
    "CopilotTokenStore",
]
