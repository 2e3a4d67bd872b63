"""
Proxy API Module Initialization
"""

from llm_relay.api.proxy.openai import router as openai_router

__all__ = [
    "openai_router",
]
