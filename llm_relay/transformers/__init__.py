"""
Upstream transformer module initialization
"""

from llm_relay.transformers.base import Transformer
from llm_relay.transformers.codex import CodexTransformer
from llm_relay.transformers.copilot import CopilotTransformer
from llm_relay.transformers.factory import get_transformer, reset_transformers
from llm_relay.transformers.kilo import KiloTransformer

__all__ = [
    "Transformer",
    "CodexTransformer",
    "KiloTransformer",
    "CopilotTransformer",
    "get_transformer",
    "reset_transformers",
]
