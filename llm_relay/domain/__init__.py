"""
Domain Model Module Initialization
"""

from llm_relay.domain.canonical import (
    VALID_EFFORTS,
    VALID_SUMMARIES,
    CanonicalMessage,
    CanonicalRequest,
    CanonicalResponse,
    ContentPart,
    ImagePart,
    ReasoningConfig,
    RequestContext,
    Role,
    StreamAccumulator,
    TextPart,
    ToolCallAccumulator,
    ToolSpec,
    Usage,
)
from llm_relay.domain.credential import Credential

__all__ = [
    "Credential",
    "VALID_EFFORTS",
    "VALID_SUMMARIES",
    "CanonicalMessage",
    "CanonicalRequest",
    "CanonicalResponse",
    "ContentPart",
    "ImagePart",
    "ReasoningConfig",
    "RequestContext",
    "Role",
    "StreamAccumulator",
    "TextPart",
    "ToolCallAccumulator",
    "ToolSpec",
    "Usage",
]
