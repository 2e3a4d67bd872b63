"""
Transformer Base Class

A transformer binds one upstream variant: how a canonical request becomes
its wire body and headers, where it is sent, which credential it carries and
how its SSE stream is reduced or rewritten.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from llm_relay.common.normalizer import (
    NormalizerDefaults,
    normalize,
    validate_reasoning_config,
)
from llm_relay.common.stream_engine import ChunkRewriter, Reducer, reduce_chat_chunk
from llm_relay.config import Settings
from llm_relay.domain.canonical import CanonicalRequest, ReasoningConfig, RequestContext
from llm_relay.domain.credential import Credential
from llm_relay.services.credential_service import CredentialProvider


class Transformer(ABC):
    """
    Upstream Variant Abstract Base Class

    Subclasses render the wire body and the fixed provider header set; the
    rest has defaults suitable for Chat Completions compatible upstreams.
    """

    name: str = ""
    # Alias name -> upstream model name (case-sensitive)
    model_aliases: dict[str, str] = {}

    def __init__(
        self,
        settings: Settings,
        credential_provider: Optional[CredentialProvider] = None,
    ):
        self.settings = settings
        self.credential_provider = credential_provider
        self.reasoning_defaults: ReasoningConfig = validate_reasoning_config(
            {
                "enable": settings.REASONING_ENABLE,
                "effort": settings.REASONING_EFFORT,
                "summary": settings.REASONING_SUMMARY,
            }
        )

    @property
    @abstractmethod
    def default_model(self) -> str:
        """Model used when the request names none."""

    @property
    @abstractmethod
    def upstream_url(self) -> str:
        """Configured upstream endpoint."""

    @property
    def headers_file(self) -> str:
        """Header override file path; empty disables overrides."""
        return ""

    @property
    def reducer(self) -> Reducer:
        """Event reducer for buffered reconstruction."""
        return reduce_chat_chunk

    def normalizer_defaults(self) -> NormalizerDefaults:
        return NormalizerDefaults(
            default_model=self.default_model,
            model_aliases=self.model_aliases,
            instructions=self.settings.DEFAULT_INSTRUCTIONS,
            reasoning=self.reasoning_defaults,
        )

    def normalize(self, raw: Any) -> CanonicalRequest:
        return normalize(raw, self.normalizer_defaults())

    @abstractmethod
    def build_body(self, request: CanonicalRequest) -> dict[str, Any]:
        """
        Render the upstream request body

        Streaming is always requested upstream; the client-visible mode is
        reconciled when the response is relayed.
        """

    @abstractmethod
    def provider_headers(self, request: CanonicalRequest) -> dict[str, str]:
        """Fixed header set of the upstream variant for this request."""

    async def get_credential(self) -> Optional[Credential]:
        if self.credential_provider is None:
            return None
        return await self.credential_provider.get_credential()

    def resolve_url(self, credential: Optional[Credential]) -> str:
        """Upstream URL; a credential bound to an endpoint takes precedence."""
        if credential is not None and credential.endpoint:
            return credential.endpoint
        return self.upstream_url

    def new_rewriter(self, context: RequestContext) -> ChunkRewriter:
        """Per-response rewriter for streaming clients."""
        return ChunkRewriter()
