"""
Kilo Code Transformer

Relays requests to the Kilo Code OpenRouter gateway, presenting the header set
of the Kilo Code editor extension.
"""

import uuid
from typing import Any, Optional

from llm_relay.common.stream_engine import ChatChunkNormalizer, ChunkRewriter
from llm_relay.config import Settings
from llm_relay.domain.canonical import CanonicalRequest, RequestContext
from llm_relay.services.credential_service import CredentialProvider, StaticCredentialProvider
from llm_relay.transformers.base import Transformer
from llm_relay.transformers.chat import build_chat_body

EDITOR_NAME = "Visual Studio Code - Insiders 1.109.0-insider"


class KiloTransformer(Transformer):
    """OpenAI compatible upstream behind the Kilo Code gateway."""

    name = "kilo"

    def __init__(
        self,
        settings: Settings,
        credential_provider: Optional[CredentialProvider] = None,
    ):
        super().__init__(
            settings,
            credential_provider or StaticCredentialProvider(settings.KILO_API_KEY),
        )

    @property
    def default_model(self) -> str:
        return self.settings.KILO_DEFAULT_MODEL

    @property
    def upstream_url(self) -> str:
        return self.settings.KILO_UPSTREAM_URL

    @property
    def headers_file(self) -> str:
        return self.settings.KILO_HEADERS_FILE

    def build_body(self, request: CanonicalRequest) -> dict[str, Any]:
        return build_chat_body(request)

    def provider_headers(self, request: CanonicalRequest) -> dict[str, str]:
        version = self.settings.KILO_VERSION
        headers = {
            "Accept": "application/json",
            "X-Stainless-Retry-Count": "0",
            "X-Stainless-Lang": "js",
            "X-Stainless-Package-Version": "5.12.2",
            "X-Stainless-OS": "MacOS",
            "X-Stainless-Arch": "arm64",
            "X-Stainless-Runtime": "node",
            "X-Stainless-Runtime-Version": "v22.21.1",
            "HTTP-Referer": "https://kilocode.ai",
            "X-Title": "Kilo Code",
            "X-KiloCode-Version": version,
            "User-Agent": f"Kilo-Code/{version}",
            "Content-Type": "application/json",
            "X-KiloCode-EditorName": EDITOR_NAME,
            "X-KiloCode-TaskId": str(uuid.uuid4()),
            "accept-language": "*",
            "sec-fetch-mode": "cors",
        }

        organization_id = request.organization_id or self.settings.KILO_ORGANIZATION_ID
        if organization_id:
            headers["X-KiloCode-OrganizationId"] = organization_id
        project_id = request.project_id or self.settings.KILO_PROJECT_ID
        if project_id:
            headers["X-KiloCode-ProjectId"] = project_id
        return headers

    def new_rewriter(self, context: RequestContext) -> ChunkRewriter:
        return ChatChunkNormalizer()
