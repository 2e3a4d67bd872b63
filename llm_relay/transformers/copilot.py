"""
GitHub Copilot Transformer

Relays requests to the Copilot chat endpoint using a short-lived Copilot
token from the local token file. The token also names the endpoint the
request must go to.
"""

import uuid
from typing import Any, Optional

from llm_relay.config import Settings
from llm_relay.domain.canonical import CanonicalRequest
from llm_relay.services.credential_service import (
    COPILOT_CHAT_VERSION,
    CopilotTokenStore,
    CredentialProvider,
)
from llm_relay.transformers.base import Transformer
from llm_relay.transformers.chat import build_chat_body

EDITOR_VERSION = "vscode/1.103.2"
API_VERSION = "2025-04-01"


def strip_provider_prefix(model: Any) -> Any:
    """"copilot,gpt-4o" -> "gpt-4o"; the last comma-separated segment names the model."""
    if isinstance(model, str) and "," in model:
        return model.split(",")[-1] or model
    return model


class CopilotTransformer(Transformer):
    """GitHub Copilot chat upstream (Chat Completions compatible)."""

    name = "copilot"

    def __init__(
        self,
        settings: Settings,
        credential_provider: Optional[CredentialProvider] = None,
    ):
        if credential_provider is None:
            credential_provider = CopilotTokenStore(
                settings.COPILOT_TOKEN_FILE,
                settings.COPILOT_TOKEN_REFRESH_URL,
                buffer_seconds=settings.TOKEN_EXPIRY_BUFFER_SECONDS,
                fallback_token=settings.COPILOT_API_KEY,
            )
        super().__init__(settings, credential_provider)

    @property
    def default_model(self) -> str:
        return self.settings.COPILOT_DEFAULT_MODEL

    @property
    def upstream_url(self) -> str:
        return self.settings.COPILOT_UPSTREAM_URL

    def normalize(self, raw: Any) -> CanonicalRequest:
        if isinstance(raw, dict) and "model" in raw:
            raw = {**raw, "model": strip_provider_prefix(raw["model"])}
        return super().normalize(raw)

    def build_body(self, request: CanonicalRequest) -> dict[str, Any]:
        return build_chat_body(request)

    def provider_headers(self, request: CanonicalRequest) -> dict[str, str]:
        headers = {
            "Copilot-Integration-Id": "vscode-chat",
            "Editor-Plugin-Version": f"copilot-chat/{COPILOT_CHAT_VERSION}",
            "Editor-Version": EDITOR_VERSION,
            "User-Agent": f"GitHubCopilotChat/{COPILOT_CHAT_VERSION}",
            "OpenAI-Intent": "conversation-panel",
            "x-github-api-version": API_VERSION,
            "X-Initiator": "agent" if request.has_agent_turns else "user",
            "x-request-id": str(uuid.uuid4()),
            "x-vscode-user-agent-library-version": "electron-fetch",
            "Content-Type": "application/json",
        }
        if request.has_images:
            headers["copilot-vision-request"] = "true"
        return headers
