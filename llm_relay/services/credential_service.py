"""
Credential Service

Supplies the credential injected into upstream requests. The relay never
caches credentials itself; every request asks its provider again, so a value
refreshed by a concurrent request is picked up transparently.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import httpx

from llm_relay.common.errors import CredentialRefreshError
from llm_relay.domain.credential import Credential

logger = logging.getLogger(__name__)

COPILOT_CHAT_VERSION = "0.26.7"
DEFAULT_EXPIRY_BUFFER_SECONDS = 300


class CredentialProvider(ABC):
    """Source of upstream credentials."""

    @abstractmethod
    async def get_credential(self) -> Optional[Credential]:
        """Return the current credential, or None when none is configured."""


class StaticCredentialProvider(CredentialProvider):
    """A fixed API key from configuration."""

    def __init__(self, token: Optional[str]):
        self._token = token

    async def get_credential(self) -> Optional[Credential]:
        if not self._token:
            return None
        return Credential(token=self._token)


def is_token_expired(
    token_data: Optional[dict[str, Any]],
    buffer_seconds: int = DEFAULT_EXPIRY_BUFFER_SECONDS,
    now: Optional[float] = None,
) -> bool:
    """
    Whether a stored token is expired or within buffer_seconds of expiring.

    Token data without a usable expiresAt counts as expired.
    """
    if not token_data or not token_data.get("expiresAt"):
        return True
    try:
        expires_at = float(token_data["expiresAt"])
    except (TypeError, ValueError):
        return True
    current = time.time() if now is None else now
    return current >= expires_at - buffer_seconds


class CopilotTokenStore(CredentialProvider):
    """
    GitHub Copilot token file with lazy refresh.

    The token file holds the long-lived GitHub token ("githubToken") and the
    short-lived Copilot token ("copilotToken", "expiresAt", "endpoint"). When
    the Copilot token is within the expiry buffer it is exchanged again at the
    token-issuance endpoint and the file is rewritten.

    Refreshes are single-flight: concurrent requests wait for the one refresh
    in progress and then re-read the file instead of refreshing again.
    """

    def __init__(
        self,
        token_file: str,
        refresh_url: str,
        *,
        buffer_seconds: int = DEFAULT_EXPIRY_BUFFER_SECONDS,
        timeout: float = 30.0,
        fallback_token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.token_file = Path(token_file) if token_file else Path.home() / ".copilot-tokens.json"
        self.refresh_url = refresh_url
        self.buffer_seconds = buffer_seconds
        self.timeout = timeout
        self.fallback_token = fallback_token
        self._transport = transport
        self._refresh_lock = asyncio.Lock()

    def _read(self) -> Optional[dict[str, Any]]:
        if not self.token_file.exists():
            return None
        try:
            data = json.loads(self.token_file.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Unreadable Copilot token file %s: %s", self.token_file, e)
            return None
        return data if isinstance(data, dict) else None

    def _write(self, data: dict[str, Any]) -> None:
        try:
            self.token_file.write_text(json.dumps(data, indent=2), encoding="utf-8")
        except OSError as e:
            logger.warning("Could not persist refreshed Copilot token to %s: %s", self.token_file, e)

    async def _refresh(self, existing: dict[str, Any]) -> dict[str, Any]:
        github_token = existing.get("githubToken")
        if not github_token:
            raise CredentialRefreshError(
                message="No GitHub token found to refresh Copilot token. Please run the auth script.",
                code="missing_github_token",
            )

        headers = {
            "Accept": "application/json",
            "Authorization": f"Bearer {github_token}",
            "User-Agent": f"GitHubCopilotChat/{COPILOT_CHAT_VERSION}",
            "Editor-Version": "vscode/1.99.3",
            "Editor-Plugin-Version": f"copilot-chat/{COPILOT_CHAT_VERSION}",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(self.refresh_url, headers=headers)
        except httpx.HTTPError as e:
            raise CredentialRefreshError(message=f"Failed to refresh Copilot token: {e}") from e

        if not response.is_success:
            raise CredentialRefreshError(
                message=f"Failed to refresh Copilot token: {response.status_code} {response.text}",
                details={"status_code": response.status_code},
            )

        try:
            data = response.json()
        except json.JSONDecodeError as e:
            raise CredentialRefreshError(message="Copilot token response is not JSON") from e
        if not isinstance(data, dict) or not data.get("token"):
            raise CredentialRefreshError(message="No token in Copilot refresh response")

        endpoints = data.get("endpoints")
        endpoint = endpoints.get("api") if isinstance(endpoints, dict) else None
        endpoint = endpoint or ""
        if endpoint and not endpoint.endswith("/chat/completions"):
            endpoint = f"{endpoint.rstrip('/')}/chat/completions"

        updated = {
            **existing,
            "copilotToken": data["token"],
            "endpoint": endpoint or existing.get("endpoint"),
            "expiresAt": data.get("expires_at"),
            "lastUpdated": datetime.now(timezone.utc).isoformat(),
        }
        await asyncio.to_thread(self._write, updated)
        logger.info("Refreshed Copilot token, expires_at=%s", updated["expiresAt"])
        return updated

    async def ensure_valid_token(self) -> Optional[dict[str, Any]]:
        """
        Return token data, refreshing it first when it is about to expire.

        A failed refresh is logged and the stale data is returned; the
        upstream decides whether it is still accepted.
        """
        data = await asyncio.to_thread(self._read)
        if data is None:
            return None
        if not is_token_expired(data, self.buffer_seconds):
            return data

        async with self._refresh_lock:
            # Another request may have refreshed while this one waited
            data = await asyncio.to_thread(self._read) or data
            if not is_token_expired(data, self.buffer_seconds):
                return data
            try:
                return await self._refresh(data)
            except CredentialRefreshError as e:
                logger.warning("Copilot token refresh failed, using stored token: %s", e.message)
                return data

    async def get_credential(self) -> Optional[Credential]:
        data = await self.ensure_valid_token()
        if data and data.get("copilotToken"):
            return Credential(
                token=data["copilotToken"],
                endpoint=data.get("endpoint") or None,
                expires_at=data.get("expiresAt"),
            )
        if self.fallback_token:
            return Credential(token=self.fallback_token)
        return None
