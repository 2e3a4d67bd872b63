"""
Proxy header utilities.

Outbound headers are assembled by overlaying, in increasing precedence, the
client request headers, the provider's fixed header set and the file-sourced
override headers. Transport-level headers and empty values never reach the
upstream.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Optional

from llm_relay.domain.credential import Credential


# Headers describing the client's connection to the relay, not the upstream one.
_DROP_REQUEST_HEADERS = {
    "host",
    "content-length",
    "accept-encoding",
    "connection",
}

_AUTHORIZATION_KEYS = ("Authorization", "authorization")

# RFC 7230 hop-by-hop headers, plus response framing headers we must not forward.
_DROP_RESPONSE_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
    # Body framing / encoding headers that become invalid after proxying/transforming.
    "content-length",
    "content-encoding",
}

_SENSITIVE_HEADERS = {"authorization", "x-api-key", "api-key", "cookie"}


def sanitize_headers(headers: Mapping[str, Any]) -> dict[str, Any]:
    """Remove transport-level headers (any casing) and empty/None values."""
    return {
        key: value
        for key, value in headers.items()
        if key.lower() not in _DROP_REQUEST_HEADERS and value is not None and value != ""
    }


def build_outbound_headers(
    request_headers: Optional[Mapping[str, Any]],
    provider_headers: Optional[Mapping[str, Any]],
    override_headers: Optional[Mapping[str, Any]],
    *,
    credential: Optional[Credential] = None,
    strip_authorization: bool = True,
) -> dict[str, Any]:
    """
    Assemble the upstream request headers.

    Args:
        request_headers: Headers received from the client
        provider_headers: Fixed header set of the upstream provider
        override_headers: Headers loaded from the override file (highest precedence)
        credential: Credential supplied by the credential collaborator; becomes
            the Authorization header unless the override file sets one
        strip_authorization: Remove Authorization unless the override file sets it

    Returns:
        dict: Sanitized outbound headers (new dictionary)
    """
    override_headers = override_headers or {}
    headers: dict[str, Any] = {}
    for layer in (request_headers, provider_headers, override_headers):
        _overlay(headers, layer or {})

    override_sets_authorization = any(key in override_headers for key in _AUTHORIZATION_KEYS)

    if strip_authorization and not override_sets_authorization:
        for key in _AUTHORIZATION_KEYS:
            headers.pop(key, None)

    if credential is not None and credential.token and not override_sets_authorization:
        _overlay(headers, {"Authorization": f"Bearer {credential.token}"})

    return sanitize_headers(headers)


def _overlay(headers: dict[str, Any], layer: Mapping[str, Any]) -> None:
    """Apply a header layer; a name set by the layer replaces every casing of it."""
    for key, value in layer.items():
        lowered = key.lower()
        for existing in [k for k in headers if k.lower() == lowered]:
            del headers[existing]
        headers[key] = value


def sanitize_upstream_response_headers(headers: Mapping[str, str] | None) -> dict[str, str]:
    """
    Remove hop-by-hop and body framing headers from upstream response headers.

    The relay re-frames (and may fully rewrite) the body, so the upstream
    Content-Length / Content-Encoding no longer describe it.
    """
    if not headers:
        return {}

    return {key: value for key, value in headers.items() if key.lower() not in _DROP_RESPONSE_HEADERS}


def mask_headers_for_log(headers: Mapping[str, Any]) -> dict[str, Any]:
    """
    Mask credential values for debug logging.

    Examples:
        >>> mask_headers_for_log({"Authorization": "Bearer sk-1234567890abcdef"})
        {'Authorization': 'Bearer sk-1***...***ef'}
    """
    masked: dict[str, Any] = {}
    for key, value in headers.items():
        if key.lower() in _SENSITIVE_HEADERS and isinstance(value, str):
            masked[key] = _mask_value(value)
        else:
            masked[key] = value
    return masked


def _mask_value(value: str) -> str:
    prefix = ""
    token = value
    if value.lower().startswith("bearer "):
        prefix = "Bearer "
        token = value[7:]
    if len(token) <= 8:
        return f"{prefix}***"
    return f"{prefix}{token[:4]}***...***{token[-2:]}"
