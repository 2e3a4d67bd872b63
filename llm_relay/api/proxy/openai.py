"""
OpenAI Proxy API

Provides OpenAI-compatible API endpoints.
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse

from llm_relay.api.deps import ProxyServiceDep
from llm_relay.common.errors import AppError, InvalidRequestError
from llm_relay.config import get_settings
from llm_relay.services import ProxyService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Proxy - OpenAI"])


async def _handle_proxy_request(request: Request, service: ProxyService):
    """
    Handle generic proxy request logic
    """
    try:
        try:
            body = await request.json()
        except ValueError:
            raise InvalidRequestError(message="Request body must be valid JSON")
        if not isinstance(body, dict):
            raise InvalidRequestError()

        result = await service.process_request(body, dict(request.headers))

        if result.is_stream:
            return StreamingResponse(
                result.stream,
                status_code=result.status_code,
                headers=result.headers,
                media_type=result.media_type,
            )
        return Response(
            content=result.body,
            status_code=result.status_code,
            headers=result.headers,
            media_type=result.media_type,
        )

    except AppError as e:
        if e.status_code >= 500:
            logger.error("Proxy request failed: %s", e.message)
        return JSONResponse(
            content=e.to_dict(include_details=get_settings().DEBUG),
            status_code=e.status_code,
        )


@router.post("/v1/chat/completions")
async def chat_completions(
    request: Request,
    service: ProxyServiceDep,
):
    """
    OpenAI Chat Completions API Proxy
    """
    return await _handle_proxy_request(request, service)


@router.post("/v1/completions")
async def completions(
    request: Request,
    service: ProxyServiceDep,
):
    """
    OpenAI Completions API Proxy

    Prompt-style bodies are answered with text_completion documents.
    """
    return await _handle_proxy_request(request, service)
