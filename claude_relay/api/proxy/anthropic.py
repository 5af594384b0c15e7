"""
Anthropic Compatible Proxy Interface

Provides the Anthropic Messages endpoint for clients that already speak it.
"""

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import Response, StreamingResponse

from claude_relay.api.deps import RelayServiceDep
from claude_relay.common.errors import UnsupportedShapeError

router = APIRouter(tags=["Anthropic Proxy"])


@router.post("/v1/messages")
async def messages(
    request: Request,
    relay_service: RelayServiceDep,
) -> Any:
    """
    Anthropic Messages Proxy Interface

    Normalizes the request for the Claude Code upstream and relays the
    answer unchanged. Supports normal and streaming requests.
    """
    try:
        body = await request.json()
    except ValueError as e:
        raise UnsupportedShapeError("body", message=f"Request body is not valid UTF-8 JSON: {e}") from e
    headers = dict(request.headers)

    if isinstance(body, dict) and body.get("stream", False):
        stream = await relay_service.messages_stream(body, headers)
        return StreamingResponse(stream, media_type="text/event-stream")

    response = await relay_service.messages(body, headers)
    return Response(
        content=response.body,
        status_code=response.status_code,
        media_type=response.headers.get("content-type", "application/json"),
    )
