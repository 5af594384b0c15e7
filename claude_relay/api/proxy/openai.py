"""
OpenAI Compatible Proxy Interface

Accepts OpenAI chat completions requests and answers in OpenAI format.
"""

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, StreamingResponse

from claude_relay.api.deps import RelayServiceDep
from claude_relay.common.errors import UnsupportedShapeError

router = APIRouter(tags=["OpenAI Proxy"])


@router.post("/v1/chat/completions")
async def chat_completions(
    request: Request,
    relay_service: RelayServiceDep,
) -> Any:
    """
    OpenAI Chat Completions Proxy Interface

    Converts the request for the Claude upstream and converts the answer back.
    Supports normal and streaming requests.
    """
    try:
        body = await request.json()
    except ValueError as e:
        raise UnsupportedShapeError("body", message=f"Request body is not valid UTF-8 JSON: {e}") from e
    headers = dict(request.headers)

    if isinstance(body, dict) and body.get("stream", False):
        stream = await relay_service.chat_completion_stream(body, headers)
        return StreamingResponse(stream, media_type="text/event-stream")

    result = await relay_service.chat_completion(body, headers)
    return JSONResponse(content=result)
