"""
Non-Stream Response Converter

Turns one complete Anthropic response body into an OpenAI chat.completion.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
import zlib
from dataclasses import dataclass
from typing import Any, Optional

from claude_relay.common.errors import BadResponseBodyError, UpstreamProviderError
from claude_relay.common.token_counter import TokenCounter, get_token_counter
from claude_relay.relay.types import RequestMode, Usage, map_stop_reason
from claude_relay.relay.usage import reconcile_usage

logger = logging.getLogger(__name__)


def decompress_body(raw: bytes, content_encoding: Optional[str]) -> bytes:
    """
    Decode an upstream body according to its Content-Encoding

    Args:
        raw: Body bytes as received
        content_encoding: Content-Encoding header value (may be None)

    Returns:
        bytes: Decoded body; the raw bytes when the encoding is unknown or
        decoding fails
    """
    encoding = (content_encoding or "").strip().lower()
    if not raw or encoding not in ("gzip", "deflate"):
        return raw
    try:
        if encoding == "gzip":
            return zlib.decompress(raw, 16 + zlib.MAX_WBITS)
        try:
            return zlib.decompress(raw)
        except zlib.error:
            # Some servers send raw deflate without the zlib header
            return zlib.decompress(raw, -zlib.MAX_WBITS)
    except zlib.error as e:
        logger.warning("Failed to decompress %s response body, using raw bytes: %s", encoding, e)
        return raw


@dataclass
class ConvertedResponse:
    """OpenAI response plus bookkeeping the caller logs."""

    body: dict[str, Any]
    usage: Usage
    web_search_requests: int = 0


def convert_response(
    raw: bytes | str | dict[str, Any],
    mode: RequestMode,
    model: str,
    prompt_tokens: int = 0,
    token_counter: Optional[TokenCounter] = None,
) -> ConvertedResponse:
    """
    Convert an Anthropic response body

    Args:
        raw: Decompressed body (bytes, text or already-decoded JSON)
        mode: Request mode decided for this request
        model: Requested model, used when the body carries none
        prompt_tokens: Locally estimated prompt tokens, used when upstream reports none
        token_counter: Fallback token counter

    Returns:
        ConvertedResponse: chat.completion body and final usage

    Raises:
        BadResponseBodyError: Body is not a JSON object
        UpstreamProviderError: Body is an error envelope
    """
    counter = token_counter or get_token_counter()
    body = _decode_body(raw)

    if body.get("type") == "error" or isinstance(body.get("error"), dict):
        raise UpstreamProviderError.from_envelope(body)

    if mode is RequestMode.COMPLETION:
        return _convert_completion(body, model, prompt_tokens, counter)
    return _convert_message(body, model, prompt_tokens, counter)


def _decode_body(raw: bytes | str | dict[str, Any]) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    try:
        body = json.loads(raw)
    except (TypeError, ValueError) as e:
        logger.error("Failed to decode upstream response body: %s", e)
        raise BadResponseBodyError() from e
    if not isinstance(body, dict):
        raise BadResponseBodyError("Upstream response body is not a JSON object")
    return body


def _convert_completion(
    body: dict[str, Any],
    model: str,
    prompt_tokens: int,
    counter: TokenCounter,
) -> ConvertedResponse:
    text = body.get("completion") or ""
    usage = reconcile_usage(
        Usage(prompt_tokens=prompt_tokens),
        True,
        text,
        model,
        counter,
        RequestMode.COMPLETION,
    )
    response_body = _completion_body(
        response_id=f"chatcmpl-{uuid.uuid4().hex}",
        model=body.get("model") or model,
        message={"role": "assistant", "content": text},
        finish_reason=map_stop_reason(body.get("stop_reason")),
        usage=usage,
    )
    return ConvertedResponse(body=response_body, usage=usage)


def _convert_message(
    body: dict[str, Any],
    model: str,
    prompt_tokens: int,
    counter: TokenCounter,
) -> ConvertedResponse:
    content = body.get("content")
    if not isinstance(content, list):
        content = []

    text = ""
    if content and isinstance(content[0], dict):
        text = content[0].get("text") or ""

    reasoning_content = ""
    tool_calls: list[dict[str, Any]] = []
    for item in content:
        if not isinstance(item, dict):
            continue
        item_type = item.get("type")
        if item_type == "text":
            text = item.get("text") or ""
        elif item_type == "thinking":
            reasoning_content = item.get("thinking") or ""
        elif item_type == "tool_use":
            tool_calls.append(
                {
                    "id": item.get("id"),
                    "type": "function",
                    "function": {
                        "name": item.get("name"),
                        "arguments": json.dumps(item.get("input") or {}, ensure_ascii=False),
                    },
                }
            )

    usage = Usage.from_claude(body.get("usage"))
    if not usage.prompt_tokens:
        usage.prompt_tokens = prompt_tokens
    # A non-stream body is a finished turn; only missing counters force a recount
    visible_text = text + reasoning_content + "".join(tc["function"]["arguments"] for tc in tool_calls)
    usage = reconcile_usage(usage, True, visible_text, model, counter, RequestMode.MESSAGE)

    message: dict[str, Any] = {"role": "assistant", "content": text}
    if reasoning_content:
        message["reasoning_content"] = reasoning_content
    if tool_calls:
        message["tool_calls"] = tool_calls

    web_search_requests = 0
    raw_usage = body.get("usage")
    if isinstance(raw_usage, dict) and isinstance(raw_usage.get("server_tool_use"), dict):
        web_search_requests = raw_usage["server_tool_use"].get("web_search_requests") or 0

    response_body = _completion_body(
        response_id=body.get("id") or f"chatcmpl-{uuid.uuid4().hex}",
        model=body.get("model") or model,
        message=message,
        finish_reason=map_stop_reason(body.get("stop_reason")),
        usage=usage,
    )
    return ConvertedResponse(body=response_body, usage=usage, web_search_requests=web_search_requests)


def _completion_body(
    response_id: str,
    model: str,
    message: dict[str, Any],
    finish_reason: Optional[str],
    usage: Usage,
) -> dict[str, Any]:
    return {
        "id": response_id,
        "object": "chat.completion",
        "created": int(time.time()),
        "model": model,
        "choices": [{"index": 0, "message": message, "finish_reason": finish_reason}],
        "usage": usage.to_openai(),
    }
