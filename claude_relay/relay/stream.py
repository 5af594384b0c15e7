"""
Stream Reducer

Folds Anthropic stream events into OpenAI chat.completion.chunk objects,
one event at a time, while accumulating text and usage for the final
usage chunk.

States: AWAITING_START -> STREAMING -> FINALIZING -> DONE
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, AsyncIterable, AsyncIterator, Optional

from claude_relay.common.errors import (
    AppError,
    BadUpstreamFrameError,
    MalformedEventError,
    UpstreamProviderError,
)
from claude_relay.common.sse import DONE_FRAME, encode_sse
from claude_relay.common.token_counter import TokenCounter, get_token_counter
from claude_relay.relay.types import (
    RequestMode,
    ResponseAccumulator,
    StreamState,
    map_stop_reason,
)
from claude_relay.relay.usage import reconcile_usage

logger = logging.getLogger(__name__)


class StreamReducer:
    """
    Anthropic -> OpenAI stream state machine

    feed() handles exactly one frame and returns zero or one chunk; it never
    buffers beyond the open tool-call argument slots.
    """

    def __init__(
        self,
        mode: RequestMode,
        model: str,
        include_usage: bool = False,
        token_counter: Optional[TokenCounter] = None,
        prompt_tokens: int = 0,
        response_id: Optional[str] = None,
    ) -> None:
        """
        Initialize Reducer

        Args:
            mode: Request mode decided for this request
            model: Upstream model name (replaced by message_start)
            include_usage: Emit a usage chunk when finalizing
            token_counter: Fallback token counter
            prompt_tokens: Locally estimated prompt tokens (seed for fallback)
            response_id: Response id used until message_start provides one
        """
        self.mode = mode
        self.include_usage = include_usage
        self.token_counter = token_counter or get_token_counter()
        self.state = StreamState.AWAITING_START
        self.accumulator = ResponseAccumulator(
            response_id=response_id or f"chatcmpl-{uuid.uuid4().hex}",
            model=model,
        )
        self.accumulator.usage.prompt_tokens = prompt_tokens
        # block index -> {"id", "name", "arguments"}
        self.tool_calls: dict[int, dict[str, Any]] = {}
        self.web_search_requests = 0
        # Error that aborted relay_stream, if any
        self.error: Optional[AppError] = None

    def feed(self, frame: str) -> Optional[dict[str, Any]]:
        """
        Handle one raw frame

        Returns:
            Optional[dict]: OpenAI chunk to send, or None

        Raises:
            BadUpstreamFrameError: Frame is not a JSON object
            MalformedEventError: Event misses a required payload
            UpstreamProviderError: Frame is an error envelope
        """
        if self.state in (StreamState.FINALIZING, StreamState.DONE):
            return None
        stripped = frame.strip()
        if not stripped or stripped == "[DONE]":
            return None

        try:
            event = json.loads(stripped)
        except ValueError as e:
            logger.error("error unmarshalling stream response: %s", e)
            raise BadUpstreamFrameError(frame=stripped) from e
        if not isinstance(event, dict):
            raise BadUpstreamFrameError(frame=stripped)

        if event.get("type") == "error" or isinstance(event.get("error"), dict):
            raise UpstreamProviderError.from_envelope(event)

        if self.state is StreamState.AWAITING_START:
            self.state = StreamState.STREAMING

        if self.mode is RequestMode.COMPLETION:
            return self._handle_completion(event)

        event_type = event.get("type")
        handler = getattr(self, f"_on_{event_type}", None) if isinstance(event_type, str) else None
        if handler is None:
            return None
        return handler(event)

    def finalize(self) -> list[dict[str, Any]]:
        """
        Reconcile usage and build trailing chunks

        Returns:
            list[dict]: The usage chunk when requested, else empty
        """
        if self.state is StreamState.DONE:
            return []
        self.state = StreamState.FINALIZING
        acc = self.accumulator
        acc.usage = reconcile_usage(
            acc.usage,
            acc.done,
            acc.response_text,
            acc.model,
            self.token_counter,
            self.mode,
        )
        self.state = StreamState.DONE

        if not self.include_usage:
            return []
        return [
            {
                "id": acc.response_id,
                "object": "chat.completion.chunk",
                "created": acc.created,
                "model": acc.model,
                "choices": [],
                "usage": acc.usage.to_openai(),
            }
        ]

    def _chunk(self, delta: dict[str, Any], finish_reason: Optional[str] = None) -> dict[str, Any]:
        acc = self.accumulator
        return {
            "id": acc.response_id,
            "object": "chat.completion.chunk",
            "created": acc.created,
            "model": acc.model,
            "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
        }

    def _handle_completion(self, event: dict[str, Any]) -> dict[str, Any]:
        completion = event.get("completion") or ""
        self.accumulator.text_parts.append(completion)
        finish_reason = map_stop_reason(event.get("stop_reason"))
        if finish_reason is not None:
            self.accumulator.done = True
        return self._chunk({"content": completion}, finish_reason)

    def _on_message_start(self, event: dict[str, Any]) -> dict[str, Any]:
        message = event.get("message")
        if not isinstance(message, dict):
            raise MalformedEventError("message_start")
        acc = self.accumulator
        acc.response_id = message.get("id") or acc.response_id
        acc.model = message.get("model") or acc.model
        acc.usage.merge_claude(message.get("usage"))
        return self._chunk({"role": "assistant", "content": ""})

    def _on_content_block_start(self, event: dict[str, Any]) -> Optional[dict[str, Any]]:
        block = event.get("content_block")
        if not isinstance(block, dict):
            raise MalformedEventError("content_block_start", "content_block_start without content_block")
        if block.get("type") != "tool_use":
            return None

        block_index = event.get("index") or 0
        self.tool_calls[block_index] = {
            "id": block.get("id"),
            "name": block.get("name"),
            "arguments": "",
        }
        return self._chunk(
            {
                "tool_calls": [
                    {
                        "index": _tool_call_index(block_index),
                        "id": block.get("id"),
                        "type": "function",
                        "function": {"name": block.get("name"), "arguments": ""},
                    }
                ]
            }
        )

    def _on_content_block_delta(self, event: dict[str, Any]) -> Optional[dict[str, Any]]:
        delta = event.get("delta")
        if not isinstance(delta, dict):
            raise MalformedEventError("content_block_delta", "content_block_delta without delta")
        block_index = event.get("index") or 0
        acc = self.accumulator
        delta_type = delta.get("type")

        if delta_type == "input_json_delta":
            partial_json = delta.get("partial_json") or ""
            slot = self.tool_calls.get(block_index)
            if slot is not None:
                slot["arguments"] += partial_json
            acc.text_parts.append(partial_json)
            return self._chunk(
                {
                    "tool_calls": [
                        {
                            "index": _tool_call_index(block_index),
                            "type": "function",
                            "function": {"arguments": partial_json},
                        }
                    ]
                }
            )
        if delta_type == "thinking_delta":
            thinking = delta.get("thinking") or ""
            acc.text_parts.append(thinking)
            return self._chunk({"reasoning_content": thinking})
        if delta_type == "signature_delta":
            return self._chunk({"reasoning_content": "\n"})

        text = delta.get("text")
        if text is None:
            return None
        acc.text_parts.append(text)
        return self._chunk({"content": text})

    def _on_message_delta(self, event: dict[str, Any]) -> Optional[dict[str, Any]]:
        acc = self.accumulator
        usage = event.get("usage")
        acc.usage.merge_claude(usage)
        if isinstance(usage, dict):
            server_tool_use = usage.get("server_tool_use")
            if isinstance(server_tool_use, dict):
                self.web_search_requests = server_tool_use.get("web_search_requests") or 0
        acc.usage.total_tokens = acc.usage.prompt_tokens + acc.usage.completion_tokens
        acc.done = True

        delta = event.get("delta")
        stop_reason = delta.get("stop_reason") if isinstance(delta, dict) else None
        finish_reason = map_stop_reason(stop_reason)
        if finish_reason is None:
            return None
        return self._chunk({}, finish_reason)

    def _on_message_stop(self, event: dict[str, Any]) -> None:
        self.state = StreamState.FINALIZING
        return None


def _tool_call_index(block_index: int) -> int:
    # The first content block is normally text, so tool blocks start at 1
    return max(block_index - 1, 0)


async def relay_stream(
    reducer: StreamReducer,
    frames: AsyncIterable[str],
    include_details: bool = False,
) -> AsyncIterator[bytes]:
    """
    Drive a reducer over upstream frames and yield OpenAI SSE bytes

    On a reducer or upstream error the chunks already sent stay sent; an error
    object and the [DONE] terminator close the stream. The error is kept on
    `reducer.error` for the request log.

    Args:
        reducer: Reducer for this request
        frames: Upstream SSE data payloads
        include_details: Whether the error object carries its details
    """
    try:
        async for frame in frames:
            chunk = reducer.feed(frame)
            if chunk is not None:
                yield encode_sse(chunk)
    except AppError as e:
        logger.error("Stream aborted: %s", e.message)
        reducer.error = e
        yield encode_sse(e.to_dict(include_details=include_details))
        yield DONE_FRAME
        return

    for chunk in reducer.finalize():
        yield encode_sse(chunk)
    yield DONE_FRAME
