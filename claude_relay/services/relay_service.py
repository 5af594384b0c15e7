"""
Relay Service Module

Orchestrates one relayed request: conversion, upstream call, response
translation and request log shipping.
"""

import json
import logging
import uuid
from typing import Any, AsyncGenerator, AsyncIterator, Mapping, Optional

from claude_relay.common.errors import AppError, UnsupportedShapeError, UpstreamProviderError
from claude_relay.common.image import ImageResolver
from claude_relay.common.sse import SSEDecoder, aiter_frames
from claude_relay.common.token_counter import TokenCounter, get_token_counter
from claude_relay.config import Settings
from claude_relay.providers.base import ProviderResponse
from claude_relay.providers.claude_code_client import ClaudeCodeClient
from claude_relay.relay.request_converter import convert_claude_request, convert_openai_request
from claude_relay.relay.response import ConvertedResponse, convert_response, decompress_body
from claude_relay.relay.schemas import parse_chat_request
from claude_relay.relay.stream import StreamReducer, relay_stream
from claude_relay.relay.types import RequestMode
from claude_relay.services.log_service import RequestLogShipper

logger = logging.getLogger(__name__)


def _upstream_error(response: ProviderResponse, body: bytes) -> UpstreamProviderError:
    """Build the caller-facing error for a failed upstream response."""
    if response.error:
        return UpstreamProviderError(message=response.error, status_code=response.status_code)
    try:
        envelope = json.loads(body)
    except ValueError:
        envelope = None
    if isinstance(envelope, dict) and isinstance(envelope.get("error"), dict):
        return UpstreamProviderError.from_envelope(envelope, status_code=response.status_code)
    return UpstreamProviderError(
        message=body.decode("utf-8", errors="replace") or "Upstream service error",
        status_code=response.status_code,
    )


class RelayService:
    """
    Relay Service

    All collaborators are injected; the service itself keeps no state
    between requests.
    """

    def __init__(
        self,
        settings: Settings,
        client: Optional[ClaudeCodeClient] = None,
        image_resolver: Optional[ImageResolver] = None,
        token_counter: Optional[TokenCounter] = None,
        log_shipper: Optional[RequestLogShipper] = None,
    ):
        """
        Initialize Service

        Args:
            settings: Relay configuration
            client: Upstream client
            image_resolver: Image resolver for image_url parts
            token_counter: Fallback token counter
            log_shipper: Request log shipper (None disables request logs)
        """
        self.settings = settings
        self.client = client or ClaudeCodeClient(settings)
        self.image_resolver = image_resolver or ImageResolver()
        self.token_counter = token_counter or get_token_counter()
        self.log_shipper = log_shipper

    # OpenAI chat completions

    async def chat_completion(
        self,
        body: Any,
        headers: Optional[Mapping[str, str]] = None,
    ) -> dict[str, Any]:
        """
        Relay a non-stream OpenAI chat request

        Returns:
            dict: chat.completion body

        Raises:
            AppError: Conversion, upstream or decoding failure
        """
        request_id = uuid.uuid4().hex
        errors: list[str] = []
        response_text = ""
        try:
            request = parse_chat_request(body)
            mode = RequestMode.for_model(request.model)
            payload = await convert_openai_request(request, mode, self.settings, self.image_resolver)
            payload["stream"] = False

            response = await self.client.forward(mode, payload, request.model, headers)
            raw = decompress_body(response.body, response.content_encoding)
            if not response.is_success or response.error:
                raise _upstream_error(response, raw)

            converted: ConvertedResponse = convert_response(
                raw,
                mode,
                request.model,
                prompt_tokens=self.token_counter.count_request(body, request.model),
                token_counter=self.token_counter,
            )
            if converted.web_search_requests:
                logger.info("web search requests: %d", converted.web_search_requests)
            response_text = json.dumps(converted.body, ensure_ascii=False)
            return converted.body
        except AppError as e:
            errors.append(e.message)
            response_text = json.dumps(e.to_dict(), ensure_ascii=False)
            raise
        finally:
            self._ship_log(request_id, "/v1/chat/completions", body, False, response_text, errors)

    async def chat_completion_stream(
        self,
        body: Any,
        headers: Optional[Mapping[str, str]] = None,
    ) -> AsyncIterator[bytes]:
        """
        Relay a stream OpenAI chat request

        Conversion and connection errors are raised before the first byte is
        returned; later errors end the stream with an error chunk.

        Returns:
            AsyncIterator[bytes]: OpenAI SSE frames
        """
        request_id = uuid.uuid4().hex
        try:
            request = parse_chat_request(body)
            mode = RequestMode.for_model(request.model)
            payload = await convert_openai_request(request, mode, self.settings, self.image_resolver)
            payload["stream"] = True
            upstream = await self._open_stream(mode, payload, request.model, headers)
        except AppError as e:
            self._ship_log(request_id, "/v1/chat/completions", body, True, "", [e.message])
            raise

        reducer = StreamReducer(
            mode,
            request.model,
            include_usage=request.include_usage,
            token_counter=self.token_counter,
            prompt_tokens=self.token_counter.count_request(body, request.model),
        )

        async def generate() -> AsyncGenerator[bytes, None]:
            sent: list[bytes] = []
            frames = aiter_frames(upstream)
            try:
                async for chunk in relay_stream(reducer, frames, include_details=self.settings.DEBUG):
                    sent.append(chunk)
                    yield chunk
            finally:
                errors = [reducer.error.message] if reducer.error else []
                if reducer.web_search_requests:
                    logger.info("web search requests: %d", reducer.web_search_requests)
                self._ship_log(
                    request_id,
                    "/v1/chat/completions",
                    body,
                    True,
                    b"".join(sent).decode("utf-8", errors="replace"),
                    errors,
                )

        return generate()

    # Anthropic messages passthrough

    async def messages(
        self,
        body: Any,
        headers: Optional[Mapping[str, str]] = None,
    ) -> ProviderResponse:
        """
        Relay a non-stream Anthropic Messages request

        Returns:
            ProviderResponse: Upstream response with a decompressed body
        """
        request_id = uuid.uuid4().hex
        if not isinstance(body, dict):
            raise UnsupportedShapeError("body", body)
        model = str(body.get("model") or "")
        payload = convert_claude_request(body)

        response = await self.client.forward(RequestMode.MESSAGE, payload, model, headers)
        raw = decompress_body(response.body, response.content_encoding)
        errors = [response.error] if response.error else []
        self._ship_log(request_id, "/v1/messages", body, False, raw.decode("utf-8", errors="replace"), errors)
        if response.error:
            raise _upstream_error(response, raw)

        response.body = raw
        response.headers.pop("content-encoding", None)
        response.headers.pop("content-length", None)
        return response

    async def messages_stream(
        self,
        body: Any,
        headers: Optional[Mapping[str, str]] = None,
    ) -> AsyncIterator[bytes]:
        """
        Relay a stream Anthropic Messages request

        Upstream bytes are passed through unchanged; a reducer observes the
        events to track usage for the request log.
        """
        request_id = uuid.uuid4().hex
        if not isinstance(body, dict):
            raise UnsupportedShapeError("body", body)
        model = str(body.get("model") or "")
        payload = convert_claude_request(body)
        payload["stream"] = True
        try:
            upstream = await self._open_stream(RequestMode.MESSAGE, payload, model, headers)
        except AppError as e:
            self._ship_log(request_id, "/v1/messages", body, True, "", [e.message])
            raise

        observer = StreamReducer(RequestMode.MESSAGE, model, token_counter=self.token_counter)

        async def generate() -> AsyncGenerator[bytes, None]:
            sent: list[bytes] = []
            errors: list[str] = []

            async def tee() -> AsyncGenerator[bytes, None]:
                async for chunk in upstream:
                    sent.append(chunk)
                    yield chunk

            try:
                async for chunk in _observe(observer, tee(), errors):
                    yield chunk
            except AppError as e:
                errors.append(e.message)
                frame = _claude_error_frame(e)
                sent.append(frame)
                yield frame
            finally:
                observer.finalize()
                usage = observer.accumulator.usage
                logger.debug(
                    "messages stream usage: prompt=%d completion=%d",
                    usage.prompt_tokens,
                    usage.completion_tokens,
                )
                self._ship_log(
                    request_id,
                    "/v1/messages",
                    body,
                    True,
                    b"".join(sent).decode("utf-8", errors="replace"),
                    errors,
                    extra={"usage": usage.to_openai()},
                )

        return generate()

    async def _open_stream(
        self,
        mode: RequestMode,
        payload: dict[str, Any],
        model: str,
        headers: Optional[Mapping[str, str]],
    ) -> AsyncGenerator[bytes, None]:
        """
        Start an upstream stream and check its status

        Raises:
            UpstreamProviderError: Connection failed or upstream status is an error
        """
        upstream_gen = self.client.forward_stream(mode, payload, model, headers)
        try:
            first_chunk, first_resp = await anext(upstream_gen)
        except StopAsyncIteration:
            raise UpstreamProviderError(message="Stream ended unexpectedly", status_code=502)

        if first_resp.error or not first_resp.is_success:
            content = first_chunk
            async for chunk, _ in upstream_gen:
                content += chunk
            raise _upstream_error(first_resp, content)

        async def upstream_bytes() -> AsyncGenerator[bytes, None]:
            yield first_chunk
            async for chunk, resp in upstream_gen:
                if resp.error:
                    logger.error("Upstream stream interrupted: %s", resp.error)
                    raise UpstreamProviderError(message=resp.error, status_code=resp.status_code)
                yield chunk

        return upstream_bytes()

    def _ship_log(
        self,
        request_id: str,
        path: str,
        request_body: Any,
        is_streaming: bool,
        response_body: str,
        errors: list[str],
        extra: Optional[dict[str, Any]] = None,
    ) -> None:
        if self.log_shipper is None:
            return
        model = request_body.get("model") if isinstance(request_body, dict) else None
        record = self.log_shipper.build_record(
            request_id=request_id,
            path=path,
            model=str(model or ""),
            is_streaming=is_streaming,
            request_body=request_body,
            response_body=response_body,
            errors=errors,
            extra=extra,
        )
        self.log_shipper.ship(record)


async def _observe(
    reducer: StreamReducer,
    chunks: AsyncIterator[bytes],
    errors: list[str],
) -> AsyncGenerator[bytes, None]:
    """Pass bytes through unchanged while feeding their frames to a reducer."""
    decoder = SSEDecoder()
    failed = False
    async for chunk in chunks:
        if not failed:
            try:
                for frame in decoder.feed(chunk):
                    reducer.feed(frame)
            except AppError as e:
                # The caller already receives the upstream error frame verbatim
                errors.append(e.message)
                failed = True
        yield chunk


def _claude_error_frame(error: AppError) -> bytes:
    """Anthropic-style `error` event closing an interrupted passthrough stream."""
    payload = {"type": "error", "error": {"type": error.error_type, "message": error.message}}
    return f"event: error\ndata: {json.dumps(payload, ensure_ascii=False)}\n\n".encode("utf-8")
