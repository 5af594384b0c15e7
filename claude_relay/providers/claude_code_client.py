"""
Claude Code Upstream Client

Forwards converted requests to an Anthropic-compatible upstream that expects
Claude Code CLI traffic.
"""

import json
import logging
from typing import Any, AsyncGenerator, Mapping, Optional

import httpx

from claude_relay.common.timer import Timer
from claude_relay.config import Settings
from claude_relay.providers.base import ProviderResponse
from claude_relay.relay.types import RequestMode

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"

ANTHROPIC_BETA = (
    "claude-code-20250219,oauth-2025-04-20,"
    "interleaved-thinking-2025-05-14,fine-grained-tool-streaming-2025-05-14"
)

# Headers the Claude Code CLI sends on every request
CLAUDE_CODE_HEADERS = {
    "anthropic-beta": ANTHROPIC_BETA,
    "anthropic-dangerous-direct-browser-access": "true",
    "content-type": "application/json",
    "accept": "application/json",
    "user-agent": "claude-cli/1.0.93 (external, cli)",
    "x-app": "cli",
    "x-stainless-arch": "x64",
    "x-stainless-helper-method": "stream",
    "x-stainless-lang": "js",
    "x-stainless-os": "Linux",
    "x-stainless-package-version": "0.55.1",
    "x-stainless-retry-count": "0",
    "x-stainless-runtime": "node",
    "x-stainless-runtime-version": "v18.20.8",
    "x-stainless-timeout": "600",
    "accept-language": "*",
    "sec-fetch-mode": "cors",
    "accept-encoding": "gzip, deflate",
}


class ClaudeCodeClient:
    """
    Claude Code Upstream Client

    Authenticates with `Authorization: Bearer <key>` and posts to
    /v1/messages or /v1/complete depending on the request mode.
    """

    def __init__(self, settings: Settings):
        """
        Initialize client

        Args:
            settings: Relay configuration (base URL, key, timeout, model headers)
        """
        self.settings = settings
        self.base_url = settings.UPSTREAM_BASE_URL.rstrip("/")
        self.api_key = settings.UPSTREAM_API_KEY
        self.timeout = settings.HTTP_TIMEOUT

    def build_url(self, mode: RequestMode) -> str:
        return f"{self.base_url}{mode.upstream_path}"

    def build_headers(
        self,
        model: str,
        client_headers: Optional[Mapping[str, str]] = None,
    ) -> dict[str, str]:
        """
        Build upstream request headers

        Args:
            model: Model name as requested by the caller (selects per-model headers)
            client_headers: Inbound request headers; only anthropic-version is taken

        Returns:
            dict: Upstream headers
        """
        anthropic_version = ""
        for key, value in (client_headers or {}).items():
            if key.lower() == "anthropic-version":
                anthropic_version = value
                break

        headers = {"authorization": f"Bearer {self.api_key}"}
        headers["anthropic-version"] = anthropic_version or ANTHROPIC_VERSION
        headers.update(CLAUDE_CODE_HEADERS)
        for key, value in self.settings.model_headers(model).items():
            headers[key.lower()] = value
        return headers

    async def forward(
        self,
        mode: RequestMode,
        body: dict[str, Any],
        model: str,
        client_headers: Optional[Mapping[str, str]] = None,
    ) -> ProviderResponse:
        """
        Send a non-stream request

        The body is returned undecoded so the caller can apply its own
        Content-Encoding handling.

        Args:
            mode: Request mode
            body: Converted upstream body
            model: Model name as requested by the caller
            client_headers: Inbound request headers

        Returns:
            ProviderResponse: Upstream response; transport failures set `error`
        """
        url = self.build_url(mode)
        headers = self.build_headers(model, client_headers)

        logger.debug(
            "Claude Request: url=%s body=%s",
            url,
            json.dumps(body, ensure_ascii=False),
        )

        timer = Timer().start()
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                async with client.stream("POST", url, headers=headers, json=body) as response:
                    chunks: list[bytes] = []
                    async for chunk in response.aiter_raw():
                        timer.mark_first_byte()
                        chunks.append(chunk)
                    timer.stop()
                    return ProviderResponse(
                        status_code=response.status_code,
                        headers={k.lower(): v for k, v in response.headers.items()},
                        body=b"".join(chunks),
                        first_byte_delay_ms=timer.first_byte_delay_ms,
                        total_time_ms=timer.total_time_ms,
                    )

        except httpx.TimeoutException as e:
            timer.stop()
            return ProviderResponse(
                status_code=504,
                error=f"Request timeout: {str(e)}",
                first_byte_delay_ms=timer.first_byte_delay_ms,
                total_time_ms=timer.total_time_ms,
            )

        except httpx.RequestError as e:
            timer.stop()
            return ProviderResponse(
                status_code=502,
                error=f"Request error: {str(e)}",
                first_byte_delay_ms=timer.first_byte_delay_ms,
                total_time_ms=timer.total_time_ms,
            )

    async def forward_stream(
        self,
        mode: RequestMode,
        body: dict[str, Any],
        model: str,
        client_headers: Optional[Mapping[str, str]] = None,
    ) -> AsyncGenerator[tuple[bytes, ProviderResponse], None]:
        """
        Send a stream request

        Args:
            mode: Request mode
            body: Converted upstream body
            model: Model name as requested by the caller
            client_headers: Inbound request headers

        Yields:
            tuple[bytes, ProviderResponse]: (Decoded data chunk, Response info)
        """
        url = self.build_url(mode)
        headers = self.build_headers(model, client_headers)

        logger.debug(
            "Claude Stream Request: url=%s body=%s",
            url,
            json.dumps(body, ensure_ascii=False),
        )

        timer = Timer().start()
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                async with client.stream("POST", url, headers=headers, json=body) as response:
                    provider_response = ProviderResponse(
                        status_code=response.status_code,
                        headers={k.lower(): v for k, v in response.headers.items()},
                    )

                    async for chunk in response.aiter_bytes():
                        if provider_response.first_byte_delay_ms is None:
                            timer.mark_first_byte()
                            provider_response.first_byte_delay_ms = timer.first_byte_delay_ms
                        yield chunk, provider_response

                    timer.stop()
                    provider_response.total_time_ms = timer.total_time_ms

        except httpx.TimeoutException as e:
            timer.stop()
            yield b"", ProviderResponse(
                status_code=504,
                error=f"Request timeout: {str(e)}",
                first_byte_delay_ms=timer.first_byte_delay_ms,
                total_time_ms=timer.total_time_ms,
            )

        except httpx.RequestError as e:
            timer.stop()
            yield b"", ProviderResponse(
                status_code=502,
                error=f"Request error: {str(e)}",
                first_byte_delay_ms=timer.first_byte_delay_ms,
                total_time_ms=timer.total_time_ms,
            )
