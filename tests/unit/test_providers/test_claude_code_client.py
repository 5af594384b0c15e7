"""
Claude Code Client Unit Tests
"""

import gzip
import json

import httpx
import pytest

from claude_relay.config import Settings
from claude_relay.providers.claude_code_client import ANTHROPIC_BETA, ClaudeCodeClient
from claude_relay.relay.types import RequestMode


@pytest.fixture
def captured(monkeypatch):
    """Route httpx.AsyncClient through a MockTransport; returns captured requests and the response to serve."""
    state = {"requests": [], "response": httpx.Response(200, json={"ok": True}), "error": None}
    real_client = httpx.AsyncClient

    def handler(request: httpx.Request) -> httpx.Response:
        if state["error"] is not None:
            raise state["error"]
        state["requests"].append(request)
        return state["response"]

    def factory(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(httpx, "AsyncClient", factory)
    return state


@pytest.fixture
def client():
    settings = Settings(
        _env_file=None,
        UPSTREAM_BASE_URL="https://upstream.test/",
        UPSTREAM_API_KEY="sk-test",
        CLAUDE_MODEL_HEADERS={"claude-sonnet-4": {"X-Extra": "1"}},
    )
    return ClaudeCodeClient(settings)


def test_build_url(client):
    assert client.build_url(RequestMode.MESSAGE) == "https://upstream.test/v1/messages"
    assert client.build_url(RequestMode.COMPLETION) == "https://upstream.test/v1/complete"


def test_header_preset(client):
    headers = client.build_headers("claude-sonnet-4", {"Anthropic-Version": "2024-01-01", "x-api-key": "client-key"})
    assert headers["authorization"] == "Bearer sk-test"
    assert headers["anthropic-version"] == "2024-01-01"
    assert headers["anthropic-beta"] == ANTHROPIC_BETA
    assert headers["user-agent"] == "claude-cli/1.0.93 (external, cli)"
    assert headers["x-app"] == "cli"
    assert headers["accept-encoding"] == "gzip, deflate"
    assert headers["x-extra"] == "1"
    assert "x-api-key" not in headers


def test_default_anthropic_version(client):
    assert client.build_headers("other")["anthropic-version"] == "2023-06-01"


@pytest.mark.asyncio
async def test_forward_returns_raw_body(client, captured):
    compressed = gzip.compress(b'{"id": "msg_1"}')
    captured["response"] = httpx.Response(
        200,
        content=compressed,
        headers={"Content-Encoding": "gzip", "Content-Type": "application/json"},
    )
    response = await client.forward(RequestMode.MESSAGE, {"model": "claude-sonnet-4"}, "claude-sonnet-4")

    assert response.status_code == 200
    assert response.body == compressed
    assert response.content_encoding == "gzip"
    assert response.total_time_ms is not None

    request = captured["requests"][0]
    assert str(request.url) == "https://upstream.test/v1/messages"
    assert json.loads(request.content) == {"model": "claude-sonnet-4"}
    assert request.headers["authorization"] == "Bearer sk-test"


@pytest.mark.asyncio
async def test_forward_transport_error(client, captured):
    captured["error"] = httpx.ConnectError("refused")
    response = await client.forward(RequestMode.MESSAGE, {}, "m")
    assert response.status_code == 502
    assert "refused" in response.error


@pytest.mark.asyncio
async def test_forward_timeout(client, captured):
    captured["error"] = httpx.ReadTimeout("slow")
    response = await client.forward(RequestMode.MESSAGE, {}, "m")
    assert response.status_code == 504


@pytest.mark.asyncio
async def test_forward_stream_yields_chunks(client, captured):
    captured["response"] = httpx.Response(
        200,
        content=b'data: {"type": "message_stop"}\n\n',
        headers={"Content-Type": "text/event-stream"},
    )
    items = [item async for item in client.forward_stream(RequestMode.MESSAGE, {"stream": True}, "m")]
    assert b"".join(chunk for chunk, _ in items) == b'data: {"type": "message_stop"}\n\n'
    assert items[0][1].status_code == 200
    assert items[0][1].first_byte_delay_ms is not None


@pytest.mark.asyncio
async def test_forward_stream_connect_error(client, captured):
    captured["error"] = httpx.ConnectError("refused")
    items = [item async for item in client.forward_stream(RequestMode.MESSAGE, {}, "m")]
    assert len(items) == 1
    assert items[0][0] == b""
    assert items[0][1].status_code == 502
