"""
Integration test fixtures: the application wired to a scripted upstream.
"""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from claude_relay.main import create_app
from claude_relay.providers.base import ProviderResponse
from claude_relay.services.relay_service import RelayService


class ScriptedClient:
    """Upstream client that answers from a preset response or chunk list."""

    def __init__(self):
        self.calls = []
        self.response = ProviderResponse(status_code=200, body=b"{}")
        self.stream_chunks: list[bytes] = []
        self.stream_status = 200

    async def forward(self, mode, body, model, client_headers=None):
        self.calls.append({"mode": mode, "body": body, "headers": client_headers})
        return self.response

    async def forward_stream(self, mode, body, model, client_headers=None):
        self.calls.append({"mode": mode, "body": body, "headers": client_headers})
        info = ProviderResponse(status_code=self.stream_status)
        for chunk in self.stream_chunks:
            yield chunk, info


@pytest.fixture
def upstream():
    return ScriptedClient()


@pytest_asyncio.fixture
async def api_client(settings, token_counter, upstream):
    service = RelayService(settings, client=upstream, token_counter=token_counter)
    app = create_app(relay_service=service)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
