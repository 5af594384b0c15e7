"""
Protocol Translation Module Initialization

OpenAI chat <-> Anthropic Messages/Completion conversion core.
"""

from claude_relay.relay.request_converter import convert_claude_request, convert_openai_request
from claude_relay.relay.response import convert_response, decompress_body
from claude_relay.relay.stream import StreamReducer, relay_stream
from claude_relay.relay.types import RequestMode

__all__ = [
    "RequestMode",
    "convert_openai_request",
    "convert_claude_request",
    "convert_response",
    "decompress_body",
    "StreamReducer",
    "relay_stream",
]
