"""
Upstream Client Module Initialization
"""

from claude_relay.providers.base import ProviderResponse
from claude_relay.providers.claude_code_client import ClaudeCodeClient

__all__ = [
    "ProviderResponse",
    "ClaudeCodeClient",
]
