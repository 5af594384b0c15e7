"""
Proxy API Module Initialization
"""

from claude_relay.api.proxy.openai import router as openai_router
from claude_relay.api.proxy.anthropic import router as anthropic_router

__all__ = [
    "openai_router",
    "anthropic_router",
]
