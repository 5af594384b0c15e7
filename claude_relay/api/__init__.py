"""
API Router Module Initialization
"""

from claude_relay.api.deps import get_relay_service

__all__ = [
    "get_relay_service",
]
