"""
Test Configuration Module
"""

import pytest

from claude_relay.common.token_counter import TokenCounter
from claude_relay.config import Settings


class MockTokenCounter(TokenCounter):
    """Counts whitespace separated words."""

    def count_tokens(self, text: str, model: str = "") -> int:
        return len(text.split())


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the environment's .env file"""
    return Settings(_env_file=None)


@pytest.fixture
def token_counter() -> TokenCounter:
    return MockTokenCounter()
