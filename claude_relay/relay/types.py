"""
Relay Types

Shared constants and request/response scoped data structures.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

CLAUDE_CODE_SYSTEM_PROMPT = "You are Claude Code, Anthropic's official CLI for Claude."

# Placeholder used where Anthropic rejects empty content
PLACEHOLDER_TEXT = "..."


def canonical_cache_control() -> dict[str, str]:
    """Return a fresh canonical prompt-cache marker."""
    return {"type": "ephemeral", "ttl": "1h"}


class RequestMode(str, Enum):
    """Upstream API surface, decided once per request from the model name."""

    COMPLETION = "completion"
    MESSAGE = "message"

    @classmethod
    def for_model(cls, model: str) -> "RequestMode":
        if model.startswith("claude-2") or model.startswith("claude-instant"):
            return cls.COMPLETION
        return cls.MESSAGE

    @property
    def upstream_path(self) -> str:
        return "/v1/complete" if self is RequestMode.COMPLETION else "/v1/messages"


class StreamState(str, Enum):
    AWAITING_START = "awaiting_start"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    DONE = "done"


_STOP_REASON_MAP = {
    "stop_sequence": "stop",
    "end_turn": "stop",
    "max_tokens": "length",
    "tool_use": "tool_calls",
}


def map_stop_reason(reason: Optional[str]) -> Optional[str]:
    """Map an Anthropic stop_reason to an OpenAI finish_reason (unknown values pass through)."""
    if reason is None:
        return None
    return _STOP_REASON_MAP.get(reason, reason)


@dataclass
class Usage:
    """
    Token Usage

    Cache creation tokens are split by TTL class (5 minute / 1 hour).
    """

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cached_tokens: int = 0
    cached_creation_tokens: int = 0
    cache_creation_5m_tokens: int = 0
    cache_creation_1h_tokens: int = 0

    @classmethod
    def from_claude(cls, usage: Optional[dict[str, Any]]) -> "Usage":
        """Build from an Anthropic usage object."""
        result = cls()
        result.merge_claude(usage)
        result.total_tokens = result.prompt_tokens + result.completion_tokens
        return result

    def merge_claude(self, usage: Optional[dict[str, Any]]) -> None:
        """
        Merge an Anthropic usage object into this one

        Absent counters keep their current value; input_tokens only overrides
        when positive (message_delta frames usually report 0 there).
        """
        if not isinstance(usage, dict):
            return
        input_tokens = _safe_int(usage.get("input_tokens"))
        if input_tokens:
            self.prompt_tokens = input_tokens
        output_tokens = _safe_int(usage.get("output_tokens"))
        if output_tokens is not None:
            self.completion_tokens = output_tokens
        cache_read = _safe_int(usage.get("cache_read_input_tokens"))
        if cache_read is not None:
            self.cached_tokens = cache_read
        cache_creation = _safe_int(usage.get("cache_creation_input_tokens"))
        if cache_creation is not None:
            self.cached_creation_tokens = cache_creation
        split = usage.get("cache_creation")
        if isinstance(split, dict):
            self.cache_creation_5m_tokens = _safe_int(split.get("ephemeral_5m_input_tokens")) or 0
            self.cache_creation_1h_tokens = _safe_int(split.get("ephemeral_1h_input_tokens")) or 0

    def to_openai(self) -> dict[str, Any]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
            "prompt_tokens_details": {
                "cached_tokens": self.cached_tokens,
                "cached_creation_tokens": self.cached_creation_tokens,
            },
            "claude_cache_creation_5_m_tokens": self.cache_creation_5m_tokens,
            "claude_cache_creation_1_h_tokens": self.cache_creation_1h_tokens,
        }


@dataclass
class ResponseAccumulator:
    """State carried across one streamed response."""

    response_id: str
    model: str
    created: int = field(default_factory=lambda: int(time.time()))
    text_parts: list[str] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
    done: bool = False

    @property
    def response_text(self) -> str:
        return "".join(self.text_parts)


def _safe_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return None
