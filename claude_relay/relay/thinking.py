"""
Thinking/Reasoning Budget Resolver

Derives max_tokens and the extended thinking directive for a message-mode
request. Precedence, lowest to highest: "-thinking" model suffix, named
reasoning_effort, explicit reasoning.max_tokens.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from claude_relay.common.errors import UnsupportedShapeError
from claude_relay.config import Settings

THINKING_SUFFIX = "-thinking"

# Anthropic requires budget_tokens >= 1024; 80% of 1280 satisfies it
MIN_THINKING_MAX_TOKENS = 1280

# 4096 is treated as the universal client default and bumped
BUMPED_DEFAULT_MAX_TOKENS = 4096
BUMPED_MAX_TOKENS = 16384

REASONING_EFFORT_BUDGETS = {
    "low": 1280,
    "medium": 2048,
    "high": 4096,
}


@dataclass
class ThinkingResolution:
    """
    Result of budget resolution

    `pinned` holds sampling fields forced by the extended thinking contract;
    the sampling clear pass must leave them alone. A pinned value of None
    means "cleared".
    """

    model: str
    max_tokens: int
    thinking: Optional[dict[str, Any]] = None
    pinned: dict[str, Optional[float]] = field(default_factory=dict)


def resolve_max_tokens(requested: Optional[int], model: str, settings: Settings) -> int:
    """
    Resolve max_tokens: caller value if nonzero, else the model default; 4096 becomes 16384.

    A caller-chosen 4096 cannot be told apart from the default and is bumped as well.
    """
    max_tokens = requested or settings.default_max_tokens(model)
    if max_tokens == BUMPED_DEFAULT_MAX_TOKENS:
        max_tokens = BUMPED_MAX_TOKENS
    return max_tokens


def _enabled(budget_tokens: int) -> dict[str, Any]:
    return {"type": "enabled", "budget_tokens": budget_tokens}


def resolve_thinking(
    model: str,
    max_tokens: int,
    settings: Settings,
    reasoning_effort: Optional[str] = None,
    reasoning: Any = None,
) -> ThinkingResolution:
    """
    Resolve the thinking directive

    Args:
        model: Requested model name
        max_tokens: Max tokens already resolved by resolve_max_tokens
        settings: Relay settings
        reasoning_effort: "low" / "medium" / "high"
        reasoning: {"max_tokens": int, ...}

    Returns:
        ThinkingResolution: Upstream model name, max_tokens, thinking and pinned sampling fields
    """
    result = ThinkingResolution(model=model, max_tokens=max_tokens)

    if settings.THINKING_ADAPTER_ENABLED and model.endswith(THINKING_SUFFIX):
        if result.max_tokens < MIN_THINKING_MAX_TOKENS:
            result.max_tokens = MIN_THINKING_MAX_TOKENS
        budget = int(result.max_tokens * settings.THINKING_ADAPTER_BUDGET_TOKENS_PERCENTAGE)
        result.thinking = _enabled(budget)
        # https://docs.anthropic.com/en/docs/build-with-claude/extended-thinking#important-considerations-when-using-extended-thinking
        result.pinned = {"temperature": 1.0, "top_p": None}
        if not settings.preserve_thinking_suffix(model):
            result.model = model[: -len(THINKING_SUFFIX)]

    if reasoning_effort:
        budget = REASONING_EFFORT_BUDGETS.get(reasoning_effort)
        if budget is not None:
            result.thinking = _enabled(budget)

    if reasoning is not None:
        if not isinstance(reasoning, Mapping):
            raise UnsupportedShapeError("reasoning", reasoning)
        budget_tokens = reasoning.get("max_tokens")
        if isinstance(budget_tokens, int) and not isinstance(budget_tokens, bool) and budget_tokens > 0:
            result.thinking = _enabled(budget_tokens)

    return result
