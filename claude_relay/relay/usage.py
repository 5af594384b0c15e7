"""
Usage Reconciler

Upstream usage is trusted only when it reports completion tokens for a turn
that actually finished; otherwise it is recounted locally from the text.
"""

import logging

from claude_relay.common.token_counter import TokenCounter
from claude_relay.relay.types import RequestMode, Usage

logger = logging.getLogger(__name__)


def response_text_to_usage(text: str, model: str, prompt_tokens: int, counter: TokenCounter) -> Usage:
    """Build usage from locally counted completion text and a known prompt count."""
    completion_tokens = counter.count_tokens(text, model)
    return Usage(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=prompt_tokens + completion_tokens,
    )


def reconcile_usage(
    usage: Usage,
    done: bool,
    text: str,
    model: str,
    counter: TokenCounter,
    mode: RequestMode = RequestMode.MESSAGE,
) -> Usage:
    """
    Finalize token usage

    Completion mode never carries usage and is always recounted. Message mode
    is recounted when completion tokens are zero or the turn never completed;
    the recount keeps the prompt tokens already known.

    Returns:
        Usage: Finalized usage with total = prompt + completion
    """
    if mode is RequestMode.COMPLETION or usage.completion_tokens == 0 or not done:
        if mode is RequestMode.MESSAGE:
            logger.debug("claude response usage is not complete, maybe upstream error")
        recounted = response_text_to_usage(text, model, usage.prompt_tokens, counter)
        recounted.cached_tokens = usage.cached_tokens
        recounted.cached_creation_tokens = usage.cached_creation_tokens
        recounted.cache_creation_5m_tokens = usage.cache_creation_5m_tokens
        recounted.cache_creation_1h_tokens = usage.cache_creation_1h_tokens
        return recounted

    usage.total_tokens = usage.prompt_tokens + usage.completion_tokens
    return usage
