"""
Cache-Control Fixer

Repairs prompt-cache markers missing a TTL and marks the last user turn for
prompt caching.
"""

import logging
from typing import Any, Optional

from claude_relay.relay.types import canonical_cache_control

logger = logging.getLogger(__name__)


def _needs_fix(marker: Any) -> bool:
    return isinstance(marker, dict) and marker.get("type") == "ephemeral" and marker.get("ttl") is None


def fix_cache_control(blocks: Optional[list[Any]], where: str = "system") -> int:
    """
    Rewrite {"type": "ephemeral"} markers without ttl to the canonical marker (in place)

    Args:
        blocks: Content blocks (non-list values are ignored)
        where: Label used in log lines

    Returns:
        int: Number of markers rewritten
    """
    if not isinstance(blocks, list):
        return 0
    fixed = 0
    for i, block in enumerate(blocks):
        if isinstance(block, dict) and _needs_fix(block.get("cache_control")):
            block["cache_control"] = canonical_cache_control()
            fixed += 1
            logger.info("Fixed cache_control format in %s item %d", where, i)
    return fixed


def add_cache_control(messages: Optional[list[dict[str, Any]]]) -> Optional[list[dict[str, Any]]]:
    """
    Fix every message's cache markers, then mark the last user message

    The marker goes onto the last content block of the last user-role message
    unless that block already carries one. String content is promoted to a
    single text block first. Mutates and returns the list.
    """
    if not messages:
        return messages

    for i, message in enumerate(messages):
        fix_cache_control(message.get("content"), where=f"message {i}")

    for i in range(len(messages) - 1, -1, -1):
        message = messages[i]
        if message.get("role") != "user":
            continue
        content = message.get("content")
        if isinstance(content, str):
            message["content"] = [
                {"type": "text", "text": content, "cache_control": canonical_cache_control()}
            ]
            logger.info("Added cache_control to string message %d", i)
        elif isinstance(content, list) and content:
            last = content[-1]
            if isinstance(last, dict) and "cache_control" not in last:
                last["cache_control"] = canonical_cache_control()
                logger.info("Added cache_control to message %d, content %d", i, len(content) - 1)
        break

    return messages
