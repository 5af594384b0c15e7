"""
System Prompt Injector

Ensures the Claude Code preamble is the first system block.
"""

from typing import Any

from claude_relay.relay.normalize import normalize_system
from claude_relay.relay.types import CLAUDE_CODE_SYSTEM_PROMPT


def _preamble_block() -> dict[str, Any]:
    return {"type": "text", "text": CLAUDE_CODE_SYSTEM_PROMPT}


def inject_system_prompt(system: Any) -> list[dict[str, Any]]:
    """
    Return the system block list with the preamble as its first element

    - None / empty list -> [preamble]
    - bare string -> [preamble] (a string other than the preamble is replaced)
    - first block already the preamble -> unchanged
    - otherwise the preamble is prepended and the remaining blocks kept

    Args:
        system: Any accepted `system` shape

    Returns:
        list[dict]: Canonical system blocks
    """
    if system is None or isinstance(system, str):
        return [_preamble_block()]

    blocks = normalize_system(system) or []
    if not blocks:
        return [_preamble_block()]
    if blocks[0].get("text") == CLAUDE_CODE_SYSTEM_PROMPT:
        return blocks
    return [_preamble_block(), *blocks]
