"""
Request metadata: a synthetic Claude Code user/session identifier.
"""

import secrets
import uuid
from typing import Any


def generate_user_id() -> str:
    """64 hex characters from 32 random bytes."""
    return secrets.token_hex(32)


def generate_metadata() -> dict[str, str]:
    return {"user_id": f"{generate_user_id()}_{uuid.uuid4()}"}


def add_metadata_if_missing(payload: dict[str, Any]) -> dict[str, Any]:
    """Attach metadata.user_id unless the caller already sent metadata."""
    if not payload.get("metadata"):
        payload["metadata"] = generate_metadata()
    return payload
