"""
Server-Sent Events Helpers

Splits upstream bytes into event frames and encodes outbound chunks.
"""

from __future__ import annotations

import json
from typing import Any, AsyncIterable, AsyncIterator, Optional

DONE_FRAME = b"data: [DONE]\n\n"


class SSEDecoder:
    """
    Simple SSE Decoder: Splits bytes stream into event blocks and extracts data fields.

    - Uses empty line (\n\n) as event boundary
    - Supports CRLF (\r\n)
    - Only parses data: lines, ignores other fields (event:, id:, comments)
    """

    def __init__(self) -> None:
        self._buf = b""

    def feed(self, chunk: bytes) -> list[str]:
        """
        Append bytes and return list of parsed data payloads (one string per event).
        """
        if not chunk:
            return []

        data = (self._buf + chunk).replace(b"\r\n", b"\n")
        parts = data.split(b"\n\n")
        self._buf = parts.pop()  # Keep last incomplete event

        payloads: list[str] = []
        for event in parts:
            payload = self._extract_data_payload(event)
            if payload is not None:
                payloads.append(payload)
        return payloads

    def flush(self) -> list[str]:
        """Return the payload of a trailing event not terminated by an empty line."""
        if not self._buf.strip():
            self._buf = b""
            return []
        payload = self._extract_data_payload(self._buf.replace(b"\r\n", b"\n"))
        self._buf = b""
        return [payload] if payload is not None else []

    @staticmethod
    def _extract_data_payload(event: bytes) -> Optional[str]:
        data_lines: list[bytes] = []
        for line in event.split(b"\n"):
            if not line:
                continue
            if line.startswith(b"data:"):
                value = line[5:]
                if value.startswith(b" "):
                    value = value[1:]
                data_lines.append(value)
        if not data_lines:
            return None
        return b"\n".join(data_lines).decode("utf-8", errors="ignore")


async def aiter_frames(chunks: AsyncIterable[bytes]) -> AsyncIterator[str]:
    """Turn an upstream byte stream into data payloads, in arrival order."""
    decoder = SSEDecoder()
    async for chunk in chunks:
        for payload in decoder.feed(chunk):
            yield payload
    for payload in decoder.flush():
        yield payload


def encode_sse(obj: dict[str, Any]) -> bytes:
    """Encode one chunk object as an SSE data frame."""
    return f"data: {json.dumps(obj, ensure_ascii=False)}\n\n".encode("utf-8")
