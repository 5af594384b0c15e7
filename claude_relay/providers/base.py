"""
Upstream Client Base

Response container shared by upstream clients.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class ProviderResponse:
    """
    Upstream Response

    For non-stream requests `body` holds the undecoded bytes exactly as
    received; the caller decompresses according to Content-Encoding.
    """

    # HTTP status code
    status_code: int
    # Response headers (lower-cased names)
    headers: dict[str, str] = field(default_factory=dict)
    # Raw response body
    body: bytes = b""
    # Time to first byte (ms)
    first_byte_delay_ms: Optional[int] = None
    # Total time (ms)
    total_time_ms: Optional[int] = None
    # Transport error message
    error: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 400

    @property
    def content_encoding(self) -> Optional[str]:
        return self.headers.get("content-encoding")
