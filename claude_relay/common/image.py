"""
Image Resolution Module

Turns OpenAI image_url parts into base64 payloads for Anthropic image blocks:
remote URLs are downloaded, data URIs are decoded.
"""

import base64
import binascii
import logging
import re
from typing import Optional

import httpx

from claude_relay.common.errors import ImageResolutionError

logger = logging.getLogger(__name__)

_DATA_URI_PATTERN = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(;[^;,]*)*?);base64,(?P<data>.*)$", re.DOTALL)


class ImageResolver:
    """
    Image Resolver

    Both operations fail with ImageResolutionError; the caller does not retry.
    """

    def __init__(self, timeout: float = 30.0, max_bytes: int = 20 * 1024 * 1024):
        """
        Initialize Resolver

        Args:
            timeout: Download timeout (seconds)
            max_bytes: Largest accepted remote image
        """
        self.timeout = timeout
        self.max_bytes = max_bytes

    async def fetch(self, url: str) -> tuple[str, str]:
        """
        Download a remote image

        Args:
            url: http(s) image URL

        Returns:
            tuple[str, str]: (mime type, base64 data)
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
                response = await client.get(url)
        except httpx.HTTPError as e:
            raise ImageResolutionError(f"get file base64 from url failed: {e}", source=url) from e

        if response.status_code >= 400:
            raise ImageResolutionError(
                f"get file base64 from url failed: status {response.status_code}", source=url
            )
        content = response.content
        if len(content) > self.max_bytes:
            raise ImageResolutionError("image exceeds maximum allowed size", source=url)

        mime_type = _guess_mime_type(response.headers.get("content-type"), content)
        return mime_type, base64.b64encode(content).decode("ascii")

    def decode_embedded(self, data_uri: str) -> tuple[str, str]:
        """
        Decode a data URI (or bare base64) image

        Args:
            data_uri: e.g. "data:image/png;base64,iVBOR..."

        Returns:
            tuple[str, str]: (image format such as "png", base64 data)
        """
        match = _DATA_URI_PATTERN.match(data_uri.strip())
        if match:
            mime = match.group("mime") or ""
            payload = match.group("data")
        else:
            mime = ""
            payload = data_uri.strip()

        try:
            raw = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ImageResolutionError(f"invalid base64 image data: {e}", source=data_uri) from e
        if not raw:
            raise ImageResolutionError("empty image data", source=data_uri)

        if mime.startswith("image/"):
            image_format = mime.split("/", 1)[1]
        else:
            image_format = _guess_mime_type(None, raw).split("/", 1)[1]
        if image_format == "jpg":
            image_format = "jpeg"
        return image_format, payload


def _guess_mime_type(content_type: Optional[str], data: bytes) -> str:
    if content_type:
        mime = content_type.split(";", 1)[0].strip().lower()
        if mime.startswith("image/"):
            return mime
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if data.startswith((b"GIF87a", b"GIF89a")):
        return "image/gif"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    raise ImageResolutionError("unsupported image format")
