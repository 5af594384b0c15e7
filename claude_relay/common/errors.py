"""
Error Definitions

Defines the exception classes raised by the relay for unified error handling.
Request conversion errors surface before anything is sent upstream; stream
errors terminate the stream reducer.
"""

from typing import Any, Optional


class AppError(Exception):
    """
    Application Base Exception

    Base class for all custom exceptions, containing error message, type, and code.
    """

    def __init__(
        self,
        message: str,
        error_type: str = "app_error",
        code: str = "internal_error",
        details: Optional[dict[str, Any]] = None,
        status_code: int = 500,
    ):
        """
        Initialize exception

        Args:
            message: Error message
            error_type: Error type
            code: Error code
            details: Extra error details
            status_code: HTTP status code
        """
        super().__init__(message)
        self.message = message
        self.error_type = error_type
        self.code = code
        self.details = details or {}
        self.status_code = status_code

    def to_dict(self, include_details: bool = True) -> dict[str, Any]:
        """
        Convert to dictionary format (for API response)

        Args:
            include_details: Whether extra details are included

        Returns:
            dict: Error information dictionary
        """
        result = {
            "error": {
                "message": self.message,
                "type": self.error_type,
                "code": self.code,
            }
        }
        if include_details and self.details:
            result["error"]["details"] = self.details
        return result


class UnsupportedShapeError(AppError):
    """
    Unsupported Field Shape

    Raised when a request field is neither a recognized type nor convertible.
    """

    def __init__(
        self,
        field: str,
        value: Any = None,
        message: Optional[str] = None,
    ):
        super().__init__(
            message=message or f"Unsupported shape for field '{field}': {type(value).__name__}",
            error_type="invalid_request_error",
            code="unsupported_shape",
            details={"field": field},
            status_code=400,
        )
        self.field = field


class InvalidStopSequenceError(AppError):
    """Raised when a stop sequence list contains a non-string element."""

    def __init__(self, value: Any):
        super().__init__(
            message=f"Stop sequence must be a string, got {type(value).__name__}",
            error_type="invalid_request_error",
            code="invalid_stop_sequence",
            details={"value": repr(value)},
            status_code=400,
        )


class ImageResolutionError(AppError):
    """
    Image Resolution Failed

    Raised when a remote image cannot be fetched or an inline image cannot be decoded.
    Fails the whole conversion, no retry.
    """

    def __init__(self, message: str, source: Optional[str] = None):
        details = {"source": source[:128]} if source else None
        super().__init__(
            message=message,
            error_type="invalid_request_error",
            code="image_resolution_failed",
            details=details,
            status_code=400,
        )


class MalformedEventError(AppError):
    """Raised when a stream event misses a payload required by its type."""

    def __init__(self, event_type: str, message: Optional[str] = None):
        super().__init__(
            message=message or f"Malformed '{event_type}' event",
            error_type="upstream_error",
            code="malformed_event",
            details={"event_type": event_type},
            status_code=502,
        )
        self.event_type = event_type


class BadUpstreamFrameError(AppError):
    """Raised when a stream frame cannot be decoded."""

    def __init__(self, message: str = "Failed to decode upstream stream frame", frame: Optional[str] = None):
        details = {"frame": frame[:256]} if frame else None
        super().__init__(
            message=message,
            error_type="upstream_error",
            code="bad_upstream_frame",
            details=details,
            status_code=502,
        )


class BadResponseBodyError(AppError):
    """Raised when a non-stream upstream body fails to decode."""

    def __init__(self, message: str = "Failed to decode upstream response body"):
        super().__init__(
            message=message,
            error_type="upstream_error",
            code="bad_response_body",
            status_code=502,
        )


class UpstreamProviderError(AppError):
    """
    Upstream Provider Error

    Raised for an error envelope decoded from the provider. The provider's own
    error type and message are kept; this relay does not retry.
    """

    def __init__(
        self,
        message: str = "Upstream service error",
        provider_error_type: str = "api_error",
        status_code: int = 500,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            error_type=provider_error_type,
            code="upstream_error",
            details=details,
            status_code=status_code,
        )
        self.provider_error_type = provider_error_type

    @classmethod
    def from_envelope(cls, envelope: dict[str, Any], status_code: int = 500) -> "UpstreamProviderError":
        """
        Build from an Anthropic error envelope

        Args:
            envelope: {"type": "error", "error": {"type": ..., "message": ...}}
            status_code: HTTP status to surface

        Returns:
            UpstreamProviderError: Error carrying the provider's type and message
        """
        error = envelope.get("error")
        if not isinstance(error, dict):
            error = {}
        return cls(
            message=str(error.get("message") or "Upstream service error"),
            provider_error_type=str(error.get("type") or "api_error"),
            status_code=status_code,
        )
