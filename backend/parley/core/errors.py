"""
Structured error handling with stable error codes.

No stack traces are exposed to clients. All errors are mapped to
stable, documented error codes for reliable client handling, both in
JSON error bodies and in terminal SSE ``error`` events.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Stable error codes for API responses and stream events."""

    # General errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    METHOD_NOT_ALLOWED = "METHOD_NOT_ALLOWED"
    RATE_LIMITED = "RATE_LIMITED"

    # Authentication / authorization
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"

    # Resources
    CHAT_NOT_FOUND = "CHAT_NOT_FOUND"

    # Provider / streaming
    PROVIDER_UNAVAILABLE = "PROVIDER_UNAVAILABLE"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    PROVIDER_BAD_RESPONSE = "PROVIDER_BAD_RESPONSE"
    PROVIDER_AUTH_FAILED = "PROVIDER_AUTH_FAILED"
    PROVIDER_RATE_LIMITED = "PROVIDER_RATE_LIMITED"
    MODEL_NOT_FOUND = "MODEL_NOT_FOUND"
    STREAM_TIMEOUT = "STREAM_TIMEOUT"


@dataclass(frozen=True)
class ErrorResponse:
    """Structured error response for API.

    Format: {error: {code, message, request_id, details?}}
    """

    code: ErrorCode
    message: str
    request_id: str | None = None
    details: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON response."""
        error: dict[str, Any] = {
            "code": self.code.value,
            "message": self.message,
        }
        if self.request_id:
            error["request_id"] = self.request_id
        if self.details:
            error["details"] = self.details
        return {"error": error}


class AppError(Exception):
    """Base application error with structured error detail."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)

    def to_response(self, request_id: str | None = None) -> ErrorResponse:
        """Create error response with request ID."""
        return ErrorResponse(
            code=self.code,
            message=self.message,
            request_id=request_id,
            details=self.details,
        )


# Convenience error classes
class ChatNotFoundError(AppError):
    """Chat missing or not owned by the requesting user (404)."""

    def __init__(self, chat_id: str | None = None):
        details = {"chat_id": chat_id} if chat_id else None
        super().__init__(ErrorCode.CHAT_NOT_FOUND, "Chat not found", 404, details)


class UnauthorizedError(AppError):
    """Authentication required (401)."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(ErrorCode.UNAUTHORIZED, message, 401)


class RateLimitError(AppError):
    """Rate limit exceeded (429)."""

    def __init__(self, message: str = "Rate limit exceeded", details: dict[str, Any] | None = None):
        super().__init__(ErrorCode.RATE_LIMITED, message, 429, details)


class ProviderError(AppError):
    """Provider error (502)."""

    def __init__(
        self,
        message: str = "Provider error",
        details: dict[str, Any] | None = None,
        code: ErrorCode = ErrorCode.PROVIDER_ERROR,
        status_code: int = 502,
    ):
        super().__init__(code, message, status_code, details)


class ProviderRateLimitedError(ProviderError):
    """Provider throttled the request (429 upstream, reported as 503)."""

    def __init__(
        self, message: str = "Provider rate limit exceeded", details: dict[str, Any] | None = None
    ):
        super().__init__(message, details, ErrorCode.PROVIDER_RATE_LIMITED, 503)


class ProviderUnavailableError(AppError):
    """Provider unavailable (503)."""

    def __init__(
        self, message: str = "Provider unavailable", details: dict[str, Any] | None = None
    ):
        super().__init__(ErrorCode.PROVIDER_UNAVAILABLE, message, 503, details)


class ProviderBadResponseError(AppError):
    """Provider returned malformed response (502)."""

    def __init__(
        self, message: str = "Provider returned invalid response", details: dict[str, Any] | None = None
    ):
        super().__init__(ErrorCode.PROVIDER_BAD_RESPONSE, message, 502, details)


class ProviderAuthError(AppError):
    """Provider authentication failed (401/403)."""

    def __init__(
        self,
        message: str = "Provider authentication failed",
        status_code: int = 401,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(ErrorCode.PROVIDER_AUTH_FAILED, message, status_code, details)


class ModelNotFoundError(AppError):
    """Requested model not found (404)."""

    def __init__(self, message: str = "Model not found", details: dict[str, Any] | None = None):
        super().__init__(ErrorCode.MODEL_NOT_FOUND, message, 404, details)


class StreamTimeoutError(AppError):
    """Run exceeded its allotted lifetime (504)."""

    def __init__(self, timeout_seconds: float):
        super().__init__(
            ErrorCode.STREAM_TIMEOUT,
            "Model request timeout",
            504,
            {"timeout_seconds": timeout_seconds},
        )
