"""Core module with errors, logging, metrics, and middleware."""

from parley.core.errors import (
    AppError,
    ChatNotFoundError,
    ErrorCode,
    ErrorResponse,
    ModelNotFoundError,
    ProviderAuthError,
    ProviderBadResponseError,
    ProviderError,
    ProviderRateLimitedError,
    ProviderUnavailableError,
    RateLimitError,
    StreamTimeoutError,
    UnauthorizedError,
)
from parley.core.logging import (
    get_logger,
    request_id_ctx,
    setup_logging,
    stream_id_ctx,
    user_id_ctx,
)

__all__ = [
    # Errors
    "AppError",
    "ChatNotFoundError",
    "ErrorCode",
    "ErrorResponse",
    "ModelNotFoundError",
    "ProviderAuthError",
    "ProviderBadResponseError",
    "ProviderError",
    "ProviderRateLimitedError",
    "ProviderUnavailableError",
    "RateLimitError",
    "StreamTimeoutError",
    "UnauthorizedError",
    # Logging
    "get_logger",
    "setup_logging",
    "request_id_ctx",
    "stream_id_ctx",
    "user_id_ctx",
]
