"""
Shared HTTP client helpers for provider adapters.

Provides consistent timeouts and error mapping so provider adapters
return stable AppError instances without leaking stack traces. Every
helper performs exactly one network attempt; retry policy belongs to
the caller.
"""

from __future__ import annotations

import json
from typing import Any

import httpx

from parley.core import (
    ModelNotFoundError,
    ProviderAuthError,
    ProviderBadResponseError,
    ProviderError,
    ProviderRateLimitedError,
    ProviderUnavailableError,
    get_logger,
    request_id_ctx,
)

logger = get_logger(__name__)


def create_http_client(
    base_url: str,
    timeout_seconds: int,
    connect_timeout_seconds: int | None = None,
    headers: dict[str, str] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """
    Build an AsyncClient with consistent timeout settings.

    Args:
        base_url: Base URL for the provider.
        timeout_seconds: Read/write/pool timeout for requests.
        connect_timeout_seconds: Connect timeout (defaults to timeout_seconds).
        headers: Default headers to include.
        transport: Optional transport (used by tests with MockTransport).
    """
    timeout = httpx.Timeout(
        timeout_seconds,
        connect=connect_timeout_seconds or timeout_seconds,
    )
    return httpx.AsyncClient(
        base_url=base_url.rstrip("/"),
        timeout=timeout,
        headers=headers or {},
        transport=transport,
    )


def map_transport_error(exc: httpx.HTTPError) -> ProviderError | ProviderUnavailableError:
    """Translate an httpx exception into a stable provider error."""
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError)):
        return ProviderUnavailableError(
            "Provider unavailable", details={"reason": str(exc) or type(exc).__name__}
        )
    return ProviderError("Provider request failed", details={"reason": str(exc) or type(exc).__name__})


def _with_request_id(kwargs: dict[str, Any]) -> dict[str, Any]:
    headers = kwargs.pop("headers", {}) or {}
    request_id = request_id_ctx.get()
    if request_id and "X-Request-ID" not in headers:
        headers["X-Request-ID"] = request_id
    kwargs["headers"] = headers
    return kwargs


async def send_request(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    **kwargs: Any,
) -> httpx.Response:
    """Execute a single HTTP request with mapped errors."""
    try:
        return await client.request(method, url, **_with_request_id(kwargs))
    except httpx.HTTPError as exc:
        raise map_transport_error(exc) from exc


async def open_stream(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    **kwargs: Any,
) -> httpx.Response:
    """
    Open a streaming request. The caller owns the response and must
    ``aclose()`` it.
    """
    request = client.build_request(method, url, **_with_request_id(kwargs))
    try:
        response = await client.send(request, stream=True)
    except httpx.HTTPError as exc:
        raise map_transport_error(exc) from exc

    if response.status_code >= 400:
        try:
            await response.aread()
        except httpx.HTTPError:
            pass
        finally:
            await response.aclose()
        raise_for_status(response)
    return response


def raise_for_status(response: httpx.Response) -> None:
    """
    Map HTTP status codes to stable AppError types.
    """
    status = response.status_code
    if status < 400:
        return

    details = _safe_error_details(response)
    logger.warning("Provider HTTP error", data=details)

    if status in (401, 403):
        raise ProviderAuthError(details=details, status_code=status)
    if status == 404:
        raise ModelNotFoundError(details=details)
    if status == 429:
        raise ProviderRateLimitedError(details=details)
    if status >= 500:
        raise ProviderUnavailableError("Provider unavailable", details=details)
    raise ProviderError("Provider error", details=details)


def parse_json(response: httpx.Response) -> Any:
    """
    Parse JSON with consistent error handling.
    """
    try:
        return response.json()
    except json.JSONDecodeError as exc:
        snippet = response.text[:500] if response.text else ""
        raise ProviderBadResponseError(
            "Provider returned invalid response",
            details={"body": snippet},
        ) from exc


def _safe_error_details(response: httpx.Response) -> dict[str, Any]:
    """Return a small, non-sensitive error payload for debugging."""
    body_snippet = ""
    try:
        if response.text:
            body_snippet = response.text[:300]
    except httpx.ResponseNotRead:
        body_snippet = ""

    return {
        "status": response.status_code,
        "body": body_snippet,
        "url": str(response.request.url) if response.request else None,
    }
