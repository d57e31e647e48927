"""HTTP utilities providing bounded retry/backoff semantics."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

import httpx

from teams_auth.core.errors import ErrorCode, TransportError, create_error

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class RetryConfig:
    def __init__(self, *, attempts: int = 2, backoff_seconds: float = 0.5) -> None:
        self.attempts = attempts
        self.backoff_seconds = backoff_seconds


async def request_with_retry(
    func: Callable[..., Awaitable[httpx.Response]],
    *args,
    retry_config: RetryConfig | None = None,
    **kwargs,
) -> httpx.Response:
    """Call ``func`` until it yields a non-retryable response or attempts run out.

    Client errors (4xx other than 429) are returned immediately so callers can
    classify auth rejections; they are never retried. Transport failures that
    survive every attempt raise ``TransportError``.
    """
    config = retry_config or RetryConfig()
    attempt = 0
    last_exception: httpx.TransportError | None = None
    response: httpx.Response | None = None

    while attempt < config.attempts:
        try:
            response = await func(*args, **kwargs)
            last_exception = None
            if response.status_code not in RETRYABLE_STATUS_CODES:
                return response
        except httpx.TransportError as exc:
            last_exception = exc
            response = None
        attempt += 1
        if attempt >= config.attempts:
            break
        await asyncio.sleep(config.backoff_seconds * attempt)

    if response is not None:
        return response

    if isinstance(last_exception, httpx.TimeoutException):
        raise TransportError(
            create_error(ErrorCode.TIMEOUT, f"Request timed out after {config.attempts} attempt(s)")
        ) from last_exception
    if last_exception is not None:
        raise TransportError(
            create_error(ErrorCode.NETWORK_ERROR, f"Network error: {last_exception}")
        ) from last_exception
    raise RuntimeError("Request failed without raising an exception")


__all__ = ["RETRYABLE_STATUS_CODES", "RetryConfig", "request_with_retry"]
