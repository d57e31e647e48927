"""
Error taxonomy shared by the storage, extraction and refresh layers.

Codes are machine readable so callers (auth guards, the HTTP surface) can
decide whether to retry, fall back, or ask for an interactive login.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple


class ErrorCode(str, Enum):
    """All failure kinds surfaced by the auth core."""

    AUTH_REQUIRED = "AUTH_REQUIRED"
    AUTH_EXPIRED = "AUTH_EXPIRED"
    REFRESH_IN_PROGRESS = "REFRESH_IN_PROGRESS"
    RATE_LIMITED = "RATE_LIMITED"
    API_ERROR = "API_ERROR"
    BROWSER_ERROR = "BROWSER_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    UNKNOWN = "UNKNOWN"


LOGIN_SUGGESTION = "Run the login flow (POST /api/auth/login) to authenticate"

_DEFAULT_SUGGESTIONS: dict[ErrorCode, Tuple[str, ...]] = {
    ErrorCode.AUTH_REQUIRED: (
        LOGIN_SUGGESTION,
        "After login succeeds, retry the original request",
    ),
    ErrorCode.AUTH_EXPIRED: (
        "Run the login flow (POST /api/auth/login) to re-authenticate",
        "After login succeeds, retry the original request",
    ),
    ErrorCode.REFRESH_IN_PROGRESS: ("Wait a moment and retry the request",),
    ErrorCode.RATE_LIMITED: ("Wait before retrying", "Reduce request frequency"),
    ErrorCode.API_ERROR: ("Retry the request", "Check /api/auth/status"),
    ErrorCode.BROWSER_ERROR: ("Run the login flow to restart the browser session",),
    ErrorCode.NETWORK_ERROR: ("Check network connectivity", "Retry the request"),
    ErrorCode.TIMEOUT: ("Retry the request",),
    ErrorCode.UNKNOWN: ("Check /api/auth/status", "Run the login flow if authentication fails"),
}

_RETRYABLE_BY_DEFAULT = frozenset(
    {
        ErrorCode.REFRESH_IN_PROGRESS,
        ErrorCode.RATE_LIMITED,
        ErrorCode.API_ERROR,
        ErrorCode.NETWORK_ERROR,
        ErrorCode.TIMEOUT,
    }
)


@dataclass(frozen=True)
class AuthError:
    """Structured, machine-readable failure description."""

    code: ErrorCode
    message: str
    retryable: bool = False
    retry_after_ms: Optional[int] = None
    suggestions: Tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        payload = {
            "code": self.code.value,
            "message": self.message,
            "retryable": self.retryable,
            "suggestions": list(self.suggestions),
        }
        if self.retry_after_ms is not None:
            payload["retryAfterMs"] = self.retry_after_ms
        return payload


def create_error(
    code: ErrorCode,
    message: str,
    *,
    retryable: Optional[bool] = None,
    retry_after_ms: Optional[int] = None,
    suggestions: Optional[Tuple[str, ...] | list[str]] = None,
) -> AuthError:
    """Build an ``AuthError`` filling retryability and suggestions from the code."""
    return AuthError(
        code=code,
        message=message,
        retryable=code in _RETRYABLE_BY_DEFAULT if retryable is None else retryable,
        retry_after_ms=retry_after_ms,
        suggestions=tuple(suggestions) if suggestions is not None else _DEFAULT_SUGGESTIONS[code],
    )


def classify_http_status(status_code: int) -> ErrorCode:
    """Map an HTTP status from an identity endpoint onto an error code."""
    if status_code in (400, 401):
        return ErrorCode.AUTH_EXPIRED
    if status_code == 403:
        return ErrorCode.AUTH_REQUIRED
    if status_code == 429:
        return ErrorCode.RATE_LIMITED
    if status_code >= 500:
        return ErrorCode.API_ERROR
    return ErrorCode.UNKNOWN


class AuthCoreError(Exception):
    """Base class for exceptions carrying an ``AuthError``."""

    def __init__(self, error: AuthError) -> None:
        super().__init__(error.message)
        self.error = error

    @property
    def code(self) -> ErrorCode:
        return self.error.code


class DecryptionError(Exception):
    """Raised when an encrypted blob cannot be authenticated or decoded."""


class TransportError(AuthCoreError):
    """Raised when an outbound call fails before a response is received."""


class TokenEndpointError(AuthCoreError):
    """Raised when the OAuth token endpoint rejects a refresh request."""


class SkypeTokenExchangeError(AuthCoreError):
    """Raised when the Skype token exchange fails."""


__all__ = [
    "AuthCoreError",
    "AuthError",
    "DecryptionError",
    "ErrorCode",
    "LOGIN_SUGGESTION",
    "SkypeTokenExchangeError",
    "TokenEndpointError",
    "TransportError",
    "classify_http_status",
    "create_error",
]
