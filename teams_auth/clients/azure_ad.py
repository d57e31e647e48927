"""
Azure AD token endpoint and Teams authsvc clients.

These helpers perform the browserless half of the token lifecycle: trading
the cached MSAL refresh token for fresh access tokens, and trading a Spaces
access token for the ``skypetoken_asm`` identity token.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel, ValidationError

from teams_auth.core.config import RefreshSettings
from teams_auth.core.errors import (
    AuthError,
    ErrorCode,
    SkypeTokenExchangeError,
    TokenEndpointError,
    classify_http_status,
    create_error,
)
from teams_auth.utils.http import RetryConfig, request_with_retry

logger = logging.getLogger(__name__)

# OAuth error codes meaning the refresh token can no longer be used.
EXPIRED_GRANT_ERRORS = frozenset(
    {"invalid_grant", "interaction_required", "login_required", "consent_required"}
)

DEFAULT_SKYPE_TOKEN_LIFETIME_SECONDS = 86400


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "Bearer"
    expires_in: int
    ext_expires_in: Optional[int] = None
    scope: str = ""


class SkypeToken(BaseModel):
    skype_token: str
    expires_in: int = DEFAULT_SKYPE_TOKEN_LIFETIME_SECONDS


def _json_or_none(response: httpx.Response) -> Optional[Dict[str, Any]]:
    try:
        data = response.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def _retry_after_ms(response: httpx.Response) -> Optional[int]:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return int(float(value) * 1000)
    except ValueError:
        return None


def _classify_token_failure(response: httpx.Response) -> AuthError:
    """Describe a non-2xx token endpoint response without echoing secrets."""
    body = _json_or_none(response) or {}
    oauth_error = body.get("error") if isinstance(body.get("error"), str) else None
    description = body.get("error_description")
    detail = description if isinstance(description, str) and description else oauth_error
    if not detail:
        detail = f"HTTP {response.status_code}: {response.text[:200]}"

    if oauth_error in EXPIRED_GRANT_ERRORS:
        code = ErrorCode.AUTH_EXPIRED
    else:
        code = classify_http_status(response.status_code)
    return create_error(
        code,
        f"Token refresh failed: {detail}",
        retry_after_ms=_retry_after_ms(response) if code is ErrorCode.RATE_LIMITED else None,
    )


class AzureTokenClient:
    """Issue refresh-token grants and Skype token exchanges over ``httpx``."""

    TOKEN_URL = "https://login.microsoftonline.com/{tenant_id}/oauth2/v2.0/token"
    AUTHSVC_URL = "https://authsvc.teams.microsoft.com/v1.0/authz"
    TEAMS_ORIGIN = "https://teams.microsoft.com"

    def __init__(self, transport: httpx.AsyncClient, settings: RefreshSettings) -> None:
        self._transport = transport
        self._timeout = httpx.Timeout(settings.http_timeout_seconds)
        self._retry = RetryConfig(
            attempts=settings.http_retry_attempts,
            backoff_seconds=settings.http_retry_backoff_seconds,
        )

    async def refresh_access_token(
        self,
        tenant_id: str,
        client_id: str,
        refresh_token: str,
        scopes: str,
    ) -> TokenResponse:
        """Exchange a refresh token for an access token covering ``scopes``.

        The Teams client is registered as a single-page application, so the
        token endpoint requires a matching ``Origin`` header.
        """
        payload = {
            "grant_type": "refresh_token",
            "client_id": client_id,
            "refresh_token": refresh_token,
            "scope": scopes,
        }
        response = await request_with_retry(
            self._transport.post,
            self.TOKEN_URL.format(tenant_id=tenant_id),
            data=payload,
            headers={"Origin": self.TEAMS_ORIGIN},
            timeout=self._timeout,
            retry_config=self._retry,
        )

        if response.is_error:
            error = _classify_token_failure(response)
            logger.warning("Token endpoint returned %s (%s)", response.status_code, error.code.value)
            raise TokenEndpointError(error)

        try:
            return TokenResponse.model_validate(_json_or_none(response) or {})
        except ValidationError as exc:
            raise TokenEndpointError(
                create_error(ErrorCode.UNKNOWN, "Incomplete token payload returned from Azure AD.")
            ) from exc

    async def exchange_skype_token(self, bearer_token: str) -> SkypeToken:
        """Trade a Teams access token for ``skypetoken_asm``."""
        response = await request_with_retry(
            self._transport.post,
            self.AUTHSVC_URL,
            json={},
            headers={"Authorization": f"Bearer {bearer_token}"},
            timeout=self._timeout,
            retry_config=self._retry,
        )

        if response.is_error:
            code = classify_http_status(response.status_code)
            raise SkypeTokenExchangeError(
                create_error(
                    code,
                    f"Skype token exchange failed: HTTP {response.status_code}",
                    retry_after_ms=_retry_after_ms(response) if code is ErrorCode.RATE_LIMITED else None,
                )
            )

        tokens = (_json_or_none(response) or {}).get("tokens")
        skype_token = tokens.get("skypeToken") if isinstance(tokens, dict) else None
        if not isinstance(skype_token, str) or not skype_token:
            raise SkypeTokenExchangeError(
                create_error(ErrorCode.UNKNOWN, "Skype token exchange returned no token")
            )

        expires_in = tokens.get("expiresIn")
        if not isinstance(expires_in, (int, float)) or isinstance(expires_in, bool):
            expires_in = DEFAULT_SKYPE_TOKEN_LIFETIME_SECONDS
        return SkypeToken(skype_token=skype_token, expires_in=int(expires_in))


__all__ = [
    "AzureTokenClient",
    "EXPIRED_GRANT_ERRORS",
    "SkypeToken",
    "TokenResponse",
]
