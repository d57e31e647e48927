"""
Authentication guards for API callers.

Each guard returns a ``Result`` so callers can propagate the failure as-is.
The guard also owns the per-process region and tenant caches, which must be
cleared whenever the signed-in session changes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, TypeVar

from teams_auth.core.config import RefreshSettings
from teams_auth.core.errors import ErrorCode, LOGIN_SUGGESTION, create_error
from teams_auth.core.result import Err, Ok, Result
from teams_auth.models.resources import CANONICAL_RESOURCE
from teams_auth.models.tokens import MessageAuth, RegionConfig
from teams_auth.services.token_extractor import DEFAULT_TEAMS_BASE_URL, TokenExtractor
from teams_auth.services.token_refresh import TokenRefreshOrchestrator

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_REGION = "amer"

MESSAGE_AUTH_REQUIRED = (
    "ACTION REQUIRED: No valid Teams authentication. Run the login flow before retrying."
)
CSA_AUTH_REQUIRED = (
    "ACTION REQUIRED: No valid authentication for favourites. Run the login flow before retrying."
)
SUBSTRATE_EXPIRED = (
    "ACTION REQUIRED: Teams token expired and automatic refresh failed. "
    "Run the login flow to re-authenticate before retrying."
)
GRAPH_AUTH_REQUIRED = (
    "ACTION REQUIRED: No valid Microsoft Graph token. Run the login flow before retrying. "
    "The Graph token is acquired during token refresh."
)


@dataclass(frozen=True)
class CsaAuth:
    auth: MessageAuth
    csa_token: str


@dataclass(frozen=True)
class CalendarAuth:
    skype_token: str
    spaces_token: str


@dataclass(frozen=True)
class GraphAuth:
    graph_token: str


@dataclass(frozen=True)
class ApiConfig:
    region: str
    base_url: str


@dataclass(frozen=True)
class MessageAuthWithConfig:
    auth: MessageAuth
    region: str
    base_url: str


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuthGuard:
    def __init__(
        self,
        extractor: TokenExtractor,
        orchestrator: TokenRefreshOrchestrator,
        settings: RefreshSettings,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._extractor = extractor
        self._orchestrator = orchestrator
        self._settings = settings
        self._clock = clock
        self._region_config: Optional[RegionConfig] = None
        self._tenant_id: Optional[str] = None

    # ------------------------------------------------------------------
    # Token guards
    # ------------------------------------------------------------------

    def _should_refresh_substrate(self) -> bool:
        """True when a Substrate token exists but is expired or close to it."""
        current = self._extractor.find_access_token(CANONICAL_RESOURCE, include_expired=True)
        if current is None:
            return False
        remaining = (current.expiry - self._clock()).total_seconds() * 1000
        return remaining < self._settings.refresh_threshold_ms

    async def require_substrate_token(self) -> Result[str]:
        """Return a Substrate token, refreshing first when it is about to expire.

        A failed refresh is not fatal while the current token is still valid.
        """
        if self._should_refresh_substrate():
            refreshed = await self._orchestrator.refresh()
            if not refreshed.ok:
                logger.warning("Proactive refresh failed: %s", refreshed.error.message)

        token = self._extractor.get_valid_substrate_token()
        if token is None:
            return Err(create_error(ErrorCode.AUTH_EXPIRED, SUBSTRATE_EXPIRED))
        return Ok(token)

    def require_message_auth(self) -> Result[MessageAuth]:
        auth = self._extractor.extract_message_auth()
        if auth is None:
            return Err(create_error(ErrorCode.AUTH_REQUIRED, MESSAGE_AUTH_REQUIRED))
        return Ok(auth)

    def require_csa_auth(self) -> Result[CsaAuth]:
        auth = self._extractor.extract_message_auth()
        csa_token = self._extractor.extract_csa_token()
        if auth is None or not auth.skype_token or not csa_token:
            return Err(create_error(ErrorCode.AUTH_REQUIRED, CSA_AUTH_REQUIRED))
        return Ok(CsaAuth(auth=auth, csa_token=csa_token))

    def require_calendar_auth(self) -> Result[CalendarAuth]:
        auth = self._extractor.extract_message_auth()
        spaces_token = self._extractor.extract_spaces_token()
        if auth is None or not auth.skype_token or not spaces_token:
            return Err(
                create_error(
                    ErrorCode.AUTH_REQUIRED,
                    "Calendar access requires authentication. Please run the login flow.",
                    suggestions=(LOGIN_SUGGESTION,),
                )
            )
        return Ok(CalendarAuth(skype_token=auth.skype_token, spaces_token=spaces_token))

    def require_graph_auth(self) -> Result[GraphAuth]:
        graph_token = self._extractor.get_valid_graph_token()
        if not graph_token:
            return Err(create_error(ErrorCode.AUTH_REQUIRED, GRAPH_AUTH_REQUIRED))
        return Ok(GraphAuth(graph_token=graph_token))

    def require_message_auth_with_config(self) -> Result[MessageAuthWithConfig]:
        auth = self.require_message_auth()
        if not auth.ok:
            return auth
        config = self.get_api_config()
        return Ok(MessageAuthWithConfig(auth=auth.value, region=config.region, base_url=config.base_url))

    def handle_substrate_error(self, response: Result[T]) -> Result[T]:
        """Drop the token summary when an API call reports an expired token."""
        if not response.ok and response.error.code is ErrorCode.AUTH_EXPIRED:
            self._extractor.clear_token_cache()
        return response

    # ------------------------------------------------------------------
    # Region and tenant
    # ------------------------------------------------------------------

    def get_region_config(self) -> Optional[RegionConfig]:
        # Misses are not cached; a session may be written by another process.
        if self._region_config is None:
            self._region_config = self._extractor.extract_region_config()
        return self._region_config

    def get_region(self) -> str:
        config = self.get_region_config()
        return config.region if config else DEFAULT_REGION

    def get_teams_base_url(self) -> str:
        config = self.get_region_config()
        return config.teams_base_url if config else DEFAULT_TEAMS_BASE_URL

    def get_api_config(self) -> ApiConfig:
        return ApiConfig(region=self.get_region(), base_url=self.get_teams_base_url())

    def get_tenant_id(self) -> Optional[str]:
        if self._tenant_id is None:
            profile = self._extractor.get_user_profile()
            self._tenant_id = profile.tenant_id if profile else None
        return self._tenant_id

    def clear_region_cache(self) -> None:
        self._region_config = None
        self._tenant_id = None


__all__ = [
    "ApiConfig",
    "AuthGuard",
    "CalendarAuth",
    "CsaAuth",
    "DEFAULT_REGION",
    "GraphAuth",
    "MessageAuthWithConfig",
]
