"""
Browserless token refresh.

The MSAL refresh token cached in the Teams origin is traded for a fresh
access token per tracked resource, the cache records are rewritten in place,
and the Skype identity cookies are re-derived. A refresh token works the same
whether the user originally signed in directly or through a federated IdP,
so only the very first login needs a browser.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple
from urllib.parse import quote

from teams_auth.clients.azure_ad import AzureTokenClient, SkypeToken, TokenResponse
from teams_auth.core.config import RefreshSettings
from teams_auth.core.errors import AuthCoreError, ErrorCode, create_error
from teams_auth.core.result import Err, Ok, Result
from teams_auth.models.cache_records import (
    AccessTokenRecord,
    RefreshTokenRecord,
    access_token_key,
    decode_access_token,
    decode_refresh_token,
)
from teams_auth.models.resources import (
    CHAT_AGGREGATOR,
    RESOURCES_BY_NAME,
    SPACES,
    TRACKED_RESOURCES,
    ResourceScope,
)
from teams_auth.models.refresh import StrategyResult, StrategyStatus
from teams_auth.models.session import Cookie, Origin, SessionDocument, StorageEntry
from teams_auth.models.tokens import RefreshMethod
from teams_auth.services.session_store import SessionStore
from teams_auth.services.token_extractor import AUTH_TOKEN_COOKIE, SKYPE_TOKEN_COOKIE

logger = logging.getLogger(__name__)

SKYPE_TOKEN_DOMAINS = (".asyncgw.teams.microsoft.com", ".asm.skype.com")
AUTH_TOKEN_DOMAIN = "teams.microsoft.com"
DEFAULT_AUTH_TOKEN_LIFETIME_SECONDS = 3600


@dataclass(frozen=True)
class MsalCacheInfo:
    """Where the refresh token lives and which tenant it was issued for."""

    origin: Origin
    entry: StorageEntry
    record: RefreshTokenRecord
    tenant_id: str


@dataclass(frozen=True)
class ScopeRefresh:
    resource: ResourceScope
    result: Result[TokenResponse]


@dataclass(frozen=True)
class HttpRefreshResult:
    tokens_refreshed: int
    tokens_attempted: int
    skype_token_refreshed: bool
    refresh_token_rotated: bool
    failed_resources: Tuple[str, ...] = ()


def locate_msal_cache(state: SessionDocument) -> Optional[MsalCacheInfo]:
    """Find the refresh token and tenant id in the Teams origin."""
    origin = state.teams_origin()
    if origin is None:
        return None

    refresh: Optional[Tuple[StorageEntry, RefreshTokenRecord]] = None
    tenant_id: Optional[str] = None
    for entry in origin.entries:
        record = decode_refresh_token(entry.value)
        if record is not None:
            refresh = (entry, record)
            continue
        access = decode_access_token(entry.value)
        if access is not None and access.realm and tenant_id is None:
            tenant_id = access.realm

    if refresh is None or tenant_id is None:
        return None
    entry, record = refresh
    return MsalCacheInfo(origin=origin, entry=entry, record=record, tenant_id=tenant_id)


class HttpRefreshStrategy:
    """Refresh every tracked resource through the Azure AD token endpoint."""

    name: RefreshMethod = "http"

    def __init__(
        self,
        store: SessionStore,
        client: AzureTokenClient,
        settings: RefreshSettings,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._client = client
        self._settings = settings
        self._clock = clock

    async def refresh(self) -> Result[HttpRefreshResult]:
        state = self._store.read_session_state()
        if state is None:
            return Err(
                create_error(
                    ErrorCode.AUTH_REQUIRED,
                    "No session state found. Browser login is required for first authentication.",
                )
            )

        cache_info = locate_msal_cache(state)
        if cache_info is None:
            return Err(
                create_error(
                    ErrorCode.AUTH_REQUIRED,
                    "No MSAL refresh token found in session state. Browser login is required.",
                )
            )

        scope_results = await self._refresh_all(cache_info)

        expired = [
            item
            for item in scope_results
            if not item.result.ok and item.result.error.code is ErrorCode.AUTH_EXPIRED
        ]
        if expired:
            first = expired[0]
            return Err(
                create_error(
                    ErrorCode.AUTH_EXPIRED,
                    f"HTTP token refresh failed for {first.resource.name}: "
                    f"{first.result.error.message}. Browser login required.",
                )
            )

        succeeded = [item for item in scope_results if item.result.ok]
        failed = tuple(item.resource.name for item in scope_results if not item.result.ok)
        if not succeeded:
            return Err(
                create_error(
                    ErrorCode.UNKNOWN,
                    "HTTP token refresh failed: no tokens were successfully refreshed.",
                    retryable=True,
                )
            )

        for item in succeeded:
            self._store_access_token(cache_info, item.resource, item.result.value)

        rotated = self._rotate_refresh_token(cache_info, succeeded)
        skype_refreshed = await self._refresh_skype_cookies(state, succeeded)

        try:
            self._store.write_session_state(state)
        except OSError as exc:
            logger.error("Failed to persist refreshed session: %s", exc)
            return Err(create_error(ErrorCode.UNKNOWN, f"Could not save refreshed session: {exc}"))
        self._store.clear_token_cache()

        logger.info(
            "HTTP refresh complete: %s/%s tokens, skype=%s, rotated=%s",
            len(succeeded),
            len(scope_results),
            skype_refreshed,
            rotated,
        )
        return Ok(
            HttpRefreshResult(
                tokens_refreshed=len(succeeded),
                tokens_attempted=len(scope_results),
                skype_token_refreshed=skype_refreshed,
                refresh_token_rotated=rotated,
                failed_resources=failed,
            )
        )

    async def attempt(self) -> StrategyResult:
        """Run the refresh; every failure escalates to the next strategy."""
        result = await self.refresh()
        if not result.ok:
            return StrategyResult(status=StrategyStatus.ESCALATE, method="http", error=result.error)
        detail = result.value
        return StrategyResult(
            status=StrategyStatus.SUCCESS,
            method="http",
            tokens_refreshed=detail.tokens_refreshed,
            tokens_attempted=detail.tokens_attempted,
            skype_token_refreshed=detail.skype_token_refreshed,
            refresh_token_rotated=detail.refresh_token_rotated,
            failed_resources=detail.failed_resources,
        )

    async def _refresh_scope(self, cache_info: MsalCacheInfo, resource: ResourceScope) -> ScopeRefresh:
        try:
            response = await self._client.refresh_access_token(
                cache_info.tenant_id,
                cache_info.record.client_id,
                cache_info.record.secret,
                resource.refresh_scopes,
            )
        except AuthCoreError as exc:
            logger.warning("Failed to refresh %s: %s", resource.name, exc.error.message)
            return ScopeRefresh(resource=resource, result=Err(exc.error))
        return ScopeRefresh(resource=resource, result=Ok(response))

    async def _refresh_all(self, cache_info: MsalCacheInfo) -> List[ScopeRefresh]:
        outcomes = await asyncio.gather(
            *(self._refresh_scope(cache_info, resource) for resource in TRACKED_RESOURCES),
            return_exceptions=True,
        )
        results: List[ScopeRefresh] = []
        for resource, outcome in zip(TRACKED_RESOURCES, outcomes):
            if isinstance(outcome, ScopeRefresh):
                results.append(outcome)
                continue
            if not isinstance(outcome, Exception):
                raise outcome
            logger.warning("Unexpected error refreshing %s: %s", resource.name, outcome)
            results.append(
                ScopeRefresh(
                    resource=resource,
                    result=Err(create_error(ErrorCode.UNKNOWN, f"Unexpected error: {outcome}")),
                )
            )
        return results

    # ------------------------------------------------------------------
    # Session document mutation
    # ------------------------------------------------------------------

    def _store_access_token(
        self,
        cache_info: MsalCacheInfo,
        resource: ResourceScope,
        response: TokenResponse,
    ) -> None:
        """Rewrite the resource's access-token record, creating it if absent.

        Existing records keep their ``target`` so their storage key stays
        consistent with the record. The record the extractor would select for
        the resource is preferred over any other record on the same host.
        """
        now = int(self._clock())
        expiry_fields = {
            "secret": response.access_token,
            "expires_on": str(now + response.expires_in),
            "extended_expires_on": str(now + (response.ext_expires_in or response.expires_in)),
            "cached_at": str(now),
        }

        origin = cache_info.origin
        candidates = [
            (entry, record)
            for entry, record in (
                (entry, decode_access_token(entry.value)) for entry in origin.entries
            )
            if record is not None and resource.matches_host(record.target)
        ]
        exact = [item for item in candidates if resource.matches(item[1].target)]
        for entry, existing in (exact or candidates)[:1]:
            entry.value = existing.model_copy(update=expiry_fields).to_json()
            return

        refresh = cache_info.record
        record = AccessTokenRecord(
            home_account_id=refresh.home_account_id,
            environment=refresh.environment,
            client_id=refresh.client_id,
            realm=cache_info.tenant_id,
            target=response.scope or resource.refresh_scopes,
            token_type=response.token_type or "Bearer",
            **expiry_fields,
        )
        origin.set_entry(access_token_key(record), record.to_json())

    def _rotate_refresh_token(self, cache_info: MsalCacheInfo, succeeded: List[ScopeRefresh]) -> bool:
        """Store the first new refresh token returned, in tracked-resource order."""
        current = cache_info.record.secret
        for item in succeeded:
            new_secret = item.result.value.refresh_token
            if new_secret and new_secret != current:
                cache_info.entry.value = cache_info.record.rotated(new_secret).to_json()
                return True
        return False

    async def _refresh_skype_cookies(self, state: SessionDocument, succeeded: List[ScopeRefresh]) -> bool:
        tokens = {item.resource.name: item.result.value for item in succeeded}
        exchange_resource = RESOURCES_BY_NAME.get(self._settings.skype_exchange_resource, SPACES)
        bearer = tokens.get(exchange_resource.name)
        if bearer is None:
            logger.info("No fresh %s token; skipping Skype token exchange", exchange_resource.name)
            return False

        try:
            skype = await self._client.exchange_skype_token(bearer.access_token)
        except AuthCoreError as exc:
            logger.warning("Skype token exchange failed: %s", exc.error.message)
            return False

        self._update_skype_token_cookies(state, skype)
        spaces = tokens.get(SPACES.name) or tokens.get(CHAT_AGGREGATOR.name)
        if spaces is not None:
            self._update_auth_token_cookie(state, spaces)
        return True

    def _update_skype_token_cookies(self, state: SessionDocument, skype: SkypeToken) -> None:
        """Give every ``skypetoken_asm`` cookie the same new value."""
        expires_at = self._clock() + skype.expires_in
        for index, cookie in enumerate(state.cookies):
            if cookie.name == SKYPE_TOKEN_COOKIE:
                state.cookies[index] = cookie.model_copy(
                    update={"value": skype.skype_token, "expires_at": expires_at}
                )

        present = {cookie.domain for cookie in state.cookies_named(SKYPE_TOKEN_COOKIE)}
        for domain in SKYPE_TOKEN_DOMAINS:
            if domain in present:
                continue
            state.upsert_cookie(
                Cookie(
                    name=SKYPE_TOKEN_COOKIE,
                    value=skype.skype_token,
                    domain=domain,
                    path="/",
                    expires_at=expires_at,
                    http_only=True,
                    secure=True,
                    same_site="None",
                )
            )

    def _update_auth_token_cookie(self, state: SessionDocument, token: TokenResponse) -> None:
        state.upsert_cookie(
            Cookie(
                name=AUTH_TOKEN_COOKIE,
                value=f"Bearer%3D{quote(token.access_token, safe='')}",
                domain=AUTH_TOKEN_DOMAIN,
                path="/",
                expires_at=self._clock() + (token.expires_in or DEFAULT_AUTH_TOKEN_LIFETIME_SECONDS),
                http_only=False,
                secure=True,
                same_site="None",
            )
        )


__all__ = [
    "HttpRefreshResult",
    "HttpRefreshStrategy",
    "MsalCacheInfo",
    "ScopeRefresh",
    "locate_msal_cache",
]
