"""
Single-flight token refresh across an ordered list of strategies.

The fast path refreshes over HTTP; the slow path opens the persistent browser
profile headlessly so MSAL can silently re-acquire tokens from the profile's
long-lived sign-in cookies. Either way the result is judged by the expiry of
the Substrate token.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

from teams_auth.clients.browser import BrowserAutomation, BrowserHandle
from teams_auth.core.config import RefreshSettings
from teams_auth.core.errors import AuthError, ErrorCode, LOGIN_SUGGESTION, create_error
from teams_auth.core.result import Err, Ok, Result
from teams_auth.models.refresh import RefreshStrategy, StrategyResult, StrategyStatus
from teams_auth.models.resources import CANONICAL_RESOURCE
from teams_auth.models.tokens import RefreshMethod, RefreshOutcome, TokenInfo
from teams_auth.services.session_store import SessionStore
from teams_auth.services.token_extractor import TokenExtractor
from teams_auth.services.token_refresh_http import HttpRefreshStrategy

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _login_error(message: str) -> AuthError:
    return create_error(ErrorCode.AUTH_EXPIRED, message, suggestions=(LOGIN_SUGGESTION,))


class BrowserRefreshStrategy:
    """Let a headless browser refresh the session from the persistent profile."""

    name: RefreshMethod = "browser"

    def __init__(self, automation: BrowserAutomation, store: SessionStore) -> None:
        self._automation = automation
        self._store = store

    async def attempt(self) -> StrategyResult:
        handle: Optional[BrowserHandle] = None
        try:
            handle = await self._automation.open(headless=True)
            await self._automation.ensure_authenticated(
                handle.page,
                handle.context,
                lambda message: logger.info("[browser-refresh] %s", message),
                False,
                True,
            )
        except Exception as exc:
            logger.warning("Browser refresh failed: %s", exc)
            return StrategyResult(
                status=StrategyStatus.FAILED,
                method="browser",
                error=_login_error(f"Token refresh via browser failed: {exc}"),
            )
        finally:
            if handle is not None:
                try:
                    await self._automation.close(handle, save_session=False)
                except Exception as exc:
                    logger.warning("Failed to close browser after refresh: %s", exc)

        self._store.clear_token_cache()
        return StrategyResult(status=StrategyStatus.SUCCESS, method="browser")


def build_default_strategies(
    http: HttpRefreshStrategy,
    store: SessionStore,
    automation: Optional[BrowserAutomation] = None,
) -> List[RefreshStrategy]:
    """HTTP first, then the browser when an automation is available."""
    strategies: List[RefreshStrategy] = [http]
    if automation is not None:
        strategies.append(BrowserRefreshStrategy(automation, store))
    return strategies


class TokenRefreshOrchestrator:
    """Owns the process-wide refresh flag and runs strategies in order.

    A caller that arrives while a refresh is running gets a retryable
    ``REFRESH_IN_PROGRESS`` error straight away; calls are never queued.
    """

    def __init__(
        self,
        store: SessionStore,
        extractor: TokenExtractor,
        strategies: Sequence[RefreshStrategy],
        settings: RefreshSettings,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._extractor = extractor
        self._strategies = list(strategies)
        self._settings = settings
        self._clock = clock
        self._in_progress = False

    @property
    def in_progress(self) -> bool:
        return self._in_progress

    async def refresh(self) -> Result[RefreshOutcome]:
        if self._in_progress:
            return Err(
                create_error(
                    ErrorCode.REFRESH_IN_PROGRESS,
                    "Token refresh already in progress. Please wait and try again.",
                )
            )

        self._in_progress = True
        try:
            return await self._run()
        finally:
            self._in_progress = False

    async def _run(self) -> Result[RefreshOutcome]:
        state = self._store.read_session_state()
        if state is None:
            return Err(
                create_error(
                    ErrorCode.AUTH_REQUIRED,
                    "No session found. Please run the login flow to authenticate.",
                )
            )

        before = self._extractor.find_access_token(CANONICAL_RESOURCE, state, include_expired=True)
        started = self._clock()
        threshold_seconds = self._settings.refresh_threshold_minutes * 60
        refresh_needed = before is None or (before.expiry - started).total_seconds() < threshold_seconds

        if not self._strategies:
            return Err(create_error(ErrorCode.UNKNOWN, "No refresh strategy is configured."))

        last_error: Optional[AuthError] = None
        for strategy in self._strategies:
            result = await strategy.attempt()
            if result.status is StrategyStatus.FAILED:
                return Err(result.error or _login_error("Token refresh failed."))
            if result.status is StrategyStatus.ESCALATE:
                reason = result.error.message if result.error else "no detail"
                logger.info("Refresh via %s escalated: %s", result.method, reason)
                last_error = result.error
                continue

            self._store.clear_token_cache()
            after = self._extractor.find_access_token(CANONICAL_RESOURCE)
            if after is None:
                logger.warning(
                    "Refresh via %s left no valid %s token", result.method, CANONICAL_RESOURCE.name
                )
                last_error = _login_error(
                    f"Token refresh via {result.method} produced no valid token. "
                    "Session may need re-authentication."
                )
                continue
            return self._outcome(result, before, after, refresh_needed, started)

        return Err(last_error or _login_error("Token refresh failed."))

    def _outcome(
        self,
        result: StrategyResult,
        before: Optional[TokenInfo],
        after: TokenInfo,
        refresh_needed: bool,
        started: datetime,
    ) -> Result[RefreshOutcome]:
        previous_expiry = before.expiry if before else None
        canonical_refreshed = CANONICAL_RESOURCE.name not in result.failed_resources
        if not canonical_refreshed:
            logger.warning(
                "Refresh via %s did not renew the %s token; keeping the current one",
                result.method,
                CANONICAL_RESOURCE.name,
            )
        elif refresh_needed and previous_expiry is not None and after.expiry <= previous_expiry:
            return Err(
                _login_error(
                    "Token was not refreshed despite being close to expiry. "
                    "Session may need re-authentication."
                )
            )

        baseline = previous_expiry or started
        minutes_gained = round((after.expiry - baseline).total_seconds() / 60)
        logger.info(
            "Token refreshed via %s; expires %s (%+d min)",
            result.method,
            after.expiry.isoformat(),
            minutes_gained,
        )
        return Ok(
            RefreshOutcome(
                new_expiry=after.expiry,
                previous_expiry=previous_expiry,
                minutes_gained=minutes_gained,
                refresh_needed=refresh_needed,
                method=result.method,
                tokens_refreshed=result.tokens_refreshed,
                tokens_attempted=result.tokens_attempted,
                skype_token_refreshed=result.skype_token_refreshed,
                refresh_token_rotated=result.refresh_token_rotated,
                failed_resources=tuple(result.failed_resources),
            )
        )


__all__ = [
    "BrowserRefreshStrategy",
    "TokenRefreshOrchestrator",
    "build_default_strategies",
]
