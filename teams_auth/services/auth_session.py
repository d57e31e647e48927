"""
Login, logout and status for the persisted Teams session.

Login prefers the cheapest route that works: a still-valid token needs no
browser at all; otherwise a headless browser can often complete SSO from the
profile's long-lived cookies, and only then is a visible window opened.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Literal, Optional

from teams_auth.clients.browser import BrowserAutomation, BrowserHandle
from teams_auth.core.config import RefreshSettings
from teams_auth.core.errors import ErrorCode, LOGIN_SUGGESTION, create_error
from teams_auth.core.result import Err, Ok, Result
from teams_auth.models.tokens import TokenStatus
from teams_auth.services.auth_guards import AuthGuard
from teams_auth.services.session_store import SessionStore
from teams_auth.services.token_extractor import TokenExtractor
from teams_auth.services.token_refresh import TokenRefreshOrchestrator

logger = logging.getLogger(__name__)

LoginMethod = Literal["cached", "headless", "interactive"]


@dataclass(frozen=True)
class LoginOutcome:
    message: str
    method: LoginMethod
    token_status: Optional[TokenStatus] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"message": self.message, "method": self.method}
        if self.token_status is not None:
            payload["tokenStatus"] = self.token_status.to_dict()
        return payload


class AuthService:
    def __init__(
        self,
        store: SessionStore,
        extractor: TokenExtractor,
        guard: AuthGuard,
        orchestrator: TokenRefreshOrchestrator,
        settings: RefreshSettings,
        automation: Optional[BrowserAutomation] = None,
    ) -> None:
        self._store = store
        self._extractor = extractor
        self._guard = guard
        self._orchestrator = orchestrator
        self._settings = settings
        self._automation = automation

    def status(self) -> Dict[str, Any]:
        state = self._store.read_session_state()
        substrate = self._extractor.get_substrate_token_status(state) if state else TokenStatus(False)
        messaging = self._extractor.get_message_auth_status(state) if state else TokenStatus(False)
        favourites = bool(
            state
            and self._extractor.extract_message_auth(state)
            and self._extractor.extract_csa_token(state)
        )
        return {
            "directApi": substrate.to_dict(),
            "messaging": messaging.to_dict(),
            "favorites": {"available": favourites},
            "session": {
                "exists": self._store.has_session_state(),
                "likelyExpired": self._store.is_session_likely_expired(),
                "ageHours": self._store.get_session_age_hours(),
            },
            "refresh": {"inProgress": self._orchestrator.in_progress},
            "browser": {"available": self._automation is not None},
        }

    async def login(self, force_new: bool = False) -> Result[LoginOutcome]:
        if force_new:
            self._store.clear_session_state()
            self._extractor.clear_token_cache()
        else:
            token_status = self._extractor.get_substrate_token_status()
            minutes = token_status.minutes_remaining
            if (
                token_status.has_token
                and minutes is not None
                and minutes >= self._settings.refresh_threshold_minutes
            ):
                return Ok(
                    LoginOutcome(
                        message=f"Already authenticated. Token valid for {minutes} more minutes.",
                        method="cached",
                        token_status=token_status,
                    )
                )

        if self._automation is None:
            return Err(
                create_error(
                    ErrorCode.AUTH_REQUIRED,
                    "Login needs a browser, but no browser automation is configured.",
                    suggestions=("Register a browser automation before calling login",),
                )
            )

        if not force_new and await self._try_headless(self._automation):
            self._session_changed()
            return Ok(
                LoginOutcome(
                    message="Login completed silently via SSO. Session has been saved.",
                    method="headless",
                )
            )

        try:
            await self._interactive(self._automation)
        except Exception as exc:
            logger.error("Interactive login failed: %s", exc)
            return Err(
                create_error(
                    ErrorCode.BROWSER_ERROR,
                    f"Login failed: {exc}",
                    suggestions=(LOGIN_SUGGESTION,),
                )
            )

        self._session_changed()
        return Ok(
            LoginOutcome(message="Login completed successfully. Session has been saved.", method="interactive")
        )

    async def _try_headless(self, automation: BrowserAutomation) -> bool:
        handle: Optional[BrowserHandle] = None
        try:
            handle = await automation.open(headless=True)
            await automation.ensure_authenticated(
                handle.page,
                handle.context,
                lambda message: logger.info("[login:headless] %s", message),
                False,
                True,
            )
        except Exception as exc:
            logger.info("Headless SSO failed, falling back to a visible browser: %s", exc)
            if handle is not None:
                try:
                    await automation.close(handle, save_session=False)
                except Exception as close_exc:
                    logger.warning("Failed to close headless browser: %s", close_exc)
            return False

        try:
            await automation.close(handle, save_session=True)
        except Exception as exc:
            logger.warning("Failed to close headless browser: %s", exc)
        return True

    async def _interactive(self, automation: BrowserAutomation) -> None:
        handle = await automation.open(headless=False)
        try:
            await automation.ensure_authenticated(
                handle.page,
                handle.context,
                lambda message: logger.info("[login] %s", message),
                True,
                False,
            )
        except Exception:
            try:
                await automation.close(handle, save_session=True)
            except Exception as close_exc:
                logger.warning("Failed to close browser after failed login: %s", close_exc)
            raise
        # The session is only persisted by a successful close.
        await automation.close(handle, save_session=True)

    def logout(self) -> None:
        self._store.clear_session_state()
        self._extractor.clear_token_cache()
        self._guard.clear_region_cache()
        logger.info("Session cleared")

    def _session_changed(self) -> None:
        self._extractor.clear_token_cache()
        self._guard.clear_region_cache()


__all__ = ["AuthService", "LoginMethod", "LoginOutcome"]
