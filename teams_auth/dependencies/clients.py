"""
Factory functions to provide shared clients and services as FastAPI dependencies.
"""

from functools import lru_cache
from typing import Optional

import httpx

from teams_auth.clients import AzureTokenClient, BrowserAutomation
from teams_auth.core.config import get_settings
from teams_auth.services import (
    AuthGuard,
    AuthService,
    HttpRefreshStrategy,
    SessionStore,
    TokenCipherService,
    TokenExtractor,
    TokenRefreshOrchestrator,
    build_default_strategies,
    resolve_config_dir,
)

_browser_automation: Optional[BrowserAutomation] = None


@lru_cache()
def _settings():
    """Internal helper to cache settings for client factories."""
    return get_settings()


@lru_cache()
def get_token_cipher_service() -> TokenCipherService:
    """Provide the machine-bound cipher for files at rest."""
    return TokenCipherService()


@lru_cache()
def get_session_store() -> SessionStore:
    """Provide the encrypted session store."""
    storage = _settings().storage
    return SessionStore(
        storage.config_dir or resolve_config_dir(),
        get_token_cipher_service(),
        session_expiry_hours=storage.session_expiry_hours,
    )


@lru_cache()
def get_token_extractor() -> TokenExtractor:
    return TokenExtractor(get_session_store())


@lru_cache()
def get_http_transport() -> httpx.AsyncClient:
    """Shared outbound HTTP client; closed by the application lifespan."""
    return httpx.AsyncClient(timeout=_settings().refresh.http_timeout_seconds)


@lru_cache()
def get_azure_token_client() -> AzureTokenClient:
    return AzureTokenClient(get_http_transport(), _settings().refresh)


@lru_cache()
def get_http_refresh_strategy() -> HttpRefreshStrategy:
    return HttpRefreshStrategy(get_session_store(), get_azure_token_client(), _settings().refresh)


def get_browser_automation() -> Optional[BrowserAutomation]:
    """Return the registered browser collaborator, if any."""
    return _browser_automation


@lru_cache()
def get_refresh_orchestrator() -> TokenRefreshOrchestrator:
    """Provide the process-wide orchestrator that owns the refresh flag."""
    store = get_session_store()
    strategies = build_default_strategies(
        get_http_refresh_strategy(),
        store,
        get_browser_automation(),
    )
    return TokenRefreshOrchestrator(store, get_token_extractor(), strategies, _settings().refresh)


@lru_cache()
def get_auth_guard() -> AuthGuard:
    return AuthGuard(get_token_extractor(), get_refresh_orchestrator(), _settings().refresh)


@lru_cache()
def get_auth_service() -> AuthService:
    return AuthService(
        store=get_session_store(),
        extractor=get_token_extractor(),
        guard=get_auth_guard(),
        orchestrator=get_refresh_orchestrator(),
        settings=_settings().refresh,
        automation=get_browser_automation(),
    )


def set_browser_automation(automation: Optional[BrowserAutomation]) -> None:
    """Register the browser collaborator and rebuild the services that use it."""
    global _browser_automation
    _browser_automation = automation
    get_auth_service.cache_clear()
    get_auth_guard.cache_clear()
    get_refresh_orchestrator.cache_clear()


__all__ = [
    "get_auth_guard",
    "get_auth_service",
    "get_azure_token_client",
    "get_browser_automation",
    "get_http_refresh_strategy",
    "get_http_transport",
    "get_refresh_orchestrator",
    "get_session_store",
    "get_token_cipher_service",
    "get_token_extractor",
    "set_browser_automation",
]
