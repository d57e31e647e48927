"""Expose dependency helpers for FastAPI routers."""

from .clients import (
    get_auth_guard,
    get_auth_service,
    get_azure_token_client,
    get_browser_automation,
    get_http_refresh_strategy,
    get_http_transport,
    get_refresh_orchestrator,
    get_session_store,
    get_token_cipher_service,
    get_token_extractor,
    set_browser_automation,
)

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
