"""Service layer exports."""

from .auth_guards import AuthGuard
from .auth_session import AuthService, LoginOutcome
from .session_store import SessionStore, resolve_config_dir
from .token_cipher import EncryptedBlob, TokenCipherService
from .token_extractor import TokenExtractor
from .token_refresh import BrowserRefreshStrategy, TokenRefreshOrchestrator, build_default_strategies
from .token_refresh_http import HttpRefreshResult, HttpRefreshStrategy

__all__ = [
    "AuthGuard",
    "AuthService",
    "BrowserRefreshStrategy",
    "EncryptedBlob",
    "HttpRefreshResult",
    "HttpRefreshStrategy",
    "LoginOutcome",
    "SessionStore",
    "TokenCipherService",
    "TokenExtractor",
    "TokenRefreshOrchestrator",
    "build_default_strategies",
    "resolve_config_dir",
]
