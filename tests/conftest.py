"""Pytest configuration shared across the suite."""

try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover
    import _bootstrap  # type: ignore # noqa: F401

import pytest

from teams_auth.services.session_store import SessionStore
from teams_auth.services.token_cipher import TokenCipherService


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO-powered tests to run against asyncio backend only."""
    return "asyncio"


@pytest.fixture(scope="session")
def cipher() -> TokenCipherService:
    """Key derivation is slow; share one cipher per run."""
    return TokenCipherService(machine_id="test-host:test-user")


@pytest.fixture
def store(tmp_path, cipher) -> SessionStore:
    return SessionStore(tmp_path / "config", cipher, legacy_dir=tmp_path / "legacy")
