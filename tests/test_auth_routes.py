try:
    from . import _bootstrap  # noqa: F401
    from ._factories import full_session
    from ._fakes import BlockingStrategy, FakeBrowserAutomation, StubStrategy
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401
    from _factories import full_session  # type: ignore
    from _fakes import BlockingStrategy, FakeBrowserAutomation, StubStrategy  # type: ignore

import asyncio

import httpx
import pytest

from teams_auth.core.config import RefreshSettings
from teams_auth.core.errors import ErrorCode, create_error
from teams_auth.main import app
from teams_auth.models.refresh import StrategyStatus
from teams_auth.services.auth_guards import AuthGuard
from teams_auth.services.auth_session import AuthService
from teams_auth.services.token_extractor import TokenExtractor
from teams_auth.services.token_refresh import TokenRefreshOrchestrator

pytestmark = pytest.mark.anyio("asyncio")


class Wiring:
    """Services built over a temporary store, swapped in per test."""

    def __init__(self, store) -> None:
        self.store = store
        self.settings = RefreshSettings()
        self.extractor = TokenExtractor(store)
        self.automation = None
        self.use([])

    def use(self, strategies, automation=None) -> None:
        self.automation = automation
        self.orchestrator = TokenRefreshOrchestrator(self.store, self.extractor, strategies, self.settings)
        guard = AuthGuard(self.extractor, self.orchestrator, self.settings)
        self.service = AuthService(
            self.store, self.extractor, guard, self.orchestrator, self.settings, automation
        )


@pytest.fixture()
def wiring(store):
    from teams_auth import dependencies

    wired = Wiring(store)
    app.dependency_overrides.clear()
    app.dependency_overrides.update(
        {
            dependencies.get_auth_service: lambda: wired.service,
            dependencies.get_refresh_orchestrator: lambda: wired.orchestrator,
        }
    )

    yield wired

    app.dependency_overrides.clear()


@pytest.fixture()
async def client(wiring):
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://testserver",
    ) as test_client:
        yield test_client


async def test_health(client):
    response = await client.get("/api/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


async def test_status_reports_missing_session(client):
    response = await client.get("/api/auth/status")

    assert response.status_code == 200
    body = response.json()
    assert body["session"]["exists"] is False
    assert body["directApi"]["available"] is False


async def test_refresh_without_session_is_unauthorized(client):
    response = await client.post("/api/auth/refresh")

    assert response.status_code == 401
    error = response.json()["error"]
    assert error["code"] == ErrorCode.AUTH_REQUIRED.value
    assert error["suggestions"]


async def test_refresh_success(wiring, client):
    wiring.store.write_session_state(full_session(expires_in=120))
    wiring.use(
        [
            StubStrategy(
                "http",
                StrategyStatus.SUCCESS,
                on_attempt=lambda: wiring.store.write_session_state(full_session(expires_in=3600)),
                tokens_refreshed=4,
                tokens_attempted=4,
            )
        ]
    )

    response = await client.post("/api/auth/refresh")

    assert response.status_code == 200
    body = response.json()
    assert body["refreshed"] is True
    assert body["outcome"]["method"] == "http"
    assert body["outcome"]["refreshNeeded"] is True
    assert body["outcome"]["tokensRefreshed"] == 4


async def test_concurrent_refresh_is_conflict(wiring, client):
    wiring.store.write_session_state(full_session())
    strategy = BlockingStrategy("http", StrategyStatus.SUCCESS)
    wiring.use([strategy])

    first = asyncio.create_task(client.post("/api/auth/refresh"))
    await strategy.started.wait()
    second = await client.post("/api/auth/refresh")
    strategy.release.set()
    await first

    assert second.status_code == 409
    assert second.json()["error"]["retryable"] is True


async def test_upstream_failure_is_bad_gateway(wiring, client):
    wiring.store.write_session_state(full_session())
    wiring.use(
        [
            StubStrategy(
                "http",
                StrategyStatus.ESCALATE,
                error=create_error(ErrorCode.RATE_LIMITED, "slow down", retry_after_ms=5000),
            )
        ]
    )

    response = await client.post("/api/auth/refresh")

    assert response.status_code == 502
    assert response.json()["error"]["retryAfterMs"] == 5000


async def test_login_reuses_valid_session(wiring, client):
    wiring.store.write_session_state(full_session(expires_in=3600))

    response = await client.post("/api/auth/login")

    assert response.status_code == 200
    assert response.json()["method"] == "cached"


async def test_login_force_new_opens_visible_browser(wiring, client):
    wiring.store.write_session_state(full_session(expires_in=3600))
    automation = FakeBrowserAutomation()
    wiring.use([], automation)

    response = await client.post("/api/auth/login", json={"forceNew": True})

    assert response.status_code == 200
    assert response.json()["method"] == "interactive"
    assert automation.opened == [False]


async def test_login_without_browser_is_unauthorized(client):
    response = await client.post("/api/auth/login")

    assert response.status_code == 401
    assert response.json()["error"]["code"] == ErrorCode.AUTH_REQUIRED.value


async def test_logout(wiring, client):
    wiring.store.write_session_state(full_session())

    response = await client.post("/api/auth/logout")

    assert response.status_code == 200
    assert response.json() == {"status": "logged_out"}
    assert wiring.store.has_session_state() is False
