"""
FastAPI application entrypoint for the Teams session service.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from teams_auth.api.routes import router as api_router
from teams_auth.core.config import get_settings
from teams_auth.core.logging import configure_logging
from teams_auth.dependencies import get_http_transport


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Close the shared HTTP client when the application stops."""
    try:
        yield
    finally:
        await get_http_transport().aclose()
        get_http_transport.cache_clear()


def create_app() -> FastAPI:
    """Factory for the FastAPI application."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Teams Session Service",
        version="0.1.0",
        description="Token lifecycle and secure session persistence for Microsoft Teams.",
        lifespan=lifespan,
    )
    app.include_router(api_router, prefix="/api")
    return app


app = create_app()

__all__ = ["app", "create_app"]
