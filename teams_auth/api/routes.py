"""
FastAPI routes for session status, refresh, login and logout.
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Annotated, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from teams_auth.core.errors import AuthError, ErrorCode
from teams_auth.dependencies import get_auth_service, get_refresh_orchestrator
from teams_auth.schemas import LoginRequest
from teams_auth.services import AuthService, TokenRefreshOrchestrator

router = APIRouter()
logger = logging.getLogger(__name__)

_ERROR_STATUS = {
    ErrorCode.AUTH_REQUIRED: HTTPStatus.UNAUTHORIZED,
    ErrorCode.AUTH_EXPIRED: HTTPStatus.UNAUTHORIZED,
    ErrorCode.REFRESH_IN_PROGRESS: HTTPStatus.CONFLICT,
}


def _error_response(error: AuthError) -> JSONResponse:
    status_code = _ERROR_STATUS.get(error.code, HTTPStatus.BAD_GATEWAY)
    return JSONResponse(status_code=status_code, content={"error": error.to_dict()})


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck() -> dict:
    """Simple health endpoint for monitoring."""
    return {"status": "ok"}


@router.get("/auth/status", status_code=HTTPStatus.OK)
async def get_auth_status(
    service: Annotated[AuthService, Depends(get_auth_service)],
) -> dict:
    """Report session, token and refresh state."""
    return service.status()


@router.post("/auth/refresh", status_code=HTTPStatus.OK)
async def refresh_tokens(
    orchestrator: Annotated[TokenRefreshOrchestrator, Depends(get_refresh_orchestrator)],
):
    """Refresh the session tokens now."""
    result = await orchestrator.refresh()
    if not result.ok:
        logger.info("Refresh request failed: %s", result.error.code.value)
        return _error_response(result.error)
    return {"refreshed": True, "outcome": result.value.to_dict()}


@router.post("/auth/login", status_code=HTTPStatus.OK)
async def login(
    service: Annotated[AuthService, Depends(get_auth_service)],
    payload: Optional[LoginRequest] = None,
):
    """Sign in, reusing a valid session when possible."""
    force_new = payload.force_new if payload else False
    result = await service.login(force_new=force_new)
    if not result.ok:
        return _error_response(result.error)
    return result.value.to_dict()


@router.post("/auth/logout", status_code=HTTPStatus.OK)
async def logout(
    service: Annotated[AuthService, Depends(get_auth_service)],
) -> dict:
    """Delete the saved session and token summary."""
    service.logout()
    return {"status": "logged_out"}


__all__ = ["router"]
