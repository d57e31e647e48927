"""Schemas for the authentication endpoints."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class LoginRequest(BaseModel):
    """Body of ``POST /auth/login``."""

    model_config = ConfigDict(populate_by_name=True)

    force_new: bool = Field(
        False,
        alias="forceNew",
        description="Discard the saved session and sign in again even if it is still valid.",
    )


__all__ = ["LoginRequest"]
