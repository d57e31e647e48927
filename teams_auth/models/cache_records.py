"""
MSAL cache records stored as JSON strings in browser ``localStorage``.

Each decoder fails closed: any value that is not valid JSON, belongs to a
different credential type, or is missing required fields decodes to
``None`` so a scan over thousands of unrelated entries never raises.
"""

from __future__ import annotations

import json
import math
import time
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


def _as_epoch_string(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, float) and not math.isfinite(value):
        return value
    if isinstance(value, (int, float)):
        return str(int(value))
    return value


class RefreshTokenRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    credential_type: Literal["RefreshToken"] = Field("RefreshToken", alias="credentialType")
    home_account_id: str = Field("", alias="homeAccountId")
    environment: str = ""
    client_id: str = Field(..., alias="clientId", min_length=1)
    secret: str = Field(..., min_length=1)
    expires_on: Optional[str] = Field(None, alias="expiresOn", description="Epoch seconds.")
    last_updated_at: Optional[str] = Field(None, alias="lastUpdatedAt", description="Epoch ms.")

    @field_validator("expires_on", "last_updated_at", mode="before")
    @classmethod
    def _normalize_epochs(cls, value: Any) -> Any:
        return _as_epoch_string(value)

    def rotated(self, new_secret: str) -> "RefreshTokenRecord":
        """Return a copy carrying a new secret; identity fields are unchanged."""
        return self.model_copy(
            update={"secret": new_secret, "last_updated_at": str(int(time.time() * 1000))}
        )

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class AccessTokenRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    credential_type: Literal["AccessToken"] = Field("AccessToken", alias="credentialType")
    home_account_id: str = Field("", alias="homeAccountId")
    environment: str = ""
    client_id: str = Field("", alias="clientId")
    realm: str = ""
    target: str = Field(..., min_length=1)
    token_type: str = Field("Bearer", alias="tokenType")
    secret: str = Field(..., min_length=1)
    expires_on: Optional[str] = Field(None, alias="expiresOn", description="Epoch seconds.")
    extended_expires_on: Optional[str] = Field(None, alias="extendedExpiresOn")
    cached_at: Optional[str] = Field(None, alias="cachedAt")

    @field_validator("expires_on", "extended_expires_on", "cached_at", mode="before")
    @classmethod
    def _normalize_epochs(cls, value: Any) -> Any:
        return _as_epoch_string(value)

    @property
    def expires_on_seconds(self) -> Optional[int]:
        if not self.expires_on:
            return None
        try:
            return int(float(self.expires_on))
        except (ValueError, OverflowError):
            return None

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


CacheRecord = Union[RefreshTokenRecord, AccessTokenRecord]


def _load_object(raw: str) -> Optional[dict]:
    if not raw or raw[0] != "{":
        return None
    try:
        data = json.loads(raw)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def decode_refresh_token(raw: str) -> Optional[RefreshTokenRecord]:
    data = _load_object(raw)
    if data is None or data.get("credentialType") != "RefreshToken":
        return None
    try:
        return RefreshTokenRecord.model_validate(data)
    except ValidationError:
        return None


def decode_access_token(raw: str) -> Optional[AccessTokenRecord]:
    data = _load_object(raw)
    if data is None or data.get("credentialType") != "AccessToken":
        return None
    try:
        return AccessTokenRecord.model_validate(data)
    except ValidationError:
        return None


def decode_cache_record(raw: str) -> Optional[CacheRecord]:
    """Decode any supported record variant, or ``None``."""
    return decode_refresh_token(raw) or decode_access_token(raw)


def access_token_key(record: AccessTokenRecord) -> str:
    """Composite MSAL storage key derived from the record's identity fields."""
    return (
        f"{record.home_account_id}-{record.environment}-accesstoken-"
        f"{record.client_id}-{record.realm}-{record.target.lower()}"
    )


__all__ = [
    "AccessTokenRecord",
    "CacheRecord",
    "RefreshTokenRecord",
    "access_token_key",
    "decode_access_token",
    "decode_cache_record",
    "decode_refresh_token",
]
