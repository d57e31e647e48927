"""Helpers for reading claims out of tokens captured from our own session.

Signatures are not verified: the tokens were issued to this browser session
and are only inspected for expiry and identity claims.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

import jwt

from teams_auth.models.tokens import UserProfile

MRI_TYPE_PREFIX = "8:"
ORGID_PREFIX = "orgid:"
MRI_ORGID_PREFIX = f"{MRI_TYPE_PREFIX}{ORGID_PREFIX}"


def looks_like_jwt(value: Any) -> bool:
    return isinstance(value, str) and value.startswith("ey") and value.count(".") >= 2


def decode_jwt_payload(token: str) -> Optional[Dict[str, Any]]:
    """Return the payload claims, or ``None`` if the token cannot be decoded."""
    if not looks_like_jwt(token):
        return None
    try:
        payload = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError:
        return None
    return payload if isinstance(payload, dict) else None


def datetime_from_epoch(seconds: float) -> Optional[datetime]:
    """UTC datetime for epoch seconds, ``None`` when out of the platform's range."""
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def get_jwt_expiry(token: str) -> Optional[datetime]:
    payload = decode_jwt_payload(token)
    exp = payload.get("exp") if payload else None
    if not isinstance(exp, (int, float)) or isinstance(exp, bool):
        return None
    return datetime_from_epoch(exp)


def mri_from_skype_token(token: str) -> Optional[str]:
    """Build a full ``8:orgid:<guid>`` MRI from the ``skypeid`` claim."""
    payload = decode_jwt_payload(token)
    skype_id = payload.get("skypeid") if payload else None
    if not isinstance(skype_id, str):
        return None
    if skype_id.startswith(MRI_TYPE_PREFIX):
        return skype_id
    if skype_id.startswith(ORGID_PREFIX):
        return f"{MRI_TYPE_PREFIX}{skype_id}"
    return skype_id


def mri_from_oid(token: str) -> Optional[str]:
    payload = decode_jwt_payload(token)
    oid = payload.get("oid") if payload else None
    return f"{MRI_ORGID_PREFIX}{oid}" if isinstance(oid, str) else None


def parse_jwt_profile(payload: Dict[str, Any]) -> Optional[UserProfile]:
    """Build a user profile from identity claims.

    Given and family names come from their own claims when present; otherwise
    the display name is split as ``"Surname, Given"`` or ``"Given Surname"``.
    """
    oid = payload.get("oid")
    name = payload.get("name")
    if not isinstance(oid, str) or not oid or not isinstance(name, str) or not name:
        return None

    email = payload.get("upn") or payload.get("preferred_username") or payload.get("email") or ""
    given_name = payload.get("given_name") or None
    surname = payload.get("family_name") or None

    if not given_name:
        if "," in name:
            parts = [part.strip() for part in name.split(",")]
            if len(parts) == 2:
                surname, given_name = parts
        elif " " in name:
            first, _, rest = name.partition(" ")
            given_name, surname = first, rest

    tenant_id = payload.get("tid")
    return UserProfile(
        id=oid,
        mri=f"{MRI_ORGID_PREFIX}{oid}",
        email=str(email),
        display_name=name,
        tenant_id=tenant_id if isinstance(tenant_id, str) else None,
        given_name=given_name,
        surname=surname,
    )


__all__ = [
    "MRI_ORGID_PREFIX",
    "MRI_TYPE_PREFIX",
    "ORGID_PREFIX",
    "datetime_from_epoch",
    "decode_jwt_payload",
    "get_jwt_expiry",
    "looks_like_jwt",
    "mri_from_oid",
    "mri_from_skype_token",
    "parse_jwt_profile",
]
