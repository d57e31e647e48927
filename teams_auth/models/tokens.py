"""Values derived from the session document and returned to callers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal, Optional, Tuple


@dataclass(frozen=True)
class TokenInfo:
    token: str
    expiry: datetime

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        return self.expiry > (now or datetime.now(timezone.utc))


@dataclass(frozen=True)
class TeamsTokenInfo:
    token: str
    expiry: datetime
    user_mri: str


@dataclass(frozen=True)
class MessageAuth:
    """Cookie-based credentials used by the messaging APIs."""

    skype_token: str
    auth_token: str
    user_mri: str


@dataclass(frozen=True)
class UserProfile:
    id: str
    mri: str
    email: str
    display_name: str
    tenant_id: Optional[str] = None
    given_name: Optional[str] = None
    surname: Optional[str] = None


@dataclass(frozen=True)
class UserLicenses:
    is_freemium: bool = False
    is_trial: bool = False
    is_teams_enabled: bool = False
    is_copilot: bool = False
    is_transcript_enabled: bool = False
    is_frontline: bool = False


@dataclass(frozen=True)
class UserDetails:
    mri: str
    region: str
    user_partition: str
    tenant_partition: str
    licenses: UserLicenses = field(default_factory=UserLicenses)


@dataclass(frozen=True)
class RegionConfig:
    """Serving region derived from the discovery configuration."""

    region: str
    partition: str
    region_partition: str
    has_partition: bool
    middle_tier_url: str
    chat_service_url: str
    csa_service_url: str
    teams_base_url: str


@dataclass(frozen=True)
class TokenStatus:
    has_token: bool
    expires_at: Optional[datetime] = None
    minutes_remaining: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "available": self.has_token,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
            "minutesRemaining": self.minutes_remaining,
        }


RefreshMethod = Literal["http", "browser"]


@dataclass(frozen=True)
class RefreshOutcome:
    """Result of a successful refresh, measured on the canonical resource."""

    new_expiry: datetime
    previous_expiry: Optional[datetime]
    minutes_gained: int
    refresh_needed: bool
    method: RefreshMethod
    tokens_refreshed: int = 0
    tokens_attempted: int = 0
    skype_token_refreshed: bool = False
    refresh_token_rotated: bool = False
    failed_resources: Tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "newExpiry": self.new_expiry.isoformat(),
            "previousExpiry": self.previous_expiry.isoformat() if self.previous_expiry else None,
            "minutesGained": self.minutes_gained,
            "refreshNeeded": self.refresh_needed,
            "method": self.method,
            "tokensRefreshed": self.tokens_refreshed,
            "tokensAttempted": self.tokens_attempted,
            "skypeTokenRefreshed": self.skype_token_refreshed,
            "refreshTokenRotated": self.refresh_token_rotated,
            "failedResources": list(self.failed_resources),
        }


__all__ = [
    "MessageAuth",
    "RefreshMethod",
    "RefreshOutcome",
    "RegionConfig",
    "TeamsTokenInfo",
    "TokenInfo",
    "TokenStatus",
    "UserDetails",
    "UserLicenses",
    "UserProfile",
]
