"""
Domain models for the persisted browser session.

The wire format is the browser storage-state JSON: a list of cookies and a
list of origins, each origin holding its ``localStorage`` entries.
"""

from __future__ import annotations

from typing import Iterator, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

TEAMS_ORIGINS = (
    "https://teams.microsoft.com",
    "https://teams.microsoft.us",
    "https://dod.teams.microsoft.us",
    "https://teams.cloud.microsoft",
)


class Cookie(BaseModel):
    """A browser cookie. Name is not unique; the same name may exist per domain."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: str
    value: str
    domain: Optional[str] = None
    path: Optional[str] = None
    expires_at: Optional[float] = Field(None, alias="expires")
    http_only: bool = Field(False, alias="httpOnly")
    secure: bool = False
    same_site: Optional[str] = Field(None, alias="sameSite")


class StorageEntry(BaseModel):
    """A single ``localStorage`` key/value pair."""

    model_config = ConfigDict(extra="allow")

    name: str
    value: str


class Origin(BaseModel):
    """A browser storage partition keyed by origin URL."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    origin: str
    entries: List[StorageEntry] = Field(default_factory=list, alias="localStorage")

    def get_entry(self, name: str) -> Optional[StorageEntry]:
        for entry in self.entries:
            if entry.name == name:
                return entry
        return None

    def set_entry(self, name: str, value: str) -> None:
        """Replace an entry's value in place, or append a new entry."""
        existing = self.get_entry(name)
        if existing is not None:
            existing.value = value
        else:
            self.entries.append(StorageEntry(name=name, value=value))


class SessionDocument(BaseModel):
    """The persisted browser session."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    cookies: List[Cookie] = Field(default_factory=list)
    origins: List[Origin] = Field(default_factory=list)

    def teams_origin(self) -> Optional[Origin]:
        """Return the Teams origin, checking commercial and government clouds."""
        by_url = {origin.origin: origin for origin in self.origins}
        for known in TEAMS_ORIGINS:
            if known in by_url:
                return by_url[known]
        for origin in self.origins:
            if "teams.microsoft" in origin.origin or "teams.cloud" in origin.origin:
                return origin
        return None

    def iter_entries(self) -> Iterator[Tuple[Origin, StorageEntry]]:
        for origin in self.origins:
            for entry in origin.entries:
                yield origin, entry

    def cookies_named(self, name: str) -> List[Cookie]:
        return [cookie for cookie in self.cookies if cookie.name == name]

    def upsert_cookie(self, cookie: Cookie) -> None:
        """Replace the cookie with the same name and domain, or append it."""
        for index, existing in enumerate(self.cookies):
            if existing.name == cookie.name and existing.domain == cookie.domain:
                self.cookies[index] = cookie
                return
        self.cookies.append(cookie)

    def to_storage_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class TokenCacheSummary(BaseModel):
    """Fast-path cache of the Substrate token, derived from the session document."""

    model_config = ConfigDict(populate_by_name=True)

    substrate_token: str = Field(..., alias="substrateToken")
    substrate_token_expiry: int = Field(..., alias="substrateTokenExpiry", description="Epoch ms.")
    extracted_at: int = Field(..., alias="extractedAt", description="Epoch ms.")

    def to_storage_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


__all__ = [
    "Cookie",
    "Origin",
    "SessionDocument",
    "StorageEntry",
    "TEAMS_ORIGINS",
    "TokenCacheSummary",
]
