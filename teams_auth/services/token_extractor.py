"""
Read bearer tokens, identity and region data out of the persisted session.

Nothing here raises for a missing or incomplete session: an absent document,
cookie, record or discovery entry is reported as ``None`` (or an unavailable
status) so callers can decide whether to refresh or ask for a login.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple
from urllib.parse import unquote, urlsplit

from teams_auth.models.cache_records import AccessTokenRecord, decode_access_token
from teams_auth.models.resources import (
    CHAT_AGGREGATOR,
    GRAPH,
    SPACES,
    SUBSTRATE,
    ResourceScope,
)
from teams_auth.models.session import Origin, SessionDocument, StorageEntry, TokenCacheSummary
from teams_auth.models.tokens import (
    MessageAuth,
    RegionConfig,
    TeamsTokenInfo,
    TokenInfo,
    TokenStatus,
    UserDetails,
    UserLicenses,
    UserProfile,
)
from teams_auth.services.session_store import SessionStore
from teams_auth.utils.claims import (
    datetime_from_epoch,
    decode_jwt_payload,
    get_jwt_expiry,
    looks_like_jwt,
    mri_from_oid,
    mri_from_skype_token,
    parse_jwt_profile,
)

logger = logging.getLogger(__name__)

SKYPE_TOKEN_COOKIE = "skypetoken_asm"
AUTH_TOKEN_COOKIE = "authtoken"
TEAMS_COOKIE_DOMAIN = "teams.microsoft.com"
BEARER_PREFIX = "Bearer="

REGION_CONFIG_KEY = "DISCOVER-REGION-GTM"
USER_DETAILS_KEY = "DISCOVER-USER-DETAILS"
DEFAULT_TEAMS_BASE_URL = "https://teams.microsoft.com"

_CHAT_REGION_RE = re.compile(r"/api/chatsvc/([a-z]+)$")
_PARTITIONED_MT_RE = re.compile(r"/api/mt/part/([a-z]+)-(\d+)$")
_SIMPLE_MT_RE = re.compile(r"/api/mt/([a-z]+)$")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def record_expiry(record: AccessTokenRecord) -> Optional[datetime]:
    """Expiry from the record's ``expiresOn``, falling back to the JWT ``exp``."""
    seconds = record.expires_on_seconds
    if seconds is not None:
        return datetime_from_epoch(seconds)
    return get_jwt_expiry(record.secret)


def iter_access_token_records(
    state: SessionDocument,
) -> Iterator[Tuple[Origin, StorageEntry, AccessTokenRecord]]:
    """Yield every decodable access-token record across all origins."""
    for origin, entry in state.iter_entries():
        record = decode_access_token(entry.value)
        if record is not None:
            yield origin, entry, record


def _load_json(raw: str) -> Optional[Any]:
    try:
        return json.loads(raw)
    except ValueError:
        return None


def _status_for(expiry: Optional[datetime], now: datetime) -> TokenStatus:
    if expiry is None:
        return TokenStatus(has_token=False)
    remaining = (expiry - now).total_seconds() / 60
    return TokenStatus(
        has_token=expiry > now,
        expires_at=expiry,
        minutes_remaining=max(0, round(remaining)),
    )


class TokenExtractor:
    """Answers "which token, which user, which region" for a session document.

    Every method takes an optional ``SessionDocument``; when omitted the
    current document is read from the store.
    """

    def __init__(
        self,
        store: SessionStore,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._clock = clock

    def _resolve(self, state: Optional[SessionDocument]) -> Optional[SessionDocument]:
        return state if state is not None else self._store.read_session_state()

    def _teams_entries(self, state: Optional[SessionDocument]) -> Optional[List[StorageEntry]]:
        document = self._resolve(state)
        if document is None:
            return None
        origin = document.teams_origin()
        return origin.entries if origin is not None else None

    # ------------------------------------------------------------------
    # Resource tokens
    # ------------------------------------------------------------------

    def find_access_token(
        self,
        resource: ResourceScope,
        state: Optional[SessionDocument] = None,
        *,
        include_expired: bool = False,
    ) -> Optional[TokenInfo]:
        """Return the matching access token with the greatest expiry."""
        document = self._resolve(state)
        if document is None:
            return None

        now = self._clock()
        best: Optional[TokenInfo] = None
        for _, _, record in iter_access_token_records(document):
            if not resource.matches(record.target):
                continue
            expiry = record_expiry(record)
            if expiry is None:
                continue
            if not include_expired and expiry <= now:
                continue
            if best is None or expiry > best.expiry:
                best = TokenInfo(token=record.secret, expiry=expiry)
        return best

    def extract_substrate_token(self, state: Optional[SessionDocument] = None) -> Optional[TokenInfo]:
        return self.find_access_token(SUBSTRATE, state)

    def extract_spaces_token(self, state: Optional[SessionDocument] = None) -> Optional[str]:
        info = self.find_access_token(SPACES, state)
        return info.token if info else None

    def extract_graph_token(self, state: Optional[SessionDocument] = None) -> Optional[TokenInfo]:
        return self.find_access_token(GRAPH, state)

    def extract_csa_token(self, state: Optional[SessionDocument] = None) -> Optional[str]:
        """Return the aggregator token used by the conversation-folders API.

        Entries are matched on their storage key across every origin;
        ``tmp.`` entries written mid-flight by the web client are skipped.
        """
        document = self._resolve(state)
        if document is None:
            return None
        for _, entry in document.iter_entries():
            if entry.name.startswith("tmp."):
                continue
            if CHAT_AGGREGATOR.host not in entry.name:
                continue
            data = _load_json(entry.value)
            if isinstance(data, dict) and isinstance(data.get("secret"), str) and data["secret"]:
                return data["secret"]
        return None

    def extract_teams_token(self, state: Optional[SessionDocument] = None) -> Optional[TeamsTokenInfo]:
        """Chat API token: the aggregator token, else the Spaces token."""
        document = self._resolve(state)
        if document is None:
            return None

        best = self.find_access_token(CHAT_AGGREGATOR, document) or self.find_access_token(
            SPACES, document
        )
        if best is None:
            return None

        user_mri = mri_from_oid(best.token) or self._any_user_mri(document)
        if user_mri is None:
            return None
        return TeamsTokenInfo(token=best.token, expiry=best.expiry, user_mri=user_mri)

    def _any_user_mri(self, document: SessionDocument) -> Optional[str]:
        for _, _, record in iter_access_token_records(document):
            mri = mri_from_oid(record.secret)
            if mri:
                return mri
        substrate = self.extract_substrate_token(document)
        return mri_from_oid(substrate.token) if substrate else None

    # ------------------------------------------------------------------
    # Cached access and status
    # ------------------------------------------------------------------

    def get_valid_substrate_token(self) -> Optional[str]:
        """Return a usable Substrate token, preferring the summary cache."""
        now = self._clock()
        now_ms = int(now.timestamp() * 1000)

        cache = self._store.read_token_cache()
        if cache is not None and cache.substrate_token_expiry > now_ms:
            return cache.substrate_token

        extracted = self.extract_substrate_token()
        if extracted is None:
            return None

        summary = TokenCacheSummary(
            substrate_token=extracted.token,
            substrate_token_expiry=int(extracted.expiry.timestamp() * 1000),
            extracted_at=now_ms,
        )
        try:
            self._store.write_token_cache(summary)
        except OSError as exc:
            logger.warning("Could not write token cache: %s", exc)
        return extracted.token

    def has_valid_substrate_token(self) -> bool:
        return self.get_valid_substrate_token() is not None

    def get_valid_graph_token(self) -> Optional[str]:
        info = self.extract_graph_token()
        return info.token if info else None

    def get_substrate_token_status(self, state: Optional[SessionDocument] = None) -> TokenStatus:
        info = self.find_access_token(SUBSTRATE, state, include_expired=True)
        return _status_for(info.expiry if info else None, self._clock())

    def get_message_auth_status(self, state: Optional[SessionDocument] = None) -> TokenStatus:
        """Status of the ``skypetoken_asm`` cookie.

        A cookie whose expiry cannot be decoded is reported as available.
        """
        document = self._resolve(state)
        if document is None:
            return TokenStatus(has_token=False)

        skype_token = self._teams_cookie_value(document, SKYPE_TOKEN_COOKIE)
        if not skype_token:
            return TokenStatus(has_token=False)

        expiry = get_jwt_expiry(skype_token)
        if expiry is None:
            return TokenStatus(has_token=True)
        return _status_for(expiry, self._clock())

    def are_tokens_expired(self, state: Optional[SessionDocument] = None) -> bool:
        document = self._resolve(state)
        if document is None:
            return True
        return self.extract_substrate_token(document) is None

    def clear_token_cache(self) -> None:
        self._store.clear_token_cache()

    # ------------------------------------------------------------------
    # Messaging cookies
    # ------------------------------------------------------------------

    @staticmethod
    def _teams_cookie_value(document: SessionDocument, name: str) -> Optional[str]:
        for cookie in document.cookies_named(name):
            if cookie.domain and TEAMS_COOKIE_DOMAIN in cookie.domain:
                return cookie.value
        return None

    def extract_message_auth(self, state: Optional[SessionDocument] = None) -> Optional[MessageAuth]:
        document = self._resolve(state)
        if document is None:
            return None

        skype_token = self._teams_cookie_value(document, SKYPE_TOKEN_COOKIE)
        raw_auth_token = self._teams_cookie_value(document, AUTH_TOKEN_COOKIE)
        if not skype_token or not raw_auth_token:
            return None

        auth_token = unquote(raw_auth_token)
        if auth_token.startswith(BEARER_PREFIX):
            auth_token = auth_token[len(BEARER_PREFIX):]

        user_mri = mri_from_skype_token(skype_token) or mri_from_oid(auth_token)
        if not user_mri:
            return None
        return MessageAuth(skype_token=skype_token, auth_token=auth_token, user_mri=user_mri)

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def get_user_profile(self, state: Optional[SessionDocument] = None) -> Optional[UserProfile]:
        entries = self._teams_entries(state)
        if entries is None:
            return None
        for entry in entries:
            record = decode_access_token(entry.value)
            if record is None or not looks_like_jwt(record.secret):
                continue
            payload = decode_jwt_payload(record.secret)
            profile = parse_jwt_profile(payload) if payload else None
            if profile is not None:
                return profile
        return None

    def get_user_display_name(self, state: Optional[SessionDocument] = None) -> Optional[str]:
        """Display name from a profile entry, falling back to the chat token."""
        document = self._resolve(state)
        if document is None:
            return None
        origin = document.teams_origin()
        entries = origin.entries if origin is not None else []

        for entry in entries:
            if "displayName" not in entry.value and "givenName" not in entry.value:
                continue
            data = _load_json(entry.value)
            if not isinstance(data, dict):
                continue
            if isinstance(data.get("displayName"), str) and data["displayName"]:
                return data["displayName"]
            name = data.get("name")
            if isinstance(name, dict) and isinstance(name.get("displayName"), str):
                return name["displayName"]

        teams_token = self.extract_teams_token(document)
        if teams_token is not None:
            payload = decode_jwt_payload(teams_token.token) or {}
            if isinstance(payload.get("name"), str):
                return payload["name"]
        return None

    # ------------------------------------------------------------------
    # Discovery config
    # ------------------------------------------------------------------

    @staticmethod
    def _discovery_items(entries: List[StorageEntry], key: str) -> Iterator[Dict[str, Any]]:
        for entry in entries:
            if key not in entry.name:
                continue
            data = _load_json(entry.value)
            item = data.get("item") if isinstance(data, dict) else None
            if isinstance(item, dict):
                yield item

    def extract_region_config(self, state: Optional[SessionDocument] = None) -> Optional[RegionConfig]:
        """Parse the serving region from the discovery entry.

        Partitioned tenants publish a middle tier such as
        ``/api/mt/part/amer-02``; others publish ``/api/mt/emea``.
        """
        entries = self._teams_entries(state)
        if entries is None:
            return None

        for item in self._discovery_items(entries, REGION_CONFIG_KEY):
            chat_service_url = item.get("chatServiceAfd")
            if not isinstance(chat_service_url, str) or not chat_service_url:
                continue
            chat_match = _CHAT_REGION_RE.search(chat_service_url)
            if not chat_match:
                continue
            region = chat_match.group(1)

            parts = urlsplit(chat_service_url)
            teams_base_url = (
                f"{parts.scheme}://{parts.netloc}" if parts.scheme and parts.netloc else DEFAULT_TEAMS_BASE_URL
            )

            middle_tier_url = item.get("middleTier") or ""
            partition = ""
            region_partition = region
            has_partition = False
            if isinstance(middle_tier_url, str) and middle_tier_url:
                partitioned = _PARTITIONED_MT_RE.search(middle_tier_url)
                if partitioned:
                    has_partition = True
                    partition = partitioned.group(2)
                    region_partition = f"{partitioned.group(1)}-{partition}"
                else:
                    simple = _SIMPLE_MT_RE.search(middle_tier_url)
                    if simple:
                        region_partition = simple.group(1)

            csa_service_url = item.get("chatSvcAggAfd") or f"{teams_base_url}/api/csa/{region}"
            return RegionConfig(
                region=region,
                partition=partition,
                region_partition=region_partition,
                has_partition=has_partition,
                middle_tier_url=str(middle_tier_url),
                chat_service_url=chat_service_url,
                csa_service_url=csa_service_url,
                teams_base_url=teams_base_url,
            )
        return None

    def extract_user_details(self, state: Optional[SessionDocument] = None) -> Optional[UserDetails]:
        entries = self._teams_entries(state)
        if entries is None:
            return None

        for item in self._discovery_items(entries, USER_DETAILS_KEY):
            mri = item.get("id")
            region = item.get("region")
            if not mri or not region:
                continue
            licenses = item.get("licenseDetails")
            licenses = licenses if isinstance(licenses, dict) else {}
            return UserDetails(
                mri=str(mri),
                region=str(region),
                user_partition=str(item.get("userPartition") or ""),
                tenant_partition=str(item.get("partition") or ""),
                licenses=UserLicenses(
                    is_freemium=licenses.get("isFreemium") is True,
                    is_trial=licenses.get("isTrial") is True,
                    is_teams_enabled=licenses.get("isTeamsEnabled") is True,
                    is_copilot=licenses.get("isCopilot") is True,
                    is_transcript_enabled=licenses.get("isTranscriptEnabled") is True,
                    is_frontline=licenses.get("isFrontline") is True,
                ),
            )
        return None


__all__ = [
    "AUTH_TOKEN_COOKIE",
    "REGION_CONFIG_KEY",
    "SKYPE_TOKEN_COOKIE",
    "TEAMS_COOKIE_DOMAIN",
    "TokenExtractor",
    "USER_DETAILS_KEY",
    "iter_access_token_records",
    "record_expiry",
]
