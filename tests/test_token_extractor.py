try:
    from . import _bootstrap  # noqa: F401
    from ._factories import (
        CHAT_AGGREGATOR_TARGET,
        GRAPH_TARGET,
        SPACES_TARGET,
        SUBSTRATE_TARGET,
        USER_OID,
        access_token_entry,
        build_session,
        cookie,
        full_session,
        make_jwt,
        region_entry,
    )
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401
    from _factories import (  # type: ignore
        CHAT_AGGREGATOR_TARGET,
        GRAPH_TARGET,
        SPACES_TARGET,
        SUBSTRATE_TARGET,
        USER_OID,
        access_token_entry,
        build_session,
        cookie,
        full_session,
        make_jwt,
        region_entry,
    )

import json
import time

import pytest

from teams_auth.models.resources import SUBSTRATE
from teams_auth.models.session import TokenCacheSummary
from teams_auth.services.session_store import SessionStore
from teams_auth.services.token_extractor import TokenExtractor


@pytest.fixture
def extractor(store: SessionStore) -> TokenExtractor:
    return TokenExtractor(store)


def test_everything_is_absent_without_a_session(extractor: TokenExtractor) -> None:
    assert extractor.extract_substrate_token() is None
    assert extractor.extract_teams_token() is None
    assert extractor.extract_message_auth() is None
    assert extractor.extract_region_config() is None
    assert extractor.extract_user_details() is None
    assert extractor.get_user_profile() is None
    assert extractor.get_valid_substrate_token() is None
    assert extractor.get_substrate_token_status().has_token is False
    assert extractor.get_message_auth_status().has_token is False
    assert extractor.are_tokens_expired() is True


def test_selects_token_with_greatest_expiry(extractor: TokenExtractor) -> None:
    short = make_jwt({"which": "short"}, expires_in=600)
    long = make_jwt({"which": "long"}, expires_in=7200)
    state = build_session(
        entries=[
            access_token_entry(SUBSTRATE_TARGET, secret=short, expires_in=600, name="a"),
            access_token_entry(SUBSTRATE_TARGET, secret=long, expires_in=7200, name="b"),
            access_token_entry("https://substrate.office.com/Other.Read", expires_in=9000, name="c"),
        ]
    )

    info = extractor.extract_substrate_token(state)

    assert info is not None
    assert info.token == long


def test_scans_every_origin(extractor: TokenExtractor) -> None:
    token = make_jwt()
    state = build_session(
        entries=[],
        extra_origins=[
            {
                "origin": "https://login.microsoftonline.com",
                "localStorage": [access_token_entry(GRAPH_TARGET, secret=token)],
            }
        ],
    )

    assert extractor.extract_graph_token(state).token == token


def test_expired_tokens_are_unavailable(extractor: TokenExtractor) -> None:
    state = build_session(entries=[access_token_entry(SUBSTRATE_TARGET, expires_in=-60)])

    assert extractor.extract_substrate_token(state) is None
    assert extractor.find_access_token(SUBSTRATE, state, include_expired=True) is not None
    assert extractor.are_tokens_expired(state) is True
    status = extractor.get_substrate_token_status(state)
    assert status.has_token is False
    assert status.minutes_remaining == 0


def test_expiry_falls_back_to_jwt_claim(extractor: TokenExtractor) -> None:
    entry = access_token_entry(SUBSTRATE_TARGET, expires_in=1800)
    record = json.loads(entry["value"])
    del record["expiresOn"]
    entry["value"] = json.dumps(record)

    info = extractor.extract_substrate_token(build_session(entries=[entry]))

    assert info is not None
    assert abs(info.expiry.timestamp() - (time.time() + 1800)) < 5


@pytest.mark.parametrize("expires_on", ["1e20", "-1e20", "inf", "nan"])
def test_out_of_range_expiry_is_skipped(extractor: TokenExtractor, expires_on: str) -> None:
    broken = access_token_entry(SUBSTRATE_TARGET, secret="broken", name="broken-substrate")
    record = json.loads(broken["value"])
    record["expiresOn"] = expires_on
    broken["value"] = json.dumps(record)
    state = build_session(entries=[broken, access_token_entry(SUBSTRATE_TARGET, secret="usable")])

    info = extractor.find_access_token(SUBSTRATE, state, include_expired=True)

    assert info is not None
    assert info.token == "usable"


def test_teams_token_prefers_chat_aggregator(extractor: TokenExtractor) -> None:
    aggregator = make_jwt({"aud": "chatsvcagg"})
    spaces = make_jwt({"aud": "spaces"}, expires_in=7200)
    state = build_session(
        entries=[
            access_token_entry(SPACES_TARGET, secret=spaces, expires_in=7200),
            access_token_entry(CHAT_AGGREGATOR_TARGET, secret=aggregator),
        ]
    )

    info = extractor.extract_teams_token(state)

    assert info.token == aggregator
    assert info.user_mri == f"8:orgid:{USER_OID}"


def test_teams_token_falls_back_to_spaces(extractor: TokenExtractor) -> None:
    spaces = make_jwt()
    state = build_session(entries=[access_token_entry(SPACES_TARGET, secret=spaces)])

    assert extractor.extract_teams_token(state).token == spaces
    assert extractor.extract_spaces_token(state) == spaces


def test_csa_token_skips_temporary_entries(extractor: TokenExtractor) -> None:
    state = build_session(
        entries=[
            {"name": "tmp.chatsvcagg.teams.microsoft.com", "value": json.dumps({"secret": "tmp"})},
            {"name": "x-chatsvcagg.teams.microsoft.com-y", "value": json.dumps({"secret": "csa"})},
        ]
    )

    assert extractor.extract_csa_token(state) == "csa"


def test_message_auth_from_cookies(extractor: TokenExtractor) -> None:
    auth_jwt = make_jwt({"oid": "from-auth"})
    state = build_session(
        cookies=[
            cookie("skypetoken_asm", make_jwt({"skypeid": "orgid:from-skype"}), "teams.microsoft.com"),
            cookie("authtoken", f"Bearer%3D{auth_jwt}", "teams.microsoft.com"),
        ]
    )

    auth = extractor.extract_message_auth(state)

    assert auth.auth_token == auth_jwt
    assert auth.user_mri == "8:orgid:from-skype"


def test_message_auth_mri_falls_back_to_auth_token(extractor: TokenExtractor) -> None:
    state = build_session(
        cookies=[
            cookie("skypetoken_asm", "opaque-skype-token", "teams.microsoft.com"),
            cookie("authtoken", f"Bearer%3D{make_jwt({'oid': 'from-auth'})}", "teams.microsoft.com"),
        ]
    )

    assert extractor.extract_message_auth(state).user_mri == "8:orgid:from-auth"
    assert extractor.get_message_auth_status(state).has_token is True


def test_message_auth_ignores_other_domains(extractor: TokenExtractor) -> None:
    state = build_session(
        cookies=[
            cookie("skypetoken_asm", make_jwt(), ".asm.skype.com"),
            cookie("authtoken", f"Bearer%3D{make_jwt()}", "teams.microsoft.com"),
        ]
    )

    assert extractor.extract_message_auth(state) is None


def test_region_config_partitioned(extractor: TokenExtractor) -> None:
    config = extractor.extract_region_config(build_session(entries=[region_entry()]))

    assert config.region == "amer"
    assert config.partition == "02"
    assert config.region_partition == "amer-02"
    assert config.has_partition is True
    assert config.teams_base_url == "https://teams.microsoft.com"
    assert config.csa_service_url == "https://teams.microsoft.com/api/csa/amer"


def test_region_config_unpartitioned_government_cloud(extractor: TokenExtractor) -> None:
    state = build_session(
        entries=[
            region_entry(
                middle_tier="https://teams.microsoft.us/api/mt/emea",
                chat_service="https://teams.microsoft.us/api/chatsvc/uk",
                csa_service="https://teams.microsoft.us/api/csa/uk",
            )
        ],
        origin="https://teams.microsoft.us",
    )

    config = extractor.extract_region_config(state)

    assert config.region == "uk"
    assert config.region_partition == "emea"
    assert config.has_partition is False
    assert config.partition == ""
    assert config.teams_base_url == "https://teams.microsoft.us"
    assert config.csa_service_url == "https://teams.microsoft.us/api/csa/uk"


def test_region_config_requires_chat_service(extractor: TokenExtractor) -> None:
    state = build_session(entries=[region_entry(chat_service="https://teams.microsoft.com/api/other")])

    assert extractor.extract_region_config(state) is None


def test_user_details(extractor: TokenExtractor) -> None:
    details = {
        "item": {
            "id": "8:orgid:abc",
            "region": "emea",
            "userPartition": "emea01",
            "partition": "emea02",
            "licenseDetails": {"isCopilot": True, "isTrial": "yes"},
        }
    }
    state = build_session(entries=[{"name": "DISCOVER-USER-DETAILS", "value": json.dumps(details)}])

    result = extractor.extract_user_details(state)

    assert result.mri == "8:orgid:abc"
    assert result.tenant_partition == "emea02"
    assert result.licenses.is_copilot is True
    assert result.licenses.is_trial is False


def test_user_profile_and_display_name(extractor: TokenExtractor) -> None:
    state = full_session()

    profile = extractor.get_user_profile(state)

    assert profile.id == USER_OID
    assert profile.display_name == "Doe, Jane"
    assert extractor.get_user_display_name(state) == "Doe, Jane"


def test_display_name_prefers_profile_entry(extractor: TokenExtractor) -> None:
    state = build_session(
        entries=[{"name": "profile", "value": json.dumps({"displayName": "Jane Doe", "givenName": "Jane"})}]
    )

    assert extractor.get_user_display_name(state) == "Jane Doe"


def test_valid_substrate_token_writes_and_uses_summary(store: SessionStore, extractor: TokenExtractor) -> None:
    state = full_session()
    store.write_session_state(state)

    token = extractor.get_valid_substrate_token()

    summary = store.read_token_cache()
    assert summary is not None
    assert summary.substrate_token == token

    store.write_token_cache(
        TokenCacheSummary(
            substrate_token="cached-token",
            substrate_token_expiry=int((time.time() + 600) * 1000),
            extracted_at=int(time.time() * 1000),
        )
    )
    assert extractor.get_valid_substrate_token() == "cached-token"

    extractor.clear_token_cache()
    assert extractor.get_valid_substrate_token() == token


def test_valid_graph_token(store: SessionStore, extractor: TokenExtractor) -> None:
    store.write_session_state(full_session())

    assert extractor.get_valid_graph_token() is not None
