try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import json

import pytest

from teams_auth.models.cache_records import (
    AccessTokenRecord,
    RefreshTokenRecord,
    access_token_key,
    decode_access_token,
    decode_cache_record,
    decode_refresh_token,
)
from teams_auth.models.resources import CHAT_AGGREGATOR, SUBSTRATE


def _access(**overrides) -> str:
    record = {
        "credentialType": "AccessToken",
        "homeAccountId": "home",
        "environment": "login.windows.net",
        "clientId": "client",
        "realm": "tenant",
        "target": "https://substrate.office.com/SubstrateSearch-Internal.ReadWrite",
        "secret": "token",
        "expiresOn": 1700003600,
    }
    record.update(overrides)
    return json.dumps(record)


def test_decode_access_token_normalizes_epochs() -> None:
    record = decode_access_token(_access())

    assert isinstance(record, AccessTokenRecord)
    assert record.expires_on == "1700003600"
    assert record.expires_on_seconds == 1700003600


@pytest.mark.parametrize("expires_on", ["inf", "-inf", "nan", "soon"])
def test_unusable_expiry_string_has_no_seconds(expires_on: str) -> None:
    record = decode_access_token(_access(expiresOn=expires_on))

    assert record is not None
    assert record.expires_on_seconds is None


def test_decode_refresh_token() -> None:
    raw = json.dumps(
        {"credentialType": "RefreshToken", "clientId": "client", "secret": "rt", "extra": "kept"}
    )

    record = decode_refresh_token(raw)

    assert isinstance(record, RefreshTokenRecord)
    assert json.loads(record.to_json())["extra"] == "kept"
    assert decode_access_token(raw) is None


@pytest.mark.parametrize(
    "raw",
    [
        "",
        "plain string",
        "[1, 2, 3]",
        "{broken",
        json.dumps({"credentialType": "IdToken", "secret": "x"}),
        _access(target=""),
        _access(secret=None),
        _access(expiresOn=float("inf")),
        _access(expiresOn=float("nan")),
        json.dumps({"credentialType": "RefreshToken", "secret": "rt"}),
    ],
)
def test_decoders_fail_closed(raw: str) -> None:
    assert decode_cache_record(raw) is None


def test_rotated_keeps_identity_and_updates_secret() -> None:
    record = decode_refresh_token(
        json.dumps({"credentialType": "RefreshToken", "homeAccountId": "home", "clientId": "c", "secret": "old"})
    )

    rotated = record.rotated("new")

    assert rotated.secret == "new"
    assert rotated.home_account_id == "home"
    assert rotated.client_id == "c"
    assert rotated.last_updated_at is not None
    assert record.secret == "old"


def test_access_token_key_lowercases_target() -> None:
    record = decode_access_token(_access(target="https://Graph.Microsoft.com/User.Read"))

    assert access_token_key(record) == (
        "home-login.windows.net-accesstoken-client-tenant-https://graph.microsoft.com/user.read"
    )


def test_resource_matching() -> None:
    assert SUBSTRATE.matches("https://substrate.office.com/search/SubstrateSearch")
    assert not SUBSTRATE.matches("https://substrate.office.com/Other.Read")
    assert CHAT_AGGREGATOR.matches("https://CHATSVCAGG.teams.microsoft.com/.default")
    assert CHAT_AGGREGATOR.refresh_scopes == "https://chatsvcagg.teams.microsoft.com/.default offline_access"
