"""Tests for the settings and session audit script."""

from __future__ import annotations

try:
    from . import _bootstrap  # noqa: F401
    from ._factories import full_session
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401
    from _factories import full_session  # type: ignore

import json
import os
import sys
from pathlib import Path

import pytest

from scripts import check_env
from teams_auth.services.session_store import SessionStore

TEST_MACHINE_ID = "test-host:test-user"

MANAGED_ENV_KEYS = [
    "TEAMS_AUTH_REFRESH_THRESHOLD_MINUTES",
    "TEAMS_AUTH_HTTP_RETRY_ATTEMPTS",
    "TEAMS_AUTH_SKYPE_EXCHANGE_RESOURCE",
]


def _write_env(env_path: Path, **values: str) -> None:
    contents = "\n".join(f"{key}={value}" for key, value in values.items())
    env_path.write_text(contents + "\n", encoding="utf-8")


def _audit(store: SessionStore, machine_id: str = TEST_MACHINE_ID) -> int:
    return check_env.main(
        ["session", "--config-dir", str(store.config_dir), "--machine-id", machine_id]
    )


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Only the env file under test supplies these values."""
    for key in MANAGED_ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_missing_env_file_is_runtime_error(tmp_path: Path) -> None:
    exit_code = check_env.main(["--env-file", str(tmp_path / ".missing-env"), "settings"])

    assert exit_code == check_env.EXIT_RUNTIME_ERROR


def test_settings_prints_effective_values(tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
    env_file = tmp_path / ".env"
    _write_env(
        env_file,
        TEAMS_AUTH_REFRESH_THRESHOLD_MINUTES="15",
        TEAMS_AUTH_SKYPE_EXCHANGE_RESOURCE="chat_aggregator",
    )

    assert check_env.main(["--env-file", str(env_file), "settings"]) == check_env.EXIT_OK
    output = capsys.readouterr().out
    assert "refresh_threshold_minutes=15" in output
    assert "skype_exchange_resource=chat_aggregator" in output


@pytest.mark.parametrize(
    "values",
    [
        {"TEAMS_AUTH_HTTP_RETRY_ATTEMPTS": "0"},
        {"TEAMS_AUTH_SKYPE_EXCHANGE_RESOURCE": "graph"},
        {"TEAMS_AUTH_REFRESH_THRESHOLD_MINUTES": "soon"},
    ],
)
def test_invalid_settings_fail_validation(tmp_path: Path, values: dict) -> None:
    env_file = tmp_path / ".env"
    _write_env(env_file, **values)

    exit_code = check_env.main(["--env-file", str(env_file), "settings"])

    assert exit_code == check_env.EXIT_VALIDATION_ERROR


def test_session_audit_without_files(store: SessionStore) -> None:
    assert _audit(store) == check_env.EXIT_OK


def test_session_audit_accepts_encrypted_files(store: SessionStore) -> None:
    store.write_session_state(full_session())

    assert _audit(store) == check_env.EXIT_OK
    assert store.read_session_state() is not None


def test_session_audit_flags_plaintext(store: SessionStore) -> None:
    store.config_dir.mkdir(parents=True)
    store.session_state_path.write_text(json.dumps(full_session().to_storage_dict()))
    os.chmod(store.session_state_path, 0o600)

    assert _audit(store) == check_env.EXIT_INSECURE
    assert not json.loads(store.session_state_path.read_text()).get("iv")


@pytest.mark.skipif(sys.platform.startswith("win"), reason="POSIX permissions")
def test_session_audit_flags_loose_permissions(store: SessionStore) -> None:
    store.write_session_state(full_session())
    os.chmod(store.session_state_path, 0o644)

    assert _audit(store) == check_env.EXIT_INSECURE


def test_session_audit_flags_foreign_machine_key(store: SessionStore) -> None:
    store.write_session_state(full_session())

    assert _audit(store, machine_id="other-host:other-user") == check_env.EXIT_UNREADABLE


def test_env_file_values_do_not_leak_into_process_env(tmp_path: Path) -> None:
    env_file = tmp_path / ".env"
    _write_env(env_file, TEAMS_AUTH_REFRESH_THRESHOLD_MINUTES="25")

    assert check_env.main(["--env-file", str(env_file), "settings"]) == check_env.EXIT_OK
    assert "TEAMS_AUTH_REFRESH_THRESHOLD_MINUTES" not in os.environ
