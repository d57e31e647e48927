"""Operational checks for a deployed session service.

``settings`` loads ``AppSettings`` (optionally from an env file) and prints
the effective storage and refresh configuration, so a malformed value such
as an unknown Skype exchange resource fails here instead of mid-refresh.

``session`` audits the files under the config directory without modifying
them: each must be an encrypted envelope, owner-only on POSIX, and (when the
machine identity matches) decryptable.

Example usages::

    python -m scripts.check_env --env-file /etc/teams-auth/.env settings
    python -m scripts.check_env session --config-dir ~/.teams-mcp-server
"""

from __future__ import annotations

import argparse
import json
import os
import stat
import sys
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from teams_auth.core.config import DEFAULT_ENV_FILE, AppSettings, load_settings
from teams_auth.core.errors import DecryptionError
from teams_auth.services.session_store import (
    SECURE_FILE_MODE,
    SESSION_STATE_FILE,
    TOKEN_CACHE_FILE,
    resolve_config_dir,
)
from teams_auth.services.token_cipher import TokenCipherService, is_encrypted_shape

EXIT_OK = 0
EXIT_VALIDATION_ERROR = 2
EXIT_INSECURE = 3
EXIT_UNREADABLE = 4
EXIT_RUNTIME_ERROR = 5


def _load_settings(env_file: Optional[Path]) -> AppSettings:
    return load_settings(env_file if env_file is not None else DEFAULT_ENV_FILE)


def _describe(settings: AppSettings) -> str:
    storage = settings.storage
    refresh = settings.refresh
    config_dir = storage.config_dir or f"{resolve_config_dir()} (platform default)"
    return (
        f"config_dir={config_dir}\n"
        f"session_expiry_hours={storage.session_expiry_hours}\n"
        f"refresh_threshold_minutes={refresh.refresh_threshold_minutes}\n"
        f"http_timeout_seconds={refresh.http_timeout_seconds}\n"
        f"http_retry_attempts={refresh.http_retry_attempts}\n"
        f"skype_exchange_resource={refresh.skype_exchange_resource}"
    )


def _audit_file(path: Path, cipher: TokenCipherService) -> tuple[List[str], List[str]]:
    """Return ``(insecure, unreadable)`` findings for one persisted file."""
    insecure: List[str] = []
    unreadable: List[str] = []

    mode = stat.S_IMODE(path.stat().st_mode)
    if os.name == "posix" and mode & ~SECURE_FILE_MODE:
        insecure.append(f"{path.name}: mode {mode:o} allows access by other users")

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        unreadable.append(f"{path.name}: {exc}")
        return insecure, unreadable

    if not is_encrypted_shape(data):
        insecure.append(f"{path.name}: stored as plaintext")
        return insecure, unreadable

    try:
        cipher.decrypt(data)
    except DecryptionError as exc:
        unreadable.append(f"{path.name}: {exc}")
    return insecure, unreadable


def _audit_session(config_dir: Path, cipher: TokenCipherService) -> int:
    files = [config_dir / name for name in (SESSION_STATE_FILE, TOKEN_CACHE_FILE)]
    present = [path for path in files if path.exists()]
    if not present:
        print(f"No session stored in {config_dir}.")
        return EXIT_OK

    insecure: List[str] = []
    unreadable: List[str] = []
    for path in present:
        file_insecure, file_unreadable = _audit_file(path, cipher)
        insecure.extend(file_insecure)
        unreadable.extend(file_unreadable)

    for finding in insecure + unreadable:
        print(finding, file=sys.stderr)
    if insecure:
        return EXIT_INSECURE
    if unreadable:
        return EXIT_UNREADABLE
    print(f"Session files in {config_dir} are encrypted and owner-only.")
    return EXIT_OK


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Check session service settings and stored session files.")
    parser.add_argument("--env-file", type=Path, default=None, help="Env file to read settings from.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("settings", help="Validate settings and print the effective values.")

    session_parser = subparsers.add_parser("session", help="Audit the persisted session files.")
    session_parser.add_argument("--config-dir", type=Path, default=None)
    session_parser.add_argument(
        "--machine-id",
        default=None,
        help="Machine identity used for the key; defaults to this host and user.",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    if args.env_file is not None and not args.env_file.exists():
        print(f"Environment file {args.env_file} does not exist.", file=sys.stderr)
        return EXIT_RUNTIME_ERROR

    try:
        settings = _load_settings(args.env_file)
    except ValidationError as exc:
        print(f"Settings validation failed:\n{exc.json(indent=2)}", file=sys.stderr)
        return EXIT_VALIDATION_ERROR

    if args.command == "settings":
        print(_describe(settings))
        return EXIT_OK

    config_dir = args.config_dir or settings.storage.config_dir or resolve_config_dir()
    return _audit_session(Path(config_dir), TokenCipherService(machine_id=args.machine_id))


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
