"""
Encrypted, owner-only persistence of the browser session and token summary.

Both documents are written as JSON envelopes produced by
``TokenCipherService``. Files written by older releases, either plaintext or
in the package directory, are upgraded transparently on first access.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import sys
import tempfile
import time
from pathlib import Path
from typing import Any, Mapping, Optional

from pydantic import ValidationError

from teams_auth.core.errors import DecryptionError
from teams_auth.models.session import SessionDocument, TokenCacheSummary
from teams_auth.services.token_cipher import TokenCipherService, is_encrypted_shape

logger = logging.getLogger(__name__)

APP_DIR_NAME = "teams-mcp-server"
SESSION_STATE_FILE = "session-state.json"
TOKEN_CACHE_FILE = "token-cache.json"
USER_DATA_DIR_NAME = ".user-data"

SECURE_DIR_MODE = 0o700
SECURE_FILE_MODE = 0o600

PROJECT_ROOT = Path(__file__).resolve().parents[2]
FALLBACK_CONFIG_DIR = PROJECT_ROOT / f"{APP_DIR_NAME}-data"


def _home_dir_safe() -> Optional[Path]:
    try:
        return Path.home()
    except (RuntimeError, KeyError, OSError):
        return None


def resolve_config_dir(
    platform: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
    home: Optional[Path] = None,
) -> Path:
    """Return the per-user configuration directory.

    Windows uses ``%APPDATA%`` (or the roaming profile under the home
    directory); other platforms use a dotfile directory. When the home
    directory cannot be determined, a directory next to the package is used.
    """
    platform = platform or sys.platform
    environ = os.environ if environ is None else environ
    home = home if home is not None else _home_dir_safe()

    if platform.startswith("win"):
        app_data = environ.get("APPDATA")
        if app_data:
            return Path(app_data) / APP_DIR_NAME
        if home is not None:
            return home / "AppData" / "Roaming" / APP_DIR_NAME
    elif home is not None:
        return home / f".{APP_DIR_NAME}"

    return FALLBACK_CONFIG_DIR


class SessionStore:
    """File-backed store for ``SessionDocument`` and ``TokenCacheSummary``."""

    def __init__(
        self,
        config_dir: Path,
        cipher: TokenCipherService,
        *,
        legacy_dir: Optional[Path] = PROJECT_ROOT,
        session_expiry_hours: float = 12.0,
    ) -> None:
        self.config_dir = Path(config_dir)
        self._cipher = cipher
        self._legacy_dir = Path(legacy_dir) if legacy_dir is not None else None
        self.session_expiry_hours = session_expiry_hours

    @property
    def session_state_path(self) -> Path:
        return self.config_dir / SESSION_STATE_FILE

    @property
    def token_cache_path(self) -> Path:
        return self.config_dir / TOKEN_CACHE_FILE

    @property
    def user_data_dir(self) -> Path:
        return self.config_dir / USER_DATA_DIR_NAME

    # ------------------------------------------------------------------
    # Filesystem primitives
    # ------------------------------------------------------------------

    def _ensure_config_dir(self) -> None:
        if not self.config_dir.exists():
            self.config_dir.mkdir(parents=True, exist_ok=True, mode=SECURE_DIR_MODE)
            os.chmod(self.config_dir, SECURE_DIR_MODE)

    def ensure_user_data_dir(self) -> Path:
        self._ensure_config_dir()
        if not self.user_data_dir.exists():
            self.user_data_dir.mkdir(parents=True, exist_ok=True, mode=SECURE_DIR_MODE)
            os.chmod(self.user_data_dir, SECURE_DIR_MODE)
        return self.user_data_dir

    def _migrate_if_needed(self, file_name: str) -> None:
        """Move a legacy file into the config directory once."""
        if self._legacy_dir is None:
            return
        legacy_path = self._legacy_dir / file_name
        new_path = self.config_dir / file_name
        if legacy_path == new_path or not legacy_path.exists() or new_path.exists():
            return

        try:
            self._ensure_config_dir()
            shutil.copyfile(legacy_path, new_path)
            os.chmod(new_path, SECURE_FILE_MODE)
            legacy_path.unlink()
            logger.info("Migrated %s to %s", file_name, self.config_dir)
        except OSError as exc:
            logger.error("Failed to migrate %s: %s", file_name, exc)

    def _write_secure(self, path: Path, data: Any) -> None:
        """Encrypt ``data`` and replace ``path`` with owner-only permissions."""
        self._ensure_config_dir()
        blob = self._cipher.encrypt(json.dumps(data, indent=2))
        payload = json.dumps(blob.to_dict(), indent=2)

        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.replace(tmp_name, path)
            os.chmod(path, SECURE_FILE_MODE)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _read_secure(self, path: Path) -> Optional[Any]:
        """Return the decoded document, or ``None`` when absent or unreadable."""
        if not path.exists():
            return None

        try:
            parsed = json.loads(path.read_text(encoding="utf-8"))
            if is_encrypted_shape(parsed):
                return json.loads(self._cipher.decrypt(parsed))

        except (DecryptionError, ValueError, OSError) as exc:
            logger.error("Failed to read %s: %s", path, exc)
            return None

        logger.info("Encrypting legacy plaintext file %s", path.name)
        try:
            self._write_secure(path, parsed)
        except OSError as exc:
            logger.error("Failed to encrypt legacy file %s: %s", path, exc)
        return parsed

    # ------------------------------------------------------------------
    # Session document
    # ------------------------------------------------------------------

    def has_session_state(self) -> bool:
        self._migrate_if_needed(SESSION_STATE_FILE)
        return self.session_state_path.exists()

    def read_session_state(self) -> Optional[SessionDocument]:
        self._migrate_if_needed(SESSION_STATE_FILE)
        data = self._read_secure(self.session_state_path)
        if data is None:
            return None
        try:
            return SessionDocument.model_validate(data)
        except ValidationError as exc:
            logger.error("Session state has an unexpected shape: %s", exc.error_count())
            return None

    def write_session_state(self, state: SessionDocument) -> None:
        self._write_secure(self.session_state_path, state.to_storage_dict())

    def clear_session_state(self) -> None:
        self.session_state_path.unlink(missing_ok=True)

    def get_session_age_hours(self) -> Optional[float]:
        if not self.has_session_state():
            return None
        age_seconds = time.time() - self.session_state_path.stat().st_mtime
        return age_seconds / 3600

    def is_session_likely_expired(self) -> bool:
        age = self.get_session_age_hours()
        if age is None:
            return True
        return age > self.session_expiry_hours

    # ------------------------------------------------------------------
    # Token cache summary
    # ------------------------------------------------------------------

    def read_token_cache(self) -> Optional[TokenCacheSummary]:
        self._migrate_if_needed(TOKEN_CACHE_FILE)
        data = self._read_secure(self.token_cache_path)
        if data is None:
            return None
        try:
            return TokenCacheSummary.model_validate(data)
        except ValidationError as exc:
            logger.warning("Token cache has an unexpected shape: %s", exc.error_count())
            return None

    def write_token_cache(self, summary: TokenCacheSummary) -> None:
        self._write_secure(self.token_cache_path, summary.to_storage_dict())

    def clear_token_cache(self) -> None:
        self.token_cache_path.unlink(missing_ok=True)


__all__ = [
    "APP_DIR_NAME",
    "FALLBACK_CONFIG_DIR",
    "SECURE_DIR_MODE",
    "SECURE_FILE_MODE",
    "SessionStore",
    "resolve_config_dir",
]
