"""
Configuration models and helpers.

Centralizes settings so the session store, the token extractor, the refresh
orchestrator and the FastAPI surface share one configuration object. Every
group reads ``TEAMS_AUTH_*`` variables from the environment and from ``.env``.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional, Union

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ENV_FILE = ".env"

_SETTINGS_CONFIG = SettingsConfigDict(
    env_prefix="TEAMS_AUTH_",
    env_file=DEFAULT_ENV_FILE,
    env_file_encoding="utf-8",
    extra="ignore",
)


class StorageSettings(BaseSettings):
    """Where and how long the persisted browser session is kept."""

    model_config = _SETTINGS_CONFIG

    config_dir: Optional[Path] = Field(
        None,
        description=(
            "Overrides the per-user configuration directory. When unset the "
            "platform default (APPDATA on Windows, ~/.teams-mcp-server elsewhere) "
            "is used."
        ),
    )
    session_expiry_hours: float = Field(
        12.0,
        description="Age after which a persisted session is reported as likely expired.",
    )


class RefreshSettings(BaseSettings):
    """Token refresh behaviour."""

    model_config = _SETTINGS_CONFIG

    refresh_threshold_minutes: int = Field(
        10,
        description="Refresh proactively when a token has fewer minutes left than this.",
    )
    http_timeout_seconds: float = Field(10.0, description="Timeout for each outbound call.")
    http_retry_attempts: int = Field(
        2,
        description="Attempts per outbound call; only transport errors, 429 and 5xx are retried.",
    )
    http_retry_backoff_seconds: float = Field(0.5)
    skype_exchange_resource: Literal["spaces", "chat_aggregator"] = Field(
        "spaces",
        description="Which freshly refreshed access token is exchanged for the Skype token.",
    )

    @field_validator("http_retry_attempts")
    @classmethod
    def _at_least_one_attempt(cls, value: int) -> int:
        if value < 1:
            raise ValueError("http_retry_attempts must be >= 1")
        return value

    @property
    def refresh_threshold_ms(self) -> int:
        return self.refresh_threshold_minutes * 60 * 1000


class AppSettings(BaseSettings):
    """Root settings object."""

    model_config = _SETTINGS_CONFIG

    environment: str = Field("development", validation_alias="TEAMS_AUTH_ENV")
    log_level: str = Field("INFO")
    storage: StorageSettings = Field(default_factory=StorageSettings)
    refresh: RefreshSettings = Field(default_factory=RefreshSettings)


def load_settings(env_file: Union[str, Path, None] = DEFAULT_ENV_FILE) -> AppSettings:
    """Build settings with every group reading the given env file."""
    return AppSettings(  # type: ignore[call-arg]
        _env_file=env_file,
        storage=StorageSettings(_env_file=env_file),  # type: ignore[call-arg]
        refresh=RefreshSettings(_env_file=env_file),  # type: ignore[call-arg]
    )


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return load_settings()


__all__ = [
    "DEFAULT_ENV_FILE",
    "AppSettings",
    "RefreshSettings",
    "StorageSettings",
    "get_settings",
    "load_settings",
]
