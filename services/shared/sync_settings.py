from __future__ import annotations

"""
Shared helpers for configuring the cloud-sync core.

The sync service and the deployment diagnostic script both read the same set of
environment variables to decide how the OAuth client is wired, how long the
auto-sync debounce window is, and how outbound Drive calls are tuned. Loading
and validating those settings in one place keeps every consumer on the same
defaults without duplicating parsing logic.
"""

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_DEBOUNCE_MS = 800
DEFAULT_TOKEN_MARGIN_SECONDS = 5.0
DEFAULT_HTTP_TIMEOUT_SECONDS = 30.0
DEFAULT_HTTP_MAX_ATTEMPTS = 3
REQUIRED_OAUTH_ENV_VARS = ("GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_SECRET", "GOOGLE_REDIRECT_URI")
# "local": SQLite on the device is the database. "remote": the app-data document is.
DATA_MODES = ("local", "remote")
DEFAULT_DATA_MODE = "local"


class SyncSettingsError(RuntimeError):
    """Raised when sync configuration cannot be constructed."""


@dataclass(frozen=True, slots=True)
class OAuthConfig:
    client_id: str
    client_secret: str
    redirect_uri: str


@dataclass(frozen=True, slots=True)
class SyncSettings:
    debounce_seconds: float
    token_margin_seconds: float
    http_timeout_seconds: float
    http_max_attempts: int
    database_url: Optional[str] = None
    data_mode: str = DEFAULT_DATA_MODE
    oauth: Optional[OAuthConfig] = None

    def require_oauth_config(self) -> OAuthConfig:
        """Return the OAuth client config or explain which variables are missing."""
        if self.oauth is None:
            formatted_missing = ", ".join(_missing_oauth_vars() or REQUIRED_OAUTH_ENV_VARS)
            raise SyncSettingsError(f"Interactive sign-in requires the following env vars: {formatted_missing}")
        return self.oauth


def load_sync_settings(
    *,
    debounce_env: str = "FINANCE_SYNC_DEBOUNCE_MS",
    token_margin_env: str = "FINANCE_SYNC_TOKEN_MARGIN_SECONDS",
    timeout_env: str = "FINANCE_SYNC_HTTP_TIMEOUT_SECONDS",
    max_attempts_env: str = "FINANCE_SYNC_HTTP_MAX_ATTEMPTS",
    database_url_env: str = "FINANCE_SYNC_DB_URL",
    data_mode_env: str = "FINANCE_SYNC_DATA_MODE",
) -> SyncSettings:
    """
    Construct SyncSettings from the process environment.

    OAuth settings are optional at load time: the service can still serve
    health checks and background operations for an already signed-in user
    without them. Routes that start an interactive sign-in call
    `SyncSettings.require_oauth_config()` instead.

    Args:
        debounce_env: Env var holding the auto-sync quiet period in milliseconds.
        token_margin_env: Env var for the token expiry safety margin in seconds.
        timeout_env: Env var that overrides outbound request timeouts.
        max_attempts_env: Env var capping retries for idempotent Drive calls.
        database_url_env: Env var pointing the local store at a database URL.
        data_mode_env: Env var choosing which store backs the data access layer.
    """

    debounce_ms = _parse_int(os.getenv(debounce_env), DEFAULT_DEBOUNCE_MS, debounce_env)
    if debounce_ms < 0:
        raise SyncSettingsError(f"{debounce_env} must not be negative (received '{debounce_ms}')")

    token_margin = _parse_float(os.getenv(token_margin_env), DEFAULT_TOKEN_MARGIN_SECONDS, token_margin_env)
    timeout_seconds = _parse_float(os.getenv(timeout_env), DEFAULT_HTTP_TIMEOUT_SECONDS, timeout_env)
    max_attempts = _parse_int(os.getenv(max_attempts_env), DEFAULT_HTTP_MAX_ATTEMPTS, max_attempts_env)
    data_mode = (os.getenv(data_mode_env) or DEFAULT_DATA_MODE).strip().lower()
    if data_mode not in DATA_MODES:
        raise SyncSettingsError(f"{data_mode_env} must be one of {', '.join(DATA_MODES)} (received '{data_mode}')")

    return SyncSettings(
        debounce_seconds=debounce_ms / 1000.0,
        token_margin_seconds=token_margin,
        http_timeout_seconds=timeout_seconds,
        http_max_attempts=max(1, max_attempts),
        database_url=(os.getenv(database_url_env) or "").strip() or None,
        data_mode=data_mode,
        oauth=_build_oauth_config(),
    )


def _parse_float(raw_value: Optional[str], default: float, env_key: str) -> float:
    if raw_value is None or raw_value.strip() == "":
        return default

    try:
        return float(raw_value)
    except ValueError as exc:
        raise SyncSettingsError(f"{env_key} must be numeric (received '{raw_value}')") from exc


def _parse_int(raw_value: Optional[str], default: int, env_key: str) -> int:
    if raw_value is None or raw_value.strip() == "":
        return default

    try:
        return int(raw_value)
    except ValueError as exc:
        raise SyncSettingsError(f"{env_key} must be an integer (received '{raw_value}')") from exc


def _missing_oauth_vars() -> list[str]:
    return [env_key for env_key in REQUIRED_OAUTH_ENV_VARS if not (os.getenv(env_key) or "").strip()]


def _build_oauth_config() -> Optional[OAuthConfig]:
    if _missing_oauth_vars():
        return None

    return OAuthConfig(
        client_id=os.environ["GOOGLE_CLIENT_ID"].strip(),
        client_secret=os.environ["GOOGLE_CLIENT_SECRET"].strip(),
        redirect_uri=os.environ["GOOGLE_REDIRECT_URI"].strip(),
    )
