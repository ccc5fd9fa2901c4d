"""
Shared utilities for Finance Sync services.

This package contains code shared across services and scripts:
- sync_settings: Environment-driven configuration for the sync core
- observability: Telemetry, logging, and privacy utilities
"""

from .sync_settings import (
    DATA_MODES,
    DEFAULT_DEBOUNCE_MS,
    REQUIRED_OAUTH_ENV_VARS,
    OAuthConfig,
    SyncSettings,
    SyncSettingsError,
    load_sync_settings,
)

__all__ = [
    "DATA_MODES",
    "DEFAULT_DEBOUNCE_MS",
    "REQUIRED_OAUTH_ENV_VARS",
    "OAuthConfig",
    "SyncSettings",
    "SyncSettingsError",
    "load_sync_settings",
]
