#!/usr/bin/env python3
"""
Diagnostic script to check the sync service environment variables.

Verifies the Google OAuth client settings needed for interactive sign-in and
reports the optional tuning knobs, then loads them the same way the service
does so parse errors show up here instead of at startup.
"""

import os
import sys
from pathlib import Path
from typing import Any

SERVICES_ROOT = Path(__file__).resolve().parents[1] / "services"
if str(SERVICES_ROOT) not in sys.path:
    sys.path.insert(0, str(SERVICES_ROOT))

from shared.sync_settings import SyncSettingsError, load_sync_settings  # noqa: E402

REQUIRED_VARS = {
    "GOOGLE_CLIENT_ID": "1234567890-abc.apps.googleusercontent.com",
    "GOOGLE_CLIENT_SECRET": "GOCSPX-...",
    "GOOGLE_REDIRECT_URI": "http://localhost:8005/auth/callback",
}

OPTIONAL_VARS = {
    "FINANCE_SYNC_DEBOUNCE_MS": "800",
    "FINANCE_SYNC_TOKEN_MARGIN_SECONDS": "5.0",
    "FINANCE_SYNC_HTTP_TIMEOUT_SECONDS": "30.0",
    "FINANCE_SYNC_HTTP_MAX_ATTEMPTS": "3",
    "FINANCE_SYNC_DB_URL": "sqlite:///services/sync-service/data/finance_sync.db",
    "FINANCE_SYNC_DATA_MODE": "local",
    "FINANCE_SYNC_CORS_ORIGINS": "http://localhost:3000,http://127.0.0.1:3000",
}


def check_env_var(key: str) -> dict[str, Any]:
    """Check if an environment variable is set, redacting secrets."""
    value = os.getenv(key)
    is_set = value is not None and value.strip() != ""

    result = {"key": key, "is_set": is_set, "value": value if is_set else None, "is_redacted": False}
    if is_set and "SECRET" in key.upper():
        result["value"] = f"{value[:7]}...{value[-4:]}" if len(value) > 11 else "***REDACTED***"
        result["is_redacted"] = True
    return result


def main() -> int:
    """Check sync environment variables and report status."""
    print("=" * 70)
    print("Sync Service Environment Variable Diagnostic")
    print("=" * 70)
    print()

    print("REQUIRED FOR SIGN-IN:")
    print("-" * 70)
    issues = []
    for key, example in REQUIRED_VARS.items():
        result = check_env_var(key)
        if result["is_set"]:
            print(f"✓ {key:45} = {result['value']}")
        else:
            print(f"✗ {key:45} = NOT SET (e.g. {example})")
            issues.append(f"{key} is not set")

    redirect_uri = os.getenv("GOOGLE_REDIRECT_URI", "")
    if redirect_uri and not redirect_uri.rstrip("/").endswith("/auth/callback"):
        issues.append("GOOGLE_REDIRECT_URI should point at the service's /auth/callback route")

    print()
    print("OPTIONAL VARIABLES:")
    print("-" * 70)
    for key, default in OPTIONAL_VARS.items():
        result = check_env_var(key)
        if result["is_set"]:
            print(f"✓ {key:45} = {result['value']}")
        else:
            print(f"○ {key:45} = NOT SET (default: {default})")

    try:
        load_sync_settings()
    except SyncSettingsError as exc:
        issues.append(str(exc))

    print()
    print("=" * 70)

    if issues:
        print("❌ ISSUES FOUND:")
        for issue in issues:
            print(f"   - {issue}")
        print()
        print("HOW TO FIX:")
        print("1. Create an OAuth client (type: Web application) in the Google Cloud console")
        print("2. Enable the Google Drive API for the same project")
        print("3. Add the redirect URI above to the client's authorized redirect URIs")
        print("4. Export the variables and restart the sync service")
        return 1

    print("✓ All required variables are set correctly!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
