"""Pytest configuration for sync-service tests.

Ensures the service's own src directory (and the shared package) take
precedence in sys.path, and provides a container wired to an in-memory
Google API.
"""

import sys
from pathlib import Path

import pytest

SERVICE_SRC = Path(__file__).resolve().parents[1] / "src"
SERVICES_ROOT = Path(__file__).resolve().parents[2]
for path in (SERVICES_ROOT, SERVICE_SRC):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from shared.sync_settings import SyncSettings  # noqa: E402

from container import build_container  # noqa: E402
from fake_google import TEST_OAUTH, FakeGoogleApi  # noqa: E402


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def google_api() -> FakeGoogleApi:
    return FakeGoogleApi()


def make_settings(tmp_path: Path, **overrides) -> SyncSettings:
    values = {
        "debounce_seconds": 0.8,
        "token_margin_seconds": 5.0,
        "http_timeout_seconds": 5.0,
        "http_max_attempts": 2,
        "database_url": f"sqlite:///{tmp_path / 'finance_sync.db'}",
        "data_mode": "local",
        "oauth": TEST_OAUTH,
    }
    values.update(overrides)
    return SyncSettings(**values)


@pytest.fixture
def settings(tmp_path: Path) -> SyncSettings:
    return make_settings(tmp_path)


@pytest.fixture
def container(settings: SyncSettings, google_api: FakeGoogleApi):
    built = build_container(settings, transport=google_api.transport, backoff_factor=0)
    yield built
    built.close()


@pytest.fixture
def remote_container(tmp_path: Path, google_api: FakeGoogleApi):
    """Client-only variant: the app-data document is the database."""
    built = build_container(
        make_settings(tmp_path, data_mode="remote"),
        transport=google_api.transport,
        backoff_factor=0,
    )
    yield built
    built.close()
