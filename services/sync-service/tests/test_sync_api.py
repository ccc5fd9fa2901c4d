import asyncio
import json
from dataclasses import replace

import httpx
import pytest
from container import build_container
from fake_google import FakeGoogleApi
from fastapi.testclient import TestClient
from main import app
from records import Transaction
from seed import DEFAULT_CURRENCIES


@pytest.fixture
def client(container):
    app.state.container = container
    with TestClient(app) as test_client:
        yield test_client


def _sign_in(client: TestClient) -> dict:
    login = client.get("/auth/login", follow_redirects=False)
    state = httpx.URL(login.headers["location"]).params["state"]
    response = client.get("/auth/callback", params={"code": "auth-code", "state": state})
    assert response.status_code == 200
    return response.json()


def test_health_route_reports_sync_service(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "sync-service"}
    assert response.headers["x-request-id"]


def test_login_redirects_to_consent_screen(client: TestClient) -> None:
    response = client.get("/auth/login", follow_redirects=False)

    assert response.status_code == 307
    location = httpx.URL(response.headers["location"])
    assert location.host == "accounts.google.com"
    assert location.params["state"] in app.state.oauth_states


def test_login_without_oauth_config_reports_misconfiguration(
    settings, google_api: FakeGoogleApi
) -> None:
    unconfigured = build_container(replace(settings, oauth=None), transport=google_api.transport)
    app.state.container = unconfigured
    with TestClient(app) as client:
        response = client.get("/auth/login", follow_redirects=False)

    assert response.status_code == 500
    assert response.json()["error"] == "sync_not_configured"
    assert "requires the following env vars" in response.json()["details"]


def test_callback_signs_in_seeds_defaults_and_starts_auto_sync(client: TestClient) -> None:
    body = _sign_in(client)

    assert body["authenticated"] is True
    assert body["user"]["email"] == "test.user@example.com"
    assert body["seeded"]["currencies"] == len(DEFAULT_CURRENCIES)

    status = client.get("/auth/status").json()
    assert status["authenticated"] is True
    assert status["has_valid_token"] is True
    assert status["auto_sync_running"] is True


@pytest.mark.parametrize(
    ("params", "error_code"),
    [
        ({"error": "access_denied"}, "consent_denied"),
        ({"state": "anything"}, "code_required"),
        ({"code": "auth-code", "state": "forged"}, "invalid_state"),
    ],
)
def test_callback_rejects_incomplete_or_forged_requests(client: TestClient, params: dict, error_code: str) -> None:
    response = client.get("/auth/callback", params=params)

    assert response.status_code == 400
    assert response.json()["error"] == error_code
    assert client.get("/auth/status").json()["authenticated"] is False


def test_callback_with_rejected_code_reports_sign_in_failure(client: TestClient) -> None:
    login = client.get("/auth/login", follow_redirects=False)
    state = httpx.URL(login.headers["location"]).params["state"]

    response = client.get("/auth/callback", params={"code": "bad-code", "state": state})

    assert response.status_code == 502
    assert response.json()["error"] == "sign_in_failed"


def test_sync_routes_require_interactive_sign_in(client: TestClient, google_api: FakeGoogleApi) -> None:
    for path in ("/sync/backup", "/sync/restore", "/sync/export"):
        response = client.post(path)

        assert response.status_code == 401
        assert response.json()["error"] == "interactive_auth_required"
    assert google_api.drive_requests() == []


def test_backup_then_status_reports_last_backup(client: TestClient) -> None:
    _sign_in(client)

    backup = client.post("/sync/backup")
    status = client.get("/sync/status").json()

    assert backup.status_code == 200
    assert backup.json()["status"] == "ok"
    assert status["last_backup_time"] is not None
    assert status["backup_in_progress"] is False


def test_backup_failure_maps_to_bad_gateway(client: TestClient, google_api: FakeGoogleApi) -> None:
    _sign_in(client)
    google_api.fail_next("GET", "/drive/v3/files", 400)

    response = client.post("/sync/backup")

    assert response.status_code == 502
    assert response.json()["error"] == "backup_failed"
    assert response.json()["details"].startswith("Backup failed:")


def test_restore_and_export_routes(client: TestClient, google_api: FakeGoogleApi) -> None:
    _sign_in(client)

    restore = client.post("/sync/restore")
    export = client.post("/sync/export")

    assert restore.status_code == 200
    assert restore.json()["status"] == "seeded"
    assert restore.json()["skipped"] == []
    assert export.status_code == 200
    assert google_api.files[export.json()["file_id"]].name.startswith("financetracker_")
    exported = json.loads(google_api.files[export.json()["file_id"]].content)
    assert exported["transactions"] == []
    assert {item["code"] for item in exported["currencies"]} == {code for code, _, _ in DEFAULT_CURRENCIES}
    assert exported["settings"] is not None


def test_export_route_uploads_local_records(container, google_api: FakeGoogleApi) -> None:
    asyncio.run(
        container.data.add_transaction(
            Transaction(category_id=1, amount=50.0, transaction_date="2024-01-15", type="expense")
        )
    )
    app.state.container = container
    with TestClient(app) as client:
        _sign_in(client)
        export = client.post("/sync/export")

    assert export.status_code == 200
    exported = json.loads(google_api.files[export.json()["file_id"]].content)
    assert [item["amount"] for item in exported["transactions"]] == [50.0]
    assert exported["settings"]["default_currency_id"] is not None


def test_sign_out_clears_session_and_stops_auto_sync(client: TestClient, google_api: FakeGoogleApi) -> None:
    _sign_in(client)

    response = client.post("/auth/signout")
    status = client.get("/auth/status").json()

    assert response.json() == {"authenticated": False}
    assert len(google_api.revoked_tokens) == 1
    assert status["authenticated"] is False
    assert status["user"] is None
    assert status["auto_sync_running"] is False


def test_analytics_summarizes_an_inclusive_period(container) -> None:
    async def record() -> None:
        await container.data.add_transaction(
            Transaction(category_id=1, amount=100.0, transaction_date="2024-03-01", type="income")
        )
        await container.data.add_transaction(
            Transaction(category_id=2, amount=40.0, transaction_date="2024-03-31", type="expense")
        )

    asyncio.run(record())
    app.state.container = container
    with TestClient(app) as client:
        response = client.get("/analytics", params={"start_date": "2024-03-01", "end_date": "2024-03-31"})
        missing = client.get("/analytics", params={"start_date": "2024-03-01"})

    assert response.status_code == 200
    assert response.json()["summary"] == {"income": 100.0, "expense": 40.0, "net": 60.0}
    assert response.json()["spending_by_category"] == [{"name": "Unknown", "amount": 40.0}]
    assert missing.status_code == 422
