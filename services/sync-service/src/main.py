import logging
import os
import secrets
import sys
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import date
from pathlib import Path
from typing import Any, Dict, List

from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse

SRC_DIR = Path(__file__).resolve().parent
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

SERVICES_ROOT = SRC_DIR.parents[1]
if str(SERVICES_ROOT) not in sys.path:
    sys.path.insert(0, str(SERVICES_ROOT))

from shared.observability.telemetry import bind_request_context, ensure_request_id, reset_request_context, setup_telemetry
from shared.sync_settings import SyncSettingsError

from analytics import income_and_expense_for_period, income_by_category, spending_by_category
from container import SyncContainer, build_container
from errors import BackupFailed, InteractiveAuthRequired, RestoreFailed, SyncError
from seed import seed_defaults
from token_broker import AuthorizationCodeConsent

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the service graph (unless one was provided) and resume auto-sync for a live session."""
    container = getattr(app.state, "container", None)
    if container is None:
        container = build_container()
        app.state.container = container
    app.state.oauth_states = set()
    container.scheduler.watch_auth()
    container.scheduler.start_if_ready()
    try:
        yield
    finally:
        container.close()
        app.state.container = None


app = FastAPI(title="Finance Sync Service", lifespan=lifespan)
setup_telemetry(app, service_name="sync-service")

DEFAULT_CORS_ORIGINS: List[str] = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
CORS_ENV_KEY = "FINANCE_SYNC_CORS_ORIGINS"


def _resolve_cors_origins() -> List[str]:
    """Comma-separated origins from the env, falling back to the local web app."""
    raw_value = os.getenv(CORS_ENV_KEY)
    if not raw_value:
        return DEFAULT_CORS_ORIGINS
    origins = [origin.strip() for origin in raw_value.split(",") if origin.strip()]
    if any(origin == "*" for origin in origins):
        return ["*"]
    return origins or DEFAULT_CORS_ORIGINS


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    request_id = ensure_request_id(request)
    token = bind_request_context(request_id)
    try:
        response = await call_next(request)
        response.headers.setdefault("x-request-id", request_id)
        return response
    finally:
        reset_request_context(token)


app.add_middleware(
    CORSMiddleware,
    allow_origins=_resolve_cors_origins(),
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=False,
)


def error_response(status_code: int, error_code: str, details: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error_code, "details": details},
    )


@app.exception_handler(InteractiveAuthRequired)
async def interactive_auth_required_handler(request: Request, exc: InteractiveAuthRequired) -> JSONResponse:
    return error_response(401, InteractiveAuthRequired.code, "Sign in to connect your Google Drive.")


def get_container(request: Request) -> SyncContainer:
    return request.app.state.container



@app.get("/health")
def health_check() -> dict:
    """Reports sync service uptime so orchestrators can confirm it is available."""
    return {"status": "ok", "service": "sync-service"}


@app.get("/auth/login", response_model=None)
def login(request: Request) -> RedirectResponse | JSONResponse:
    """Sends the user to the consent screen; the only entry point to interactive sign-in."""
    container = get_container(request)
    try:
        container.settings.require_oauth_config()
    except SyncSettingsError as exc:
        logger.error({"event": "sign_in_not_configured", "error": str(exc)})
        return error_response(500, "sync_not_configured", str(exc))

    state = secrets.token_urlsafe(16)
    request.app.state.oauth_states.add(state)
    return RedirectResponse(container.oauth_client.authorization_url(state), status_code=307)


@app.get("/auth/callback", response_model=None)
async def auth_callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
) -> Dict[str, Any] | JSONResponse:
    container = get_container(request)
    if error:
        return error_response(400, "consent_denied", f"Google sign-in was not completed: {error}")
    if not code:
        return error_response(400, "code_required", "Authorization code is required.")

    pending_states = request.app.state.oauth_states
    if not state or state not in pending_states:
        return error_response(400, "invalid_state", "Sign-in state did not match; start again from /auth/login.")
    pending_states.discard(state)

    try:
        identity = await container.broker.sign_in(AuthorizationCodeConsent(container.oauth_client, code))
    except SyncSettingsError as exc:
        return error_response(500, "sync_not_configured", str(exc))
    except SyncError as exc:
        logger.error({"event": "sign_in_failed", "error": str(exc)})
        return error_response(502, "sign_in_failed", str(exc))

    try:
        seeded = await seed_defaults(container.data)
    except SyncError as exc:
        logger.warning({"event": "seed_defaults_failed", "error": str(exc)})
        seeded = None

    container.scheduler.start_if_ready()
    return {"authenticated": True, "user": asdict(identity), "seeded": seeded}


@app.get("/auth/status")
def auth_status(request: Request) -> Dict[str, Any]:
    container = get_container(request)
    user = container.broker.current_user()
    return {
        "authenticated": container.broker.is_authenticated(),
        "has_valid_token": container.broker.has_valid_access_token(),
        "user": asdict(user) if user else None,
        "auto_sync_running": container.scheduler.running,
    }


@app.post("/auth/signout")
async def sign_out(request: Request) -> Dict[str, Any]:
    container = get_container(request)
    await container.broker.sign_out()
    return {"authenticated": False}


@app.post("/sync/backup", response_model=None)
async def backup(request: Request) -> Dict[str, Any] | JSONResponse:
    container = get_container(request)
    try:
        timestamp = await container.orchestrator.backup_to_drive()
    except BackupFailed as exc:
        return error_response(502, "backup_failed", str(exc))
    return {"status": "ok", "timestamp": timestamp}


@app.post("/sync/restore", response_model=None)
async def restore(request: Request) -> Dict[str, Any] | JSONResponse:
    container = get_container(request)
    try:
        report = await container.orchestrator.restore_from_drive()
    except RestoreFailed as exc:
        return error_response(502, "restore_failed", str(exc))
    return report.to_dict()


@app.post("/sync/export", response_model=None)
async def export_snapshot(request: Request) -> Dict[str, Any] | JSONResponse:
    container = get_container(request)
    try:
        file_id = await container.remote_state.export_snapshot_visible_folder()
    except InteractiveAuthRequired:
        raise
    except SyncError as exc:
        logger.error({"event": "export_failed", "error": str(exc)})
        return error_response(502, "export_failed", f"Export failed: {exc}")
    return {"status": "ok", "file_id": file_id}


@app.get("/sync/status")
async def sync_status(request: Request) -> Dict[str, Any]:
    container = get_container(request)
    last_backup = await container.orchestrator.get_last_backup_time()
    return {
        "last_backup_time": last_backup.isoformat() if last_backup else None,
        "auto_sync_running": container.scheduler.running,
        "backup_in_progress": container.orchestrator.backup_in_progress,
    }


@app.get("/analytics")
async def analytics(
    request: Request,
    start_date: date = Query(...),
    end_date: date = Query(...),
) -> Dict[str, Any]:
    """Income/expense totals and per-category breakdowns for an inclusive date range."""
    container = get_container(request)
    start, end = start_date.isoformat(), end_date.isoformat()
    totals = await income_and_expense_for_period(container.data, start, end)
    spending = await spending_by_category(container.data, start, end)
    income = await income_by_category(container.data, start, end)
    return {
        "summary": {"income": totals.income, "expense": totals.expense, "net": totals.net},
        "spending_by_category": [asdict(item) for item in spending],
        "income_by_category": [asdict(item) for item in income],
    }
