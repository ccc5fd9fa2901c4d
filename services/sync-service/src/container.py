"""Composition root: builds one instance of every sync service for the process."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import partial
from datetime import datetime, timezone
from typing import Callable, Optional

import httpx
from sqlalchemy.engine import Engine

from shared.sync_settings import SyncSettings, load_sync_settings

from auto_sync import AutoSyncScheduler
from backup import BackupOrchestrator
from data_access import LocalDataAccess, RemoteDataService, snapshot_state
from drive_transport import DRIVE_API_BASE, DRIVE_UPLOAD_BASE, DriveTransport
from events import EventBus
from http_client import DEFAULT_TIMEOUT, ResilientHttpClient
from persistence.database import create_db_engine, create_session_factory, init_db
from persistence.repository import IdentityRepository, LocalRepository
from remote_state import RemoteStateStore
from token_broker import GoogleOAuthClient, TokenBroker

logger = logging.getLogger(__name__)


@dataclass
class SyncContainer:
    settings: SyncSettings
    bus: EventBus
    engine: Engine
    local_store: LocalRepository
    identity_store: IdentityRepository
    oauth_client: GoogleOAuthClient
    broker: TokenBroker
    transport: DriveTransport
    remote_state: RemoteStateStore
    data: LocalDataAccess
    orchestrator: BackupOrchestrator
    scheduler: AutoSyncScheduler

    def close(self) -> None:
        self.scheduler.close()
        self.engine.dispose()


def build_container(
    settings: Optional[SyncSettings] = None,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    token_clock: Optional[Callable[[], float]] = None,
    clock: Optional[Callable[[], datetime]] = None,
    backoff_factor: Optional[float] = None,
    api_base: str = DRIVE_API_BASE,
    upload_base: str = DRIVE_UPLOAD_BASE,
) -> SyncContainer:
    """Wire the services together; `transport` swaps the network for tests."""
    settings = settings or load_sync_settings()
    wall_clock = clock or (lambda: datetime.now(timezone.utc))

    timeout = (
        httpx.Timeout(settings.http_timeout_seconds, connect=DEFAULT_TIMEOUT.connect, pool=DEFAULT_TIMEOUT.pool)
        if settings.http_timeout_seconds
        else DEFAULT_TIMEOUT
    )
    client_options = {}
    if backoff_factor is not None:
        client_options["backoff_factor"] = backoff_factor
    http_client = ResilientHttpClient(
        timeout=timeout,
        max_attempts=settings.http_max_attempts,
        transport=transport,
        **client_options,
    )

    engine = create_db_engine(settings.database_url)
    init_db(engine)
    session_factory = create_session_factory(engine)

    bus = EventBus()
    local_store = LocalRepository(session_factory, bus)
    identity_store = IdentityRepository(session_factory)
    oauth_client = GoogleOAuthClient(settings.oauth, http_client)

    broker_options = {"expiry_margin_seconds": settings.token_margin_seconds}
    if token_clock is not None:
        broker_options["clock"] = token_clock
    broker = TokenBroker(oauth_client, identity_store, local_store, bus, **broker_options)

    drive = DriveTransport(broker, http_client, api_base=api_base, upload_base=upload_base)
    if settings.data_mode == "local":
        # Nothing writes the app-data document in local mode; exports read the device store.
        remote_state = RemoteStateStore(drive, clock=wall_clock, snapshot_source=partial(snapshot_state, local_store))
        data: LocalDataAccess = local_store
    else:
        remote_state = RemoteStateStore(drive, clock=wall_clock)
        data = RemoteDataService(remote_state, bus)
    orchestrator = BackupOrchestrator(data, drive, clock=wall_clock)
    scheduler = AutoSyncScheduler(bus, broker, orchestrator, delay_seconds=settings.debounce_seconds)

    logger.info(
        {
            "event": "sync_container_built",
            "data_mode": settings.data_mode,
            "oauth_configured": oauth_client.configured,
            "debounce_seconds": settings.debounce_seconds,
        }
    )
    return SyncContainer(
        settings=settings,
        bus=bus,
        engine=engine,
        local_store=local_store,
        identity_store=identity_store,
        oauth_client=oauth_client,
        broker=broker,
        transport=drive,
        remote_state=remote_state,
        data=data,
        orchestrator=orchestrator,
        scheduler=scheduler,
    )
