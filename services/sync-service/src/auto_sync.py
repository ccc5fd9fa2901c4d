"""
Change-driven background backups.

Local mutations arrive in bursts; the scheduler folds each burst into a single
backup once the data has been quiet for the debounce delay. It never starts an
interactive sign-in: without an identity marker and a live token the backup is
skipped, and every failure stops at this boundary as a log line.
"""

from __future__ import annotations

import logging
from typing import Callable

from shared.observability import sync_run
from shared.sync_settings import DEFAULT_DEBOUNCE_MS

from backup import BackupOrchestrator
from debounce import Debouncer
from errors import InteractiveAuthRequired
from events import AUTH_CHANGED, DATA_CHANGED, Event, EventBus
from token_broker import TokenBroker

logger = logging.getLogger(__name__)


class AutoSyncScheduler:
    def __init__(
        self,
        bus: EventBus,
        broker: TokenBroker,
        orchestrator: BackupOrchestrator,
        *,
        delay_seconds: float = DEFAULT_DEBOUNCE_MS / 1000,
    ) -> None:
        self._bus = bus
        self._broker = broker
        self._orchestrator = orchestrator
        self._debouncer = Debouncer(delay_seconds, self._run_backup)
        self._running = False
        self._watching = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> Callable[[], None]:
        """Begin listening for data changes; calling it again is a no-op."""
        if not self._running and not self._debouncer.disposed:
            self._bus.subscribe(DATA_CHANGED, self._on_data_changed)
            self._running = True
            logger.info({"event": "auto_sync_started"})
        return self.stop

    def stop(self) -> None:
        self._debouncer.cancel()
        if self._running:
            self._bus.unsubscribe(DATA_CHANGED, self._on_data_changed)
            self._running = False
            logger.info({"event": "auto_sync_stopped"})

    def start_if_ready(self) -> bool:
        if self._ready():
            self.start()
            return True
        logger.debug({"event": "auto_sync_not_ready"})
        return False

    def watch_auth(self) -> Callable[[], None]:
        """Follow sign-in and sign-out; returns a callable that stops watching."""
        if not self._watching:
            self._bus.subscribe(AUTH_CHANGED, self._on_auth_changed)
            self._watching = True
        return self._unwatch

    def close(self) -> None:
        self.stop()
        self._unwatch()
        self._debouncer.dispose()

    async def wait_idle(self) -> None:
        await self._debouncer.wait_idle()

    def _unwatch(self) -> None:
        if self._watching:
            self._bus.unsubscribe(AUTH_CHANGED, self._on_auth_changed)
            self._watching = False

    def _ready(self) -> bool:
        return self._broker.is_authenticated() and self._broker.has_valid_access_token()

    def _on_data_changed(self, event: Event) -> None:
        self._debouncer.trigger()

    def _on_auth_changed(self, event: Event) -> None:
        if event.payload.get("authenticated"):
            self.start_if_ready()
        else:
            self.stop()

    async def _run_backup(self) -> None:
        with sync_run() as run_id:
            try:
                if not self._ready():
                    logger.debug({"event": "auto_sync_skipped", "reason": "no_valid_session"})
                    return
                timestamp = await self._orchestrator.backup_to_drive()
                logger.info({"event": "auto_sync_completed", "backup_timestamp": timestamp, "sync_run_id": run_id})
            except InteractiveAuthRequired:
                logger.debug({"event": "auto_sync_skipped", "reason": "interactive_auth_required"})
            except Exception as exc:
                logger.warning({"event": "auto_sync_failed", "error": str(exc)})

