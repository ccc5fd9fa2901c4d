import asyncio
import logging

import pytest
from auto_sync import AutoSyncScheduler
from backup import BACKUP_FILE_NAME, BACKUP_FOLDER_NAME
from debounce import Debouncer
from errors import BackupFailed, InteractiveAuthRequired
from events import AUTH_CHANGED, DATA_CHANGED
from fake_google import FakeGoogleApi, sign_in
from records import Transaction

QUICK_DELAY = 0.05


class RecordingOrchestrator:
    """Counts backup calls; delegates to a real orchestrator or raises when configured."""

    def __init__(self, inner=None, error: Exception | None = None) -> None:
        self.inner = inner
        self.error = error
        self.calls = []

    async def backup_to_drive(self) -> str:
        self.calls.append(asyncio.get_running_loop().time())
        if self.error is not None:
            raise self.error
        if self.inner is not None:
            return await self.inner.backup_to_drive()
        return "2024-01-15T10:30:05.123Z"


def _scheduler(container, orchestrator, delay: float = QUICK_DELAY) -> AutoSyncScheduler:
    return AutoSyncScheduler(container.bus, container.broker, orchestrator, delay_seconds=delay)


async def _settle(scheduler: AutoSyncScheduler, seconds: float) -> None:
    await asyncio.sleep(seconds)
    await scheduler.wait_idle()


@pytest.mark.anyio
async def test_burst_of_changes_produces_one_backup_after_quiet_period(container, google_api: FakeGoogleApi) -> None:
    await sign_in(container)
    orchestrator = RecordingOrchestrator(inner=container.orchestrator)
    scheduler = _scheduler(container, orchestrator, delay=0.8)
    scheduler.start()
    loop = asyncio.get_running_loop()

    for day in range(1, 6):
        await container.data.add_transaction(
            Transaction(category_id=1, amount=10.0, transaction_date=f"2024-01-0{day}", type="expense")
        )
        await asyncio.sleep(0.02)
    last_change = loop.time()

    await _settle(scheduler, 0.5)
    assert orchestrator.calls == []

    await _settle(scheduler, 0.6)
    scheduler.close()

    assert len(orchestrator.calls) == 1
    assert orchestrator.calls[0] - last_change >= 0.75
    folder = google_api.folder(BACKUP_FOLDER_NAME)
    assert len(google_api.json_of(BACKUP_FILE_NAME, folder.id)["transactions"]) == 5


@pytest.mark.anyio
async def test_backup_is_skipped_without_a_session(container, google_api: FakeGoogleApi) -> None:
    orchestrator = RecordingOrchestrator()
    scheduler = _scheduler(container, orchestrator)
    scheduler.start()

    container.bus.publish(DATA_CHANGED, {"entity": "transaction", "action": "add", "id": 1})
    await _settle(scheduler, QUICK_DELAY * 3)
    scheduler.close()

    assert orchestrator.calls == []
    assert google_api.requests == []


def test_start_is_reentrant_and_returns_stop(container) -> None:
    scheduler = _scheduler(container, RecordingOrchestrator())

    stop = scheduler.start()
    scheduler.start()

    assert scheduler.running is True
    assert container.bus.subscriber_count(DATA_CHANGED) == 1

    stop()

    assert scheduler.running is False
    assert container.bus.subscriber_count(DATA_CHANGED) == 0


@pytest.mark.anyio
async def test_stop_cancels_a_pending_backup(container) -> None:
    await sign_in(container)
    orchestrator = RecordingOrchestrator()
    scheduler = _scheduler(container, orchestrator)
    scheduler.start()

    container.bus.publish(DATA_CHANGED, {"entity": "category", "action": "add", "id": 1})
    scheduler.stop()
    await _settle(scheduler, QUICK_DELAY * 3)

    assert orchestrator.calls == []


@pytest.mark.anyio
async def test_start_if_ready_requires_sign_in(container) -> None:
    scheduler = _scheduler(container, RecordingOrchestrator())

    assert scheduler.start_if_ready() is False
    assert scheduler.running is False

    await sign_in(container)

    assert scheduler.start_if_ready() is True
    assert scheduler.running is True
    scheduler.close()


@pytest.mark.anyio
async def test_watch_auth_follows_sign_in_and_sign_out(container) -> None:
    scheduler = _scheduler(container, RecordingOrchestrator())
    unwatch = scheduler.watch_auth()

    await sign_in(container)
    assert scheduler.running is True

    await container.broker.sign_out()
    assert scheduler.running is False

    unwatch()
    assert container.bus.subscriber_count(AUTH_CHANGED) == 0
    scheduler.close()


@pytest.mark.anyio
async def test_failures_stop_at_the_scheduler_as_log_lines(container, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.DEBUG, logger="auto_sync")
    await sign_in(container)
    failing = RecordingOrchestrator(error=BackupFailed("Backup failed: upload_file failed: 500"))
    scheduler = _scheduler(container, failing)
    scheduler.start()

    container.bus.publish(DATA_CHANGED, {"entity": "transaction", "action": "add", "id": 1})
    await _settle(scheduler, QUICK_DELAY * 3)

    failing.error = InteractiveAuthRequired()
    container.bus.publish(DATA_CHANGED, {"entity": "transaction", "action": "add", "id": 2})
    await _settle(scheduler, QUICK_DELAY * 3)
    scheduler.close()

    events = [record.msg.get("event") for record in caplog.records if isinstance(record.msg, dict)]
    assert len(failing.calls) == 2
    assert "auto_sync_failed" in events
    assert "auto_sync_skipped" in events


def test_debouncer_rejects_negative_delay() -> None:
    async def action() -> None:
        return None

    with pytest.raises(ValueError):
        Debouncer(-1, action)


@pytest.mark.anyio
async def test_debouncer_folds_triggers_and_ignores_them_once_disposed() -> None:
    fired = []

    async def action() -> None:
        fired.append(True)

    debouncer = Debouncer(QUICK_DELAY, action)
    for _ in range(4):
        debouncer.trigger()
    assert debouncer.pending is True

    await asyncio.sleep(QUICK_DELAY * 3)
    await debouncer.wait_idle()
    assert fired == [True]
    assert debouncer.pending is False

    debouncer.dispose()
    debouncer.trigger()
    await asyncio.sleep(QUICK_DELAY * 3)

    assert fired == [True]
    assert debouncer.disposed is True


@pytest.mark.anyio
async def test_debouncer_logs_action_failures(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.ERROR, logger="debounce")

    async def action() -> None:
        raise RuntimeError("boom")

    debouncer = Debouncer(0, action)
    debouncer.trigger()
    await asyncio.sleep(0.05)
    await debouncer.wait_idle()

    failures = [record.msg for record in caplog.records if isinstance(record.msg, dict)]
    assert failures and failures[0]["event"] == "debounced_action_failed"
