"""End-to-end sync flows: local mutation → debounced backup → Drive, and restore self-healing."""

from __future__ import annotations

import asyncio
from dataclasses import asdict
from pathlib import Path

import pytest
from backup import BACKUP_FILE_NAME, BACKUP_FOLDER_NAME
from container import build_container
from fake_google import TEST_OAUTH, FakeGoogleApi, sign_in
from records import Currency, Transaction
from schemas import parse_backup_envelope
from seed import seed_defaults
from shared.sync_settings import SyncSettings

pytestmark = pytest.mark.integration


@pytest.fixture
def google_api() -> FakeGoogleApi:
    return FakeGoogleApi()


@pytest.fixture
def container(tmp_path: Path, google_api: FakeGoogleApi):
    settings = SyncSettings(
        debounce_seconds=0.8,
        token_margin_seconds=5.0,
        http_timeout_seconds=5.0,
        http_max_attempts=2,
        database_url=f"sqlite:///{tmp_path / 'device.db'}",
        oauth=TEST_OAUTH,
    )
    built = build_container(settings, transport=google_api.transport, backoff_factor=0)
    built.scheduler.watch_auth()
    yield built
    built.close()


def _backup_file(google_api: FakeGoogleApi):
    folder = google_api.folder(BACKUP_FOLDER_NAME)
    return google_api.find(BACKUP_FILE_NAME, folder.id) if folder else None


@pytest.mark.anyio
async def test_added_transaction_reaches_drive_and_survives_sign_out(container, google_api: FakeGoogleApi) -> None:
    await seed_defaults(container.data)
    await sign_in(container)
    assert container.scheduler.running is True

    await container.data.add_transaction(
        Transaction(amount=50, type="expense", category_id=1, transaction_date="2024-01-15")
    )
    await asyncio.sleep(1.0)
    await container.scheduler.wait_idle()

    backup = _backup_file(google_api)
    assert backup is not None
    envelope = parse_backup_envelope(backup.content)
    assert [item.amount for item in envelope.transactions] == [50]
    remote_before_sign_out = backup.content

    await container.broker.sign_out()

    assert await container.data.get_transactions() == []
    assert container.scheduler.running is False
    assert _backup_file(google_api).content == remote_before_sign_out


@pytest.mark.anyio
async def test_restore_over_garbage_keeps_local_data_and_heals_remote(container, google_api: FakeGoogleApi) -> None:
    await sign_in(container)
    container.scheduler.stop()
    currency_id = await container.data.add_currency(Currency(code="MUR", name="Mauritian Rupee", symbol="Rs"))
    await container.data.update_app_settings({"default_currency_id": currency_id})
    await container.data.add_transaction(
        Transaction(amount=75.5, type="income", category_id=1, transaction_date="2024-02-01")
    )
    folder_id = google_api.put_folder(BACKUP_FOLDER_NAME)
    google_api.put_file(BACKUP_FILE_NAME, "<<not json at all>>", folder_id)
    local_before = (
        await container.data.get_transactions(),
        await container.data.get_currencies(),
        await container.data.get_app_settings(),
    )

    report = await container.orchestrator.restore_from_drive()

    assert report.status == "repaired"
    local_after = (
        await container.data.get_transactions(),
        await container.data.get_currencies(),
        await container.data.get_app_settings(),
    )
    assert local_after == local_before

    healed = parse_backup_envelope(google_api.content_of(BACKUP_FILE_NAME, folder_id))
    assert healed.transactions == local_after[0]
    assert healed.currencies == local_after[1]
    assert asdict(healed.settings) == asdict(local_after[2])
