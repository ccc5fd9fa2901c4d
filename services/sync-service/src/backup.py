"""
Explicit backup and restore against the visible `FinanceTracker` folder.

Backups are versioned envelopes, a different JSON shape from the live state
document in the app-data space. A backup overwrites the single well-known file
unconditionally. A restore is additive: every record in the envelope is added
to local storage with a fresh id, and references between records are remapped
to those new ids. A malformed backup is never imported; it is replaced with a
snapshot of local data instead.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, TypeVar

from shared.observability.privacy import document_fingerprint

from data_access import LocalDataAccess
from drive_transport import DriveTransport
from errors import (
    BackupFailed,
    CorruptedRemoteState,
    InteractiveAuthRequired,
    RestoreFailed,
    RestoreRecordError,
    TransportError,
)
from records import BackupData, filename_timestamp, parse_timestamp, utc_now_iso
from schemas import dump_document, parse_backup_envelope

logger = logging.getLogger(__name__)

BACKUP_FOLDER_NAME = "FinanceTracker"
BACKUP_FILE_NAME = "financetracker.db"
BACKUP_FORMAT_VERSION = "1.0.0"
BACKUP_TRANSACTION_LIMIT = 1000

T = TypeVar("T")


class CoalescingRunner(Generic[T]):
    """Single-slot runner: at most one run in flight and at most one queued.

    A call arriving while a run is in flight queues one follow-up run (shared
    by every caller that arrives before it starts) and waits for that run.
    """

    def __init__(self, action: Callable[[], Awaitable[T]]) -> None:
        self._action = action
        self._task: Optional[asyncio.Task] = None
        self._next: Optional[asyncio.Future] = None

    @property
    def busy(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run(self) -> T:
        loop = asyncio.get_running_loop()
        if self.busy:
            if self._next is None:
                self._next = _new_future(loop)
            return await asyncio.shield(self._next)

        current = _new_future(loop)
        self._task = loop.create_task(self._drain(current))
        return await asyncio.shield(current)

    async def _drain(self, current: asyncio.Future) -> None:
        while current is not None:
            try:
                result = await self._action()
            except asyncio.CancelledError:
                current.cancel()
                if self._next is not None:
                    self._next.cancel()
                    self._next = None
                raise
            except Exception as exc:
                current.set_exception(exc)
            else:
                current.set_result(result)
            current, self._next = self._next, None


def _new_future(loop: asyncio.AbstractEventLoop) -> asyncio.Future:
    future = loop.create_future()
    # Retrieve the outcome so a waiter that went away does not leave an unread exception.
    future.add_done_callback(lambda done: done.cancelled() or done.exception())
    return future


@dataclass
class RestoreReport:
    status: str  # "restored" | "seeded" | "repaired"
    currencies: int = 0
    categories: int = 0
    transactions: int = 0
    settings_applied: bool = False
    skipped: List[RestoreRecordError] = field(default_factory=list)
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "restored": {
                "currencies": self.currencies,
                "categories": self.categories,
                "transactions": self.transactions,
                "settings": self.settings_applied,
            },
            "skipped": [
                {"kind": item.kind, "id": item.record_id, "error": str(item.cause)} for item in self.skipped
            ],
            "reason": self.reason,
        }


class BackupOrchestrator:
    def __init__(
        self,
        data: LocalDataAccess,
        transport: DriveTransport,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._data = data
        self._transport = transport
        self._clock = clock
        # Backups and restores never overlap.
        self._lock = asyncio.Lock()
        self._backup_runner: CoalescingRunner[str] = CoalescingRunner(self._backup_once)

    @property
    def backup_in_progress(self) -> bool:
        return self._backup_runner.busy

    async def backup_to_drive(self) -> str:
        """Overwrite the visible backup file with local data; returns the backup timestamp."""
        return await self._backup_runner.run()

    async def restore_from_drive(self) -> RestoreReport:
        async with self._lock:
            logger.info({"event": "restore_started"})
            try:
                report = await self._restore_once()
            except InteractiveAuthRequired:
                raise
            except Exception as exc:
                logger.error({"event": "restore_failed", "error": str(exc)})
                raise RestoreFailed(f"Restore failed: {exc}") from exc

        logger.info({"event": "restore_completed", **report.to_dict()})
        return report

    async def get_last_backup_time(self) -> Optional[datetime]:
        settings = await self._data.get_app_settings()
        if settings is None:
            return None
        return parse_timestamp(settings.last_backup_time)

    async def set_last_backup_time(self, when: datetime) -> None:
        await self._data.update_app_settings({"last_backup_time": utc_now_iso(when)}, notify=False)

    async def _backup_once(self) -> str:
        async with self._lock:
            logger.info({"event": "backup_started"})
            try:
                envelope = await self._snapshot()
                body = dump_document(envelope)
                folder_id = await self._ensure_folder()
                file_id = await self._transport.find_file(BACKUP_FILE_NAME, folder_id)
                if file_id:
                    await self._transport.update_file(file_id, body)
                else:
                    file_id = await self._transport.upload_file(body, BACKUP_FILE_NAME, folder_id)
                await self.set_last_backup_time(self._clock())
            except InteractiveAuthRequired:
                raise
            except Exception as exc:
                logger.error({"event": "backup_failed", "error": str(exc)})
                raise BackupFailed(f"Backup failed: {exc}") from exc

        logger.info(
            {
                "event": "backup_completed",
                "file_id": file_id,
                **document_fingerprint(body),
            }
        )
        return envelope.timestamp

    async def _restore_once(self) -> RestoreReport:
        folder_id = await self._ensure_folder()
        status = "restored"
        file_id = await self._transport.find_file(BACKUP_FILE_NAME, folder_id)
        if not file_id:
            seed = dump_document(await self._snapshot())
            file_id = await self._transport.upload_file(seed, BACKUP_FILE_NAME, folder_id)
            status = "seeded"
            logger.info({"event": "backup_seeded_from_local", "file_id": file_id})

        content = await self._transport.download_file(file_id)
        try:
            envelope = parse_backup_envelope(content)
        except CorruptedRemoteState as exc:
            logger.warning(
                {
                    "event": "backup_corrupted",
                    "file_id": file_id,
                    "reason": exc.reason,
                    "content": document_fingerprint(content),
                }
            )
            await self._repair(file_id, folder_id)
            return RestoreReport(status="repaired", reason=exc.reason)

        report = await self._apply(envelope)
        report.status = status
        return report

    async def _repair(self, file_id: str, folder_id: str) -> None:
        body = dump_document(await self._snapshot())
        try:
            await self._transport.update_file(file_id, body)
            logger.info({"event": "backup_repaired", "file_id": file_id})
            return
        except TransportError as exc:
            logger.warning({"event": "backup_repair_update_failed", "file_id": file_id, "error": str(exc)})

        name = f"financetracker_repaired_{filename_timestamp(self._clock())}.db"
        repaired_id = await self._transport.upload_file(body, name, folder_id)
        logger.info({"event": "backup_repaired_beside", "file_name": name, "file_id": repaired_id})

    async def _apply(self, envelope: BackupData) -> RestoreReport:
        report = RestoreReport(status="restored")

        currency_ids: Dict[int, int] = {}
        for currency in envelope.currencies:
            try:
                new_id = await self._data.add_currency(replace(currency, id=None))
            except Exception as exc:
                self._skip(report, RestoreRecordError("currency", currency.id, exc))
                continue
            if currency.id is not None:
                currency_ids[currency.id] = new_id
            report.currencies += 1

        category_ids: Dict[int, int] = {}
        for category in envelope.categories:
            try:
                new_id = await self._data.add_category(replace(category, id=None))
            except Exception as exc:
                self._skip(report, RestoreRecordError("category", category.id, exc))
                continue
            if category.id is not None:
                category_ids[category.id] = new_id
            report.categories += 1

        for transaction in envelope.transactions:
            restored = replace(
                transaction,
                id=None,
                category_id=category_ids.get(transaction.category_id, transaction.category_id),
            )
            try:
                await self._data.add_transaction(restored)
            except Exception as exc:
                self._skip(report, RestoreRecordError("transaction", transaction.id, exc))
                continue
            report.transactions += 1

        if envelope.settings is not None:
            settings = envelope.settings
            changes = {
                "default_currency_id": currency_ids.get(settings.default_currency_id, settings.default_currency_id),
                "is_hidden": settings.is_hidden,
            }
            try:
                await self._data.update_app_settings(changes)
                report.settings_applied = True
            except Exception as exc:
                self._skip(report, RestoreRecordError("settings", settings.id, exc))

        return report

    @staticmethod
    def _skip(report: RestoreReport, error: RestoreRecordError) -> None:
        logger.warning({"event": "restore_record_skipped", "kind": error.kind, "id": error.record_id, "error": str(error.cause)})
        report.skipped.append(error)

    async def _snapshot(self) -> BackupData:
        transactions = await self._data.get_transactions(BACKUP_TRANSACTION_LIMIT)
        categories = await self._data.get_categories()
        currencies = await self._data.get_currencies()
        settings = await self._data.get_app_settings()
        if settings is None:
            # A valid envelope always carries settings; create the singleton quietly.
            default_currency_id = next((item.id for item in currencies if item.is_active), None) or 1
            settings = await self._data.update_app_settings({"default_currency_id": default_currency_id}, notify=False)
        return BackupData(
            transactions=transactions,
            categories=categories,
            currencies=currencies,
            settings=settings,
            timestamp=utc_now_iso(self._clock()),
            version=BACKUP_FORMAT_VERSION,
        )

    async def _ensure_folder(self) -> str:
        folder_id = await self._transport.find_folder(BACKUP_FOLDER_NAME)
        if not folder_id:
            folder_id = await self._transport.create_folder(BACKUP_FOLDER_NAME)
        return folder_id
