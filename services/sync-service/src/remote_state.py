"""
Single-document state store in the Drive app-data space.

One file, `financetracker.db`, holds the entire application database as
RemoteState JSON. Reads never block the user: a missing file is created empty
and an unreadable one is treated as a fresh start (its content is first
quarantined beside it, once per distinct content, so nothing is silently
destroyed). Writes are whole document upserts; there is no locking and the
last writer wins. Exports copy whichever store is authoritative: the state
document itself, or the device store when one is wired in as `snapshot_source`.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable, Optional, Protocol

from shared.observability.privacy import document_fingerprint

from drive_transport import APP_DATA_SPACE, DriveTransport
from errors import CorruptedRemoteState, TransportError
from records import RemoteState, filename_timestamp, parse_timestamp, utc_now_iso
from schemas import dump_document, parse_remote_state

logger = logging.getLogger(__name__)

STATE_FILE_NAME = "financetracker.db"
EXPORT_FOLDER_NAME = "FinanceTracker"


class _HasId(Protocol):
    id: int | None


def next_id(records: Iterable[_HasId]) -> int:
    """Return 1 + the largest id in the collection (1 for an empty one)."""
    return max((record.id or 0 for record in records), default=0) + 1


class RemoteStateStore:
    def __init__(
        self,
        transport: DriveTransport,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        snapshot_source: Optional[Callable[[], Awaitable[RemoteState]]] = None,
    ) -> None:
        self._transport = transport
        self._clock = clock
        self._snapshot_source = snapshot_source
        self._quarantined: set[str] = set()

    async def read_state(self) -> RemoteState:
        file_id = await self._transport.find_file(STATE_FILE_NAME, APP_DATA_SPACE)
        if file_id is None:
            initial = RemoteState.empty()
            await self._transport.upload_file(dump_document(initial), STATE_FILE_NAME, APP_DATA_SPACE)
            logger.info({"event": "remote_state_initialized", "file_name": STATE_FILE_NAME})
            return initial

        content = await self._transport.download_file(file_id)
        try:
            return parse_remote_state(content)
        except CorruptedRemoteState as exc:
            fingerprint = document_fingerprint(content)
            if fingerprint["sha256"] not in self._quarantined:
                logger.warning(
                    {
                        "event": "remote_state_corrupted",
                        "file_id": file_id,
                        "reason": exc.reason,
                        "content": fingerprint,
                    }
                )
                await self._quarantine(content, fingerprint["sha256"])
            return RemoteState.empty()

    async def write_state(self, state: RemoteState) -> RemoteState:
        state.last_modified = self._stamp(state.last_modified)
        body = dump_document(state)

        file_id = await self._transport.find_file(STATE_FILE_NAME, APP_DATA_SPACE)
        if file_id:
            await self._transport.update_file(file_id, body)
        else:
            await self._transport.upload_file(body, STATE_FILE_NAME, APP_DATA_SPACE)
        logger.debug({"event": "remote_state_written", **document_fingerprint(body)})
        return state

    next_id = staticmethod(next_id)

    async def export_snapshot_visible_folder(self) -> str:
        """Copy the current full state into a timestamped file in the visible folder."""
        folder_id = await self._transport.find_folder(EXPORT_FOLDER_NAME)
        if not folder_id:
            folder_id = await self._transport.create_folder(EXPORT_FOLDER_NAME)

        state = await self._snapshot_source() if self._snapshot_source else await self.read_state()
        state.last_modified = state.last_modified or utc_now_iso(self._clock())
        file_name = f"financetracker_{filename_timestamp(self._clock())}.db"
        file_id = await self._transport.upload_file(dump_document(state), file_name, folder_id)
        logger.info({"event": "remote_state_exported", "file_name": file_name, "file_id": file_id})
        return file_id

    def _stamp(self, previous: str | None) -> str:
        now = self._clock()
        previous_moment = parse_timestamp(previous)
        if previous_moment is not None and previous_moment > now:
            return utc_now_iso(previous_moment)
        return utc_now_iso(now)

    async def _quarantine(self, content: str, content_hash: str) -> None:
        name = f"financetracker_corrupt_{filename_timestamp(self._clock())}.db"
        try:
            await self._transport.upload_file(content, name, APP_DATA_SPACE)
        except TransportError as exc:
            # Not remembered, so the next read tries again.
            logger.warning({"event": "remote_state_quarantine_failed", "error": str(exc)})
            return
        self._quarantined.add(content_hash)
