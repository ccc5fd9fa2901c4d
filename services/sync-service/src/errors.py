"""Exception taxonomy for the sync core."""

from __future__ import annotations


class SyncError(Exception):
    """Base class for every error raised by the sync core."""


class InteractiveAuthRequired(SyncError):
    """No usable access token; only a user-initiated sign-in can obtain one."""

    code = "interactive_auth_required"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or "Interactive authentication is required")


class TransportError(SyncError):
    """A cloud API call failed; `status` is None when no response was received."""

    def __init__(self, operation: str, status: int | None, detail: str = "") -> None:
        self.operation = operation
        self.status = status
        self.detail = detail
        status_label = status if status is not None else "no response"
        message = f"{operation} failed: {status_label}"
        if detail:
            message = f"{message} {detail}"
        super().__init__(message)


class CorruptedRemoteState(SyncError):
    """The remote document could not be parsed or failed structural validation."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Remote document is corrupted: {reason}")


class RecordNotFound(SyncError):
    def __init__(self, kind: str, record_id: int | None) -> None:
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind.capitalize()} not found: {record_id}")


class RestoreRecordError(SyncError):
    """One record of a restore batch could not be applied; the batch continues."""

    def __init__(self, kind: str, record_id: int | str | None, cause: BaseException) -> None:
        self.kind = kind
        self.record_id = record_id
        self.cause = cause
        super().__init__(f"Failed to restore {kind} {record_id}: {cause}")


class BackupFailed(SyncError):
    pass


class RestoreFailed(SyncError):
    pass
