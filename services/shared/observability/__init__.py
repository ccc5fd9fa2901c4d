"""
Logging guardrails shared by the sync service.

Every log line carries the request or sync-run correlation ID, and tokens,
identities and synced documents are only logged through the helpers in
`privacy`.
"""

from .privacy import IDENTITY_LOG_KEYS, document_fingerprint, hash_payload, mask_token, redact_fields
from .telemetry import (
    CORRELATION_ID_HEADER,
    RequestContextToken,
    bind_request_context,
    configure_logging,
    ensure_request_id,
    reset_request_context,
    setup_telemetry,
    sync_run,
)

__all__ = [
    "IDENTITY_LOG_KEYS",
    "document_fingerprint",
    "hash_payload",
    "mask_token",
    "redact_fields",
    "CORRELATION_ID_HEADER",
    "RequestContextToken",
    "bind_request_context",
    "configure_logging",
    "ensure_request_id",
    "reset_request_context",
    "setup_telemetry",
    "sync_run",
]
