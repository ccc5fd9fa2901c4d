"""Log-safe views of tokens, identities and synced documents."""

import hashlib
import json
from collections.abc import Iterable, Mapping
from typing import Any

REDACTED = "[REDACTED]"
# Identity fields that may appear in logs; email and picture never do.
IDENTITY_LOG_KEYS = frozenset({"id", "name"})
DOCUMENT_COLLECTIONS = ("transactions", "categories", "currencies")


def hash_payload(value: Any) -> str:
    """SHA-256 hex digest of a string, bytes or JSON-serializable value."""
    if isinstance(value, bytes):
        raw = value
    elif isinstance(value, str):
        raw = value.encode("utf-8")
    else:
        raw = json.dumps(value, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(raw).hexdigest()


def redact_fields(payload: Mapping[str, Any], allowed_keys: Iterable[str]) -> dict[str, Any]:
    """Shallow copy keeping whitelisted values; every other key maps to REDACTED."""
    allowed = frozenset(allowed_keys)
    return {key: value if key in allowed else REDACTED for key, value in payload.items()}


def mask_token(token: str | None) -> str | None:
    """Keep only enough of a bearer token to tell two tokens apart in logs."""
    if not token:
        return None
    if len(token) <= 8:
        return REDACTED
    return f"{token[:4]}...{hash_payload(token)[:8]}"


def document_fingerprint(content: str) -> dict[str, Any]:
    """
    Describe a state document or backup envelope without exposing any record.

    Returns the content hash and size plus per-collection record counts when
    the content parses as a JSON object; unparseable content only gets the hash
    and size, which is what a corrupted-file log line needs.
    """

    fingerprint: dict[str, Any] = {"sha256": hash_payload(content), "bytes": len(content.encode("utf-8"))}
    try:
        document = json.loads(content)
    except ValueError:
        return fingerprint
    if isinstance(document, dict):
        for name in DOCUMENT_COLLECTIONS:
            records = document.get(name)
            if isinstance(records, list):
                fingerprint[name] = len(records)
    return fingerprint
