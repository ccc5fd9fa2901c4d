from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal

EntryType = Literal["income", "expense"]


@dataclass
class Transaction:
    category_id: int
    amount: float
    transaction_date: str  # YYYY-MM-DD
    type: EntryType
    id: int | None = None
    description: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class Category:
    name: str
    type: EntryType
    id: int | None = None
    is_default: bool = False  # defaults sort first
    is_active: bool = True
    created_at: str | None = None


@dataclass
class Currency:
    code: str
    name: str
    symbol: str
    id: int | None = None
    is_active: bool = True
    created_at: str | None = None


@dataclass
class AppSettings:
    default_currency_id: int
    id: int = 1
    is_hidden: bool = False
    last_backup_time: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class RemoteState:
    """The whole application database as stored in the app-data space."""

    transactions: list[Transaction] = field(default_factory=list)
    categories: list[Category] = field(default_factory=list)
    currencies: list[Currency] = field(default_factory=list)
    settings: AppSettings | None = None
    last_modified: str | None = None

    @classmethod
    def empty(cls) -> "RemoteState":
        return cls(last_modified=utc_now_iso())


@dataclass
class BackupData:
    """Versioned envelope written by explicit backups to the visible folder."""

    transactions: list[Transaction]
    categories: list[Category]
    currencies: list[Currency]
    settings: AppSettings | None
    timestamp: str
    version: str


def utc_now_iso(now: datetime | None = None) -> str:
    moment = now or datetime.now(timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def filename_timestamp(now: datetime | None = None) -> str:
    """Timestamp safe for Drive file names (`:` and `.` replaced by `-`)."""
    return utc_now_iso(now).replace(":", "-").replace(".", "-")
