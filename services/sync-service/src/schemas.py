"""
Wire schemas for the two JSON documents the sync core reads and writes.

`RemoteStateModel` mirrors the live document in the app-data space and
`BackupEnvelopeModel` mirrors the versioned backup in the visible folder. The
two shapes are validated separately on purpose: an envelope is not a valid
state document and vice versa. Any record that fails validation marks the
whole document as corrupted; nothing is partially accepted.
"""

from __future__ import annotations

import json
from dataclasses import asdict
from datetime import date
from typing import Any, List, Optional

from pydantic import BaseModel, Field, StrictStr, ValidationError, model_validator
from typing_extensions import Literal

from errors import CorruptedRemoteState
from records import AppSettings, BackupData, Category, Currency, RemoteState, Transaction


class TransactionModel(BaseModel):
    id: int = Field(gt=0)
    category_id: int
    amount: float = Field(gt=0)
    description: Optional[str] = None
    transaction_date: date
    type: Literal["income", "expense"]
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dataclass(self) -> Transaction:
        return Transaction(
            id=self.id,
            category_id=self.category_id,
            amount=self.amount,
            description=self.description,
            transaction_date=self.transaction_date.isoformat(),
            type=self.type,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class CategoryModel(BaseModel):
    id: int = Field(gt=0)
    name: str
    type: Literal["income", "expense"]
    is_default: bool = False
    is_active: bool = True
    created_at: Optional[str] = None

    def to_dataclass(self) -> Category:
        return Category(
            id=self.id,
            name=self.name,
            type=self.type,
            is_default=self.is_default,
            is_active=self.is_active,
            created_at=self.created_at,
        )


class CurrencyModel(BaseModel):
    id: int = Field(gt=0)
    code: str = Field(min_length=1)
    name: str
    symbol: str
    is_active: bool = True
    created_at: Optional[str] = None

    def to_dataclass(self) -> Currency:
        return Currency(
            id=self.id,
            code=self.code,
            name=self.name,
            symbol=self.symbol,
            is_active=self.is_active,
            created_at=self.created_at,
        )


class AppSettingsModel(BaseModel):
    id: int = 1
    default_currency_id: int
    is_hidden: bool = False
    last_backup_time: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dataclass(self) -> AppSettings:
        return AppSettings(
            id=self.id,
            default_currency_id=self.default_currency_id,
            is_hidden=self.is_hidden,
            last_backup_time=self.last_backup_time,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class _CollectionsModel(BaseModel):
    transactions: List[TransactionModel]
    categories: List[CategoryModel]
    currencies: List[CurrencyModel]

    @model_validator(mode="after")
    def _ids_are_unique(self) -> "_CollectionsModel":
        for name in ("transactions", "categories", "currencies"):
            ids = [record.id for record in getattr(self, name)]
            if len(ids) != len(set(ids)):
                raise ValueError(f"duplicate ids in {name}")
        return self


class RemoteStateModel(_CollectionsModel):
    settings: Optional[AppSettingsModel] = None
    last_modified: Optional[str] = None

    def to_dataclass(self) -> RemoteState:
        return RemoteState(
            transactions=[item.to_dataclass() for item in self.transactions],
            categories=[item.to_dataclass() for item in self.categories],
            currencies=[item.to_dataclass() for item in self.currencies],
            settings=self.settings.to_dataclass() if self.settings else None,
            last_modified=self.last_modified,
        )


class BackupEnvelopeModel(_CollectionsModel):
    settings: AppSettingsModel
    timestamp: StrictStr
    version: StrictStr

    def to_dataclass(self) -> BackupData:
        return BackupData(
            transactions=[item.to_dataclass() for item in self.transactions],
            categories=[item.to_dataclass() for item in self.categories],
            currencies=[item.to_dataclass() for item in self.currencies],
            settings=self.settings.to_dataclass(),
            timestamp=self.timestamp,
            version=self.version,
        )


def parse_remote_state(content: str) -> RemoteState:
    """Parse the live state document or raise CorruptedRemoteState."""
    return _parse(content, RemoteStateModel).to_dataclass()


def parse_backup_envelope(content: str) -> BackupData:
    """Parse a backup envelope or raise CorruptedRemoteState."""
    return _parse(content, BackupEnvelopeModel).to_dataclass()


def dump_document(document: RemoteState | BackupData) -> str:
    """Serialize either document shape to the on-disk format (2-space indented JSON)."""
    return json.dumps(asdict(document), indent=2, ensure_ascii=False)


def _parse(content: str, model: type[_CollectionsModel]) -> Any:
    try:
        raw = json.loads(content)
    except (TypeError, ValueError) as exc:
        raise CorruptedRemoteState(f"invalid JSON ({exc})") from exc

    if not isinstance(raw, dict):
        raise CorruptedRemoteState(f"expected a JSON object, got {type(raw).__name__}")

    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        raise CorruptedRemoteState(f"{exc.error_count()} validation error(s): {_first_error(exc)}") from exc


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "unknown"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first.get('msg', 'invalid')}"
