"""On-device data access backed by SQLite."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Iterator, List, Mapping, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session, sessionmaker

from data_access import DEFAULT_TRANSACTION_PAGE, merge_patch, settings_from_changes, sort_categories
from errors import RecordNotFound
from events import DATA_CHANGED, EventBus
from persistence.models import AppSettingsRow, CategoryRow, CurrencyRow, IdentityRow, TransactionRow
from records import AppSettings, Category, Currency, EntryType, Transaction, utc_now_iso
from token_broker import UserIdentity

IDENTITY_ROW_ID = 1
SETTINGS_ROW_ID = 1


def _transaction(row: TransactionRow) -> Transaction:
    return Transaction(
        id=row.id,
        category_id=row.category_id,
        amount=row.amount,
        description=row.description,
        transaction_date=row.transaction_date,
        type=row.type,  # type: ignore[arg-type]
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _category(row: CategoryRow) -> Category:
    return Category(
        id=row.id,
        name=row.name,
        type=row.type,  # type: ignore[arg-type]
        is_default=row.is_default,
        is_active=row.is_active,
        created_at=row.created_at,
    )


def _currency(row: CurrencyRow) -> Currency:
    return Currency(
        id=row.id,
        code=row.code,
        name=row.name,
        symbol=row.symbol,
        is_active=row.is_active,
        created_at=row.created_at,
    )


def _settings(row: AppSettingsRow) -> AppSettings:
    return AppSettings(
        id=row.id,
        default_currency_id=row.default_currency_id,
        is_hidden=row.is_hidden,
        last_backup_time=row.last_backup_time,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _apply(row: Any, record: Any, columns: tuple[str, ...]) -> None:
    for column in columns:
        setattr(row, column, getattr(record, column))


TRANSACTION_COLUMNS = ("category_id", "amount", "description", "transaction_date", "type", "created_at", "updated_at")
CATEGORY_COLUMNS = ("name", "type", "is_default", "is_active", "created_at")
CURRENCY_COLUMNS = ("code", "name", "symbol", "is_active", "created_at")
SETTINGS_COLUMNS = ("default_currency_id", "is_hidden", "last_backup_time", "created_at", "updated_at")


class LocalRepository:
    """SQLite implementation of the local data access contract.

    Ids are assigned as 1 + the current maximum of each table, matching the
    remote store, and deletes are physical.
    """

    def __init__(self, session_factory: sessionmaker[Session], bus: EventBus):
        self._session_factory = session_factory
        self._bus = bus

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    async def get_transactions(self, limit: int = DEFAULT_TRANSACTION_PAGE, offset: int = 0) -> List[Transaction]:
        with self._session() as db:
            rows = db.scalars(
                select(TransactionRow)
                .order_by(TransactionRow.transaction_date.desc(), TransactionRow.id.desc())
                .limit(limit)
                .offset(offset)
            ).all()
            return [_transaction(row) for row in rows]

    async def get_categories(self, type: EntryType | None = None) -> List[Category]:
        with self._session() as db:
            stmt = select(CategoryRow).where(CategoryRow.is_active.is_(True))
            if type:
                stmt = stmt.where(CategoryRow.type == type)
            return sort_categories([_category(row) for row in db.scalars(stmt).all()])

    async def get_currencies(self) -> List[Currency]:
        with self._session() as db:
            rows = db.scalars(select(CurrencyRow).order_by(CurrencyRow.id)).all()
            return [_currency(row) for row in rows]

    async def get_active_currencies(self) -> List[Currency]:
        return [item for item in await self.get_currencies() if item.is_active]

    async def get_app_settings(self) -> Optional[AppSettings]:
        with self._session() as db:
            row = db.get(AppSettingsRow, SETTINGS_ROW_ID)
            return _settings(row) if row else None

    async def get_default_currency(self) -> Optional[Currency]:
        with self._session() as db:
            settings = db.get(AppSettingsRow, SETTINGS_ROW_ID)
            if settings is None:
                return None
            row = db.get(CurrencyRow, settings.default_currency_id)
            return _currency(row) if row else None

    async def add_transaction(self, transaction: Transaction) -> int:
        now = utc_now_iso()
        with self._session() as db:
            record = replace(transaction, id=_next_id(db, TransactionRow), created_at=now, updated_at=now)
            row = TransactionRow(id=record.id)
            _apply(row, record, TRANSACTION_COLUMNS)
            db.add(row)
        return self._changed("transaction", "add", record.id)

    async def update_transaction(self, transaction_id: int, changes: Mapping[str, Any]) -> int:
        with self._session() as db:
            row = _require(db, TransactionRow, transaction_id, "transaction")
            _apply(row, merge_patch(_transaction(row), changes, touch=True), TRANSACTION_COLUMNS)
        return self._changed("transaction", "update", transaction_id)

    async def delete_transaction(self, transaction_id: int) -> bool:
        return self._delete(TransactionRow, transaction_id, "transaction")

    async def add_category(self, category: Category) -> int:
        with self._session() as db:
            record = replace(category, id=_next_id(db, CategoryRow), created_at=category.created_at or utc_now_iso())
            row = CategoryRow(id=record.id)
            _apply(row, record, CATEGORY_COLUMNS)
            db.add(row)
        return self._changed("category", "add", record.id)

    async def update_category(self, category_id: int, changes: Mapping[str, Any]) -> int:
        with self._session() as db:
            row = _require(db, CategoryRow, category_id, "category")
            _apply(row, merge_patch(_category(row), changes), CATEGORY_COLUMNS)
        return self._changed("category", "update", category_id)

    async def delete_category(self, category_id: int) -> bool:
        return self._delete(CategoryRow, category_id, "category")

    async def add_currency(self, currency: Currency) -> int:
        with self._session() as db:
            record = replace(currency, id=_next_id(db, CurrencyRow), created_at=currency.created_at or utc_now_iso())
            row = CurrencyRow(id=record.id)
            _apply(row, record, CURRENCY_COLUMNS)
            db.add(row)
        return self._changed("currency", "add", record.id)

    async def update_currency(self, currency_id: int, changes: Mapping[str, Any]) -> int:
        with self._session() as db:
            row = _require(db, CurrencyRow, currency_id, "currency")
            _apply(row, merge_patch(_currency(row), changes), CURRENCY_COLUMNS)
        return self._changed("currency", "update", currency_id)

    async def delete_currency(self, currency_id: int) -> bool:
        return self._delete(CurrencyRow, currency_id, "currency")

    async def update_app_settings(self, changes: Mapping[str, Any], *, notify: bool = True) -> AppSettings:
        with self._session() as db:
            row = db.get(AppSettingsRow, SETTINGS_ROW_ID)
            updated = settings_from_changes(_settings(row) if row else None, changes, touch=notify)
            if row is None:
                row = AppSettingsRow(id=SETTINGS_ROW_ID)
                db.add(row)
            _apply(row, updated, SETTINGS_COLUMNS)
        if notify:
            self._changed("settings", "update", SETTINGS_ROW_ID)
        return updated

    async def clear(self) -> None:
        """Drop every cached application record (used on sign-out)."""
        with self._session() as db:
            for model in (TransactionRow, CategoryRow, CurrencyRow, AppSettingsRow):
                db.execute(delete(model))

    def _delete(self, model: type, record_id: int, entity: str) -> bool:
        with self._session() as db:
            result = db.execute(delete(model).where(model.id == record_id))
            removed = bool(result.rowcount)
        self._changed(entity, "delete", record_id)
        return removed

    def _changed(self, entity: str, action: str, record_id: int | None) -> int | None:
        self._bus.publish(DATA_CHANGED, {"entity": entity, "action": action, "id": record_id})
        return record_id


class IdentityRepository:
    """Keeps the signed-in user marker in `local_identity`."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def load(self) -> Optional[UserIdentity]:
        with self._session_factory() as db:
            row = db.get(IdentityRow, IDENTITY_ROW_ID)
            if row is None:
                return None
            return UserIdentity(id=row.subject, name=row.name, email=row.email, picture=row.picture)

    def save(self, identity: UserIdentity) -> None:
        with self._session_factory() as db:
            row = db.get(IdentityRow, IDENTITY_ROW_ID) or IdentityRow(id=IDENTITY_ROW_ID)
            row.subject = identity.id
            row.name = identity.name
            row.email = identity.email
            row.picture = identity.picture
            db.add(row)
            db.commit()

    def clear(self) -> None:
        with self._session_factory() as db:
            db.execute(delete(IdentityRow))
            db.commit()


def _next_id(db: Session, model: type) -> int:
    return (db.scalar(select(func.max(model.id))) or 0) + 1


def _require(db: Session, model: type, record_id: int, kind: str) -> Any:
    row = db.get(model, record_id)
    if row is None:
        raise RecordNotFound(kind, record_id)
    return row
