"""
Local data access contract and its remote-backed implementation.

`LocalDataAccess` is what the backup orchestrator and the seeding/analytics
helpers depend on. Two stores satisfy it: `RemoteDataService` below (the
client-only variant, where every mutation is a read-modify-write of the whole
RemoteState document) and `persistence.repository.LocalRepository` (a SQLite
store on the device). Every mutation publishes `DATA_CHANGED` after the write
it represents has completed.
"""

from __future__ import annotations

from dataclasses import fields, replace
from typing import Any, List, Mapping, Optional, Protocol, TypeVar

from errors import RecordNotFound
from events import DATA_CHANGED, EventBus
from records import AppSettings, Category, Currency, EntryType, RemoteState, Transaction, utc_now_iso
from remote_state import RemoteStateStore, next_id

DEFAULT_TRANSACTION_PAGE = 50
SNAPSHOT_PAGE_SIZE = 500

RecordT = TypeVar("RecordT", Transaction, Category, Currency, AppSettings)


class LocalDataAccess(Protocol):
    async def get_transactions(self, limit: int = DEFAULT_TRANSACTION_PAGE, offset: int = 0) -> List[Transaction]:
        ...

    async def get_categories(self, type: EntryType | None = None) -> List[Category]:
        ...

    async def get_currencies(self) -> List[Currency]:
        ...

    async def get_active_currencies(self) -> List[Currency]:
        ...

    async def get_app_settings(self) -> Optional[AppSettings]:
        ...

    async def get_default_currency(self) -> Optional[Currency]:
        ...

    async def add_transaction(self, transaction: Transaction) -> int:
        ...

    async def update_transaction(self, transaction_id: int, changes: Mapping[str, Any]) -> int:
        ...

    async def delete_transaction(self, transaction_id: int) -> bool:
        ...

    async def add_category(self, category: Category) -> int:
        ...

    async def update_category(self, category_id: int, changes: Mapping[str, Any]) -> int:
        ...

    async def delete_category(self, category_id: int) -> bool:
        ...

    async def add_currency(self, currency: Currency) -> int:
        ...

    async def update_currency(self, currency_id: int, changes: Mapping[str, Any]) -> int:
        ...

    async def delete_currency(self, currency_id: int) -> bool:
        ...

    async def update_app_settings(self, changes: Mapping[str, Any], *, notify: bool = True) -> AppSettings:
        ...


def merge_patch(record: RecordT, changes: Mapping[str, Any], *, touch: bool = False) -> RecordT:
    """Overwrite the provided fields, keep the rest; ids are never patched."""
    allowed = {item.name for item in fields(record)} - {"id"}
    updates = {key: value for key, value in changes.items() if key in allowed}
    if touch:
        updates["updated_at"] = utc_now_iso()
    return replace(record, **updates)


def sort_transactions(transactions: List[Transaction]) -> List[Transaction]:
    """Newest transaction date first; ties keep the newest id first."""
    return sorted(transactions, key=lambda item: (item.transaction_date, item.id or 0), reverse=True)


def sort_categories(categories: List[Category]) -> List[Category]:
    return sorted(categories, key=lambda item: (not item.is_default, item.name.casefold()))


async def snapshot_state(data: LocalDataAccess, page_size: int = SNAPSHOT_PAGE_SIZE) -> RemoteState:
    """Read every record out of `data` as a RemoteState document."""
    transactions: List[Transaction] = []
    while True:
        page = await data.get_transactions(page_size, len(transactions))
        transactions.extend(page)
        if len(page) < page_size:
            break
    return RemoteState(
        transactions=transactions,
        categories=await data.get_categories(),
        currencies=await data.get_currencies(),
        settings=await data.get_app_settings(),
    )


def settings_from_changes(
    existing: AppSettings | None, changes: Mapping[str, Any], *, touch: bool = True
) -> AppSettings:
    """Upsert the settings singleton (id=1) with merge-patch semantics.

    Bookkeeping writes pass `touch=False` so `updated_at` only tracks user edits.
    """
    now = utc_now_iso()
    if existing is None:
        default_currency_id = changes.get("default_currency_id") or 1
        existing = AppSettings(default_currency_id=default_currency_id, created_at=now)
    updated = merge_patch(existing, changes)
    updated.id = 1
    updated.created_at = updated.created_at or now
    if touch or updated.updated_at is None:
        updated.updated_at = now
    return updated


class RemoteDataService:
    """Client-only data access: the app-data state document is the database."""

    def __init__(self, store: RemoteStateStore, bus: EventBus) -> None:
        self._store = store
        self._bus = bus

    async def get_transactions(self, limit: int = DEFAULT_TRANSACTION_PAGE, offset: int = 0) -> List[Transaction]:
        state = await self._store.read_state()
        return sort_transactions(state.transactions)[offset : offset + limit]

    async def get_categories(self, type: EntryType | None = None) -> List[Category]:
        state = await self._store.read_state()
        active = [item for item in state.categories if item.is_active]
        if type:
            active = [item for item in active if item.type == type]
        return sort_categories(active)

    async def get_currencies(self) -> List[Currency]:
        state = await self._store.read_state()
        return list(state.currencies)

    async def get_active_currencies(self) -> List[Currency]:
        return [item for item in await self.get_currencies() if item.is_active]

    async def get_app_settings(self) -> Optional[AppSettings]:
        state = await self._store.read_state()
        return state.settings

    async def get_default_currency(self) -> Optional[Currency]:
        state = await self._store.read_state()
        if state.settings is None:
            return None
        return next((item for item in state.currencies if item.id == state.settings.default_currency_id), None)

    async def add_transaction(self, transaction: Transaction) -> int:
        state = await self._store.read_state()
        now = utc_now_iso()
        record = replace(transaction, id=next_id(state.transactions), created_at=now, updated_at=now)
        state.transactions.append(record)
        await self._commit(state, "transaction", "add", record.id)
        return record.id

    async def update_transaction(self, transaction_id: int, changes: Mapping[str, Any]) -> int:
        state = await self._store.read_state()
        index = _index_of(state.transactions, transaction_id, "transaction")
        state.transactions[index] = merge_patch(state.transactions[index], changes, touch=True)
        await self._commit(state, "transaction", "update", transaction_id)
        return transaction_id

    async def delete_transaction(self, transaction_id: int) -> bool:
        state = await self._store.read_state()
        remaining = [item for item in state.transactions if item.id != transaction_id]
        removed = len(remaining) != len(state.transactions)
        state.transactions = remaining
        await self._commit(state, "transaction", "delete", transaction_id)
        return removed

    async def add_category(self, category: Category) -> int:
        state = await self._store.read_state()
        record = replace(category, id=next_id(state.categories), created_at=category.created_at or utc_now_iso())
        state.categories.append(record)
        await self._commit(state, "category", "add", record.id)
        return record.id

    async def update_category(self, category_id: int, changes: Mapping[str, Any]) -> int:
        state = await self._store.read_state()
        index = _index_of(state.categories, category_id, "category")
        state.categories[index] = merge_patch(state.categories[index], changes)
        await self._commit(state, "category", "update", category_id)
        return category_id

    async def delete_category(self, category_id: int) -> bool:
        state = await self._store.read_state()
        remaining = [item for item in state.categories if item.id != category_id]
        removed = len(remaining) != len(state.categories)
        state.categories = remaining
        await self._commit(state, "category", "delete", category_id)
        return removed

    async def add_currency(self, currency: Currency) -> int:
        state = await self._store.read_state()
        record = replace(currency, id=next_id(state.currencies), created_at=currency.created_at or utc_now_iso())
        state.currencies.append(record)
        await self._commit(state, "currency", "add", record.id)
        return record.id

    async def update_currency(self, currency_id: int, changes: Mapping[str, Any]) -> int:
        state = await self._store.read_state()
        index = _index_of(state.currencies, currency_id, "currency")
        state.currencies[index] = merge_patch(state.currencies[index], changes)
        await self._commit(state, "currency", "update", currency_id)
        return currency_id

    async def delete_currency(self, currency_id: int) -> bool:
        state = await self._store.read_state()
        remaining = [item for item in state.currencies if item.id != currency_id]
        removed = len(remaining) != len(state.currencies)
        state.currencies = remaining
        await self._commit(state, "currency", "delete", currency_id)
        return removed

    async def update_app_settings(self, changes: Mapping[str, Any], *, notify: bool = True) -> AppSettings:
        state = await self._store.read_state()
        state.settings = settings_from_changes(state.settings, changes, touch=notify)
        await self._store.write_state(state)
        if notify:
            self._bus.publish(DATA_CHANGED, {"entity": "settings", "action": "update", "id": 1})
        return state.settings

    async def _commit(self, state: RemoteState, entity: str, action: str, record_id: int | None) -> None:
        await self._store.write_state(state)
        self._bus.publish(DATA_CHANGED, {"entity": entity, "action": action, "id": record_id})


def _index_of(records: List[Any], record_id: int, kind: str) -> int:
    for index, record in enumerate(records):
        if record.id == record_id:
            return index
    raise RecordNotFound(kind, record_id)
