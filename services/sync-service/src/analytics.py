"""Period summaries computed over the local data access layer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List

from data_access import LocalDataAccess
from records import EntryType, Transaction

UNKNOWN_CATEGORY = "Unknown"
# Upper bound on transactions scanned per summary.
SCAN_LIMIT = 100_000


@dataclass(frozen=True)
class PeriodTotals:
    income: float
    expense: float

    @property
    def net(self) -> float:
        return self.income - self.expense


@dataclass(frozen=True)
class CategoryAmount:
    name: str
    amount: float


async def _in_period(data: LocalDataAccess, start: str, end: str) -> List[Transaction]:
    # Dates are ISO `YYYY-MM-DD`, so string comparison orders them; both bounds inclusive.
    transactions = await data.get_transactions(SCAN_LIMIT)
    return [item for item in transactions if start <= item.transaction_date <= end]


async def income_and_expense_for_period(data: LocalDataAccess, start: str, end: str) -> PeriodTotals:
    transactions = await _in_period(data, start, end)
    income = sum(item.amount for item in transactions if item.type == "income")
    expense = sum(item.amount for item in transactions if item.type == "expense")
    return PeriodTotals(income=income, expense=expense)


async def _by_category(data: LocalDataAccess, start: str, end: str, entry_type: EntryType) -> List[CategoryAmount]:
    transactions = await _in_period(data, start, end)
    names = {category.id: category.name for category in await data.get_categories()}

    totals: Dict[str, float] = {}
    for item in transactions:
        if item.type != entry_type:
            continue
        name = names.get(item.category_id, UNKNOWN_CATEGORY)
        totals[name] = totals.get(name, 0.0) + item.amount
    return [CategoryAmount(name=name, amount=amount) for name, amount in totals.items()]


async def spending_by_category(data: LocalDataAccess, start: str, end: str) -> List[CategoryAmount]:
    return await _by_category(data, start, end, "expense")


async def income_by_category(data: LocalDataAccess, start: str, end: str) -> List[CategoryAmount]:
    return await _by_category(data, start, end, "income")
