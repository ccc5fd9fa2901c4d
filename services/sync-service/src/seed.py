"""Default currencies, categories and settings for a fresh account."""

from __future__ import annotations

import logging
from typing import Dict

from data_access import LocalDataAccess
from records import Category, Currency

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY_CODE = "USD"

DEFAULT_CURRENCIES = (
    ("USD", "US Dollar", "$"),
    ("EUR", "Euro", "€"),
    ("GBP", "British Pound", "£"),
    ("JPY", "Japanese Yen", "¥"),
    ("CAD", "Canadian Dollar", "C$"),
    ("AUD", "Australian Dollar", "A$"),
    ("CHF", "Swiss Franc", "CHF"),
    ("CNY", "Chinese Yuan", "¥"),
    ("INR", "Indian Rupee", "₹"),
    ("MUR", "Mauritian Rupee", "Rs"),
)

DEFAULT_EXPENSE_CATEGORIES = (
    "Bills - Electricity",
    "Bills - Water",
    "Bills - Gas",
    "Bills - Internet",
    "Bills - Phone",
    "Food - Groceries",
    "Food - Dining Out",
    "Food - Snacks",
    "Food - Takeaway",
    "Car - Insurance",
    "Car - Parking",
    "Car - Fuel",
    "Car - Repairs",
    "Health - Medical Visit",
    "Health - Pharmacy",
    "Health - Insurance",
    "Health - Gym",
    "Health - Supplements",
    "Shopping - Clothing",
    "Shopping - Beauty",
    "Shopping - Electronics",
    "Shopping - Home Supplies",
    "Education - Courses",
    "Education - Books",
    "Entertainment - Streaming",
    "Entertainment - Apps",
    "Entertainment - Movies",
    "Entertainment - Games",
    "Travel - Flights",
    "Travel - Accommodation",
    "Gifts - Gifts",
    "Gifts - Donation",
    "Financial - Loan Payments",
    "Financial - Taxes",
    "Financial - Fees",
    "Miscellaneous",
)

DEFAULT_INCOME_CATEGORIES = (
    "Salary",
    "Bonus",
    "Freelance",
    "Business Income",
    "Interest Income",
    "Dividends",
    "Refunds",
    "Gifts",
    "Sale of Assets",
    "Other Income",
)


async def seed_currencies(data: LocalDataAccess) -> int:
    if await data.get_currencies():
        return 0
    for code, name, symbol in DEFAULT_CURRENCIES:
        await data.add_currency(Currency(code=code, name=name, symbol=symbol))
    return len(DEFAULT_CURRENCIES)


async def seed_categories(data: LocalDataAccess) -> int:
    if await data.get_categories():
        return 0
    for name in DEFAULT_EXPENSE_CATEGORIES:
        await data.add_category(Category(name=name, type="expense", is_default=True))
    for name in DEFAULT_INCOME_CATEGORIES:
        await data.add_category(Category(name=name, type="income", is_default=True))
    return len(DEFAULT_EXPENSE_CATEGORIES) + len(DEFAULT_INCOME_CATEGORIES)


async def initialize_settings(data: LocalDataAccess) -> bool:
    """Create the settings singleton pointing at USD; no-op when settings exist or USD is missing."""
    if await data.get_app_settings() is not None:
        return False
    currencies = await data.get_currencies()
    usd = next((item for item in currencies if item.code == DEFAULT_CURRENCY_CODE), None)
    if usd is None:
        return False
    await data.update_app_settings({"default_currency_id": usd.id})
    return True


async def seed_defaults(data: LocalDataAccess) -> Dict[str, object]:
    """Idempotently seed everything a new account needs."""
    summary: Dict[str, object] = {
        "currencies": await seed_currencies(data),
        "categories": await seed_categories(data),
        "settings": await initialize_settings(data),
    }
    logger.info({"event": "defaults_seeded", **summary})
    return summary
