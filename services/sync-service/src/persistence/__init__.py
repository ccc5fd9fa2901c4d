"""Persistence primitives for the on-device store."""

from persistence.database import (
    DB_URL_ENV_VAR,
    DEFAULT_DB_FILENAME,
    DEFAULT_DB_PATH,
    create_db_engine,
    create_session_factory,
    get_database_url,
    init_db,
)
from persistence.models import AppSettingsRow, Base, CategoryRow, CurrencyRow, IdentityRow, TransactionRow
from persistence.repository import IdentityRepository, LocalRepository

__all__ = [
    "AppSettingsRow",
    "Base",
    "CategoryRow",
    "CurrencyRow",
    "DB_URL_ENV_VAR",
    "DEFAULT_DB_FILENAME",
    "DEFAULT_DB_PATH",
    "IdentityRepository",
    "IdentityRow",
    "LocalRepository",
    "TransactionRow",
    "create_db_engine",
    "create_session_factory",
    "get_database_url",
    "init_db",
]
