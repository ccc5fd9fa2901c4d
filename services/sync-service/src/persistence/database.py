"""Database configuration helpers for the on-device store."""

from __future__ import annotations

import os
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, URL, make_url
from sqlalchemy.orm import Session, sessionmaker

DEFAULT_DB_FILENAME = "finance_sync.db"
DEFAULT_DB_PATH = Path(__file__).resolve().parents[2] / "data" / DEFAULT_DB_FILENAME
DB_URL_ENV_VAR = "FINANCE_SYNC_DB_URL"


def get_database_url(explicit_url: str | None = None) -> str:
    """Return the configured database URL (defaults to a SQLite file)."""
    if explicit_url:
        return explicit_url
    env_url = os.getenv(DB_URL_ENV_VAR)
    if env_url:
        return env_url
    return f"sqlite:///{DEFAULT_DB_PATH}"


def _prepare_sqlite_path(url: URL) -> None:
    """Ensure on-disk SQLite paths exist before engine creation."""
    database = url.database
    if not database or database == ":memory:":
        return

    db_path = Path(database)
    if not db_path.is_absolute():
        db_path = (Path.cwd() / db_path).resolve()
    db_path.parent.mkdir(parents=True, exist_ok=True)


def create_db_engine(database_url: str | None = None) -> Engine:
    """Create a SQLAlchemy engine for the local store."""
    resolved_url = get_database_url(database_url)
    parsed_url = make_url(resolved_url)
    if parsed_url.drivername.startswith("sqlite"):
        _prepare_sqlite_path(parsed_url)
        connect_args = {"check_same_thread": False}
    else:
        connect_args = {}
    return create_engine(resolved_url, future=True, connect_args=connect_args)


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        future=True,
    )


def init_db(engine: Engine) -> None:
    """Create tables if they are missing."""
    from . import models  # noqa: WPS433 (import inside function)

    models.Base.metadata.create_all(bind=engine)
