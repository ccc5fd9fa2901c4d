"""SQLAlchemy models for the on-device copy of the finance data."""

from __future__ import annotations

from typing import Optional

from sqlalchemy import Boolean, Float, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class CurrencyRow(Base):
    __tablename__ = "local_currencies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    code: Mapped[str] = mapped_column(String(8), nullable=False)
    name: Mapped[str] = mapped_column(String(64), nullable=False)
    symbol: Mapped[str] = mapped_column(String(8), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)


class CategoryRow(Base):
    __tablename__ = "local_categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    # Unique by convention only.
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)


class AppSettingsRow(Base):
    """Singleton row (id=1)."""

    __tablename__ = "local_app_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    default_currency_id: Mapped[int] = mapped_column(Integer, nullable=False)
    is_hidden: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_backup_time: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    created_at: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    updated_at: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)


class TransactionRow(Base):
    __tablename__ = "local_transactions_recent"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    category_id: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    transaction_date: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    created_at: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    updated_at: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)


class IdentityRow(Base):
    """Persisted marker for the signed-in user; survives restarts."""

    __tablename__ = "local_identity"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    subject: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    picture: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
