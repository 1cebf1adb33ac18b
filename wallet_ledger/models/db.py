from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from sqlalchemy import JSON, Column, Index, UniqueConstraint
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(UTC)


class EntryType(str, Enum):
    DEBIT = "debit"
    CREDIT = "credit"


class Account(SQLModel, table=True):
    __tablename__ = "accounts"

    user_id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, unique=True, max_length=64)
    email: str = Field(index=True, unique=True, max_length=255)
    # Never negative after a committed movement; enforced by the services.
    balance: Decimal = Field(default=Decimal("0.00"), max_digits=15, decimal_places=2)
    created_at: datetime = Field(default_factory=utcnow)


class LedgerEntry(SQLModel, table=True):
    __tablename__ = "ledger_entries"
    __table_args__ = (
        # One debit and one credit may share a transfer token, nothing more.
        UniqueConstraint("idempotency_token", "type", name="uq_ledger_token_type"),
        Index("ix_ledger_user_created", "user_id", "created_at"),
        Index("ix_ledger_user_type_created", "user_id", "type", "created_at"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="accounts.user_id")
    amount: Decimal = Field(max_digits=15, decimal_places=2)
    type: str = Field(max_length=6)
    counterparty: Optional[str] = Field(default=None, max_length=64)
    notes: Optional[str] = None
    description: Optional[str] = None
    idempotency_token: Optional[str] = Field(default=None, max_length=64)
    balance_after: Optional[Decimal] = Field(
        default=None, max_digits=15, decimal_places=2
    )
    created_at: datetime = Field(default_factory=utcnow)


class AdminNotification(SQLModel, table=True):
    __tablename__ = "admin_notifications"

    id: Optional[int] = Field(default=None, primary_key=True)
    type: str = Field(index=True, max_length=64)
    title: str
    message: str
    data: Optional[dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    is_important: bool = False
    is_read: bool = False
    created_at: datetime = Field(default_factory=utcnow)
