from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Optional

from sqlalchemy import String, asc, cast, desc, func, or_, update
from sqlalchemy.sql.elements import ColumnElement
from sqlmodel import Session, col, select

from ..core.db import acquire_write_lock
from ..core.money import to_money
from ..models import AccountModel, AdminNotificationModel, EntryType, LedgerEntryModel


@dataclass(frozen=True)
class StatementFilter:
    """Statement search and ordering options.

    Each active option contributes one predicate to ``clauses()``; the
    repository joins them with AND.
    """

    search: Optional[str] = None
    entry_type: Optional[str] = None
    sort: str = "date"
    order: str = "desc"

    def clauses(self) -> list[ColumnElement[bool]]:
        clauses: list[ColumnElement[bool]] = []
        if self.search:
            pattern = f"%{self.search}%"
            clauses.append(
                or_(
                    col(LedgerEntryModel.description).like(pattern),
                    col(LedgerEntryModel.notes).like(pattern),
                    cast(LedgerEntryModel.amount, String).like(pattern),
                )
            )
        if self.entry_type in (EntryType.DEBIT.value, EntryType.CREDIT.value):
            clauses.append(col(LedgerEntryModel.type) == self.entry_type)
        return clauses

    def ordering(self) -> list[Any]:
        direction = asc if self.order.lower() == "asc" else desc
        column = LedgerEntryModel.amount if self.sort == "amount" else LedgerEntryModel.created_at
        return [direction(column), direction(LedgerEntryModel.id)]


NEWEST_FIRST = StatementFilter()


class LedgerRepository:
    """Thin data access layer around the SQLModel session."""

    def __init__(self, session: Session) -> None:
        self.session = session

    # Account operations -------------------------------------------------
    def add_account(
        self,
        *,
        username: str,
        email: str,
        balance: Decimal = Decimal("0.00"),
    ) -> AccountModel:
        account = AccountModel(username=username, email=email, balance=balance)
        self.session.add(account)
        self.session.flush()
        self.session.refresh(account)
        return account

    def get_account(self, user_id: int) -> Optional[AccountModel]:
        return self.session.get(AccountModel, user_id)

    def find_accounts_by_identifier(self, identifier: str) -> list[AccountModel]:
        stmt = select(AccountModel).where(
            or_(AccountModel.email == identifier, AccountModel.username == identifier)
        )
        return list(self.session.exec(stmt))

    def find_conflicting_account(self, username: str, email: str) -> Optional[AccountModel]:
        stmt = select(AccountModel).where(
            or_(
                func.lower(AccountModel.username) == username.lower(),
                func.lower(AccountModel.email) == email.lower(),
            )
        )
        return self.session.exec(stmt).first()

    def lock_accounts(self, user_ids: Iterable[int]) -> dict[int, AccountModel]:
        """SELECT ... FOR UPDATE each account, always in ascending id order."""
        acquire_write_lock(self.session)
        locked: dict[int, AccountModel] = {}
        for user_id in sorted(set(user_ids)):
            stmt = (
                select(AccountModel)
                .where(AccountModel.user_id == user_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            account = self.session.exec(stmt).first()
            if account is not None:
                locked[user_id] = account
        return locked

    def update_balance(
        self,
        user_id: int,
        new_balance: Decimal,
        *,
        expected_balance: Optional[Decimal] = None,
        expected_minimum: Optional[Decimal] = None,
    ) -> int:
        """Write a balance only if the stored one is still what the caller read.

        ``expected_balance`` guards against a write computed from a stale read;
        ``expected_minimum`` requires the stored balance to still cover a debit.
        Returns the number of rows affected.
        """
        stmt = update(AccountModel).where(col(AccountModel.user_id) == user_id)
        if expected_balance is not None:
            stmt = stmt.where(col(AccountModel.balance) == expected_balance)
        if expected_minimum is not None:
            stmt = stmt.where(col(AccountModel.balance) >= expected_minimum)
        result = self.session.exec(stmt.values(balance=new_balance))  # type: ignore[call-overload]
        return result.rowcount

    # Ledger entries -----------------------------------------------------
    def add_entry(
        self,
        *,
        user_id: int,
        amount: Decimal,
        entry_type: EntryType,
        balance_after: Decimal,
        notes: Optional[str] = None,
        description: Optional[str] = None,
        counterparty: Optional[str] = None,
        idempotency_token: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> LedgerEntryModel:
        entry = LedgerEntryModel(
            user_id=user_id,
            amount=amount,
            type=entry_type.value,
            balance_after=balance_after,
            notes=notes,
            description=description,
            counterparty=counterparty,
            idempotency_token=idempotency_token,
        )
        if created_at is not None:
            entry.created_at = created_at
        self.session.add(entry)
        self.session.flush()
        self.session.refresh(entry)
        return entry

    def find_entry_by_token(self, token: str) -> Optional[LedgerEntryModel]:
        stmt = select(LedgerEntryModel).where(LedgerEntryModel.idempotency_token == token)
        return self.session.exec(stmt).first()

    def count_recent_entries(self, user_id: int, entry_type: EntryType, since: datetime) -> int:
        stmt = (
            select(func.count())
            .select_from(LedgerEntryModel)
            .where(LedgerEntryModel.user_id == user_id)
            .where(LedgerEntryModel.type == entry_type.value)
            .where(LedgerEntryModel.created_at > since)
        )
        return self.session.exec(stmt).one()

    def list_entries(
        self,
        user_id: int,
        statement_filter: StatementFilter = NEWEST_FIRST,
        *,
        offset: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> list[LedgerEntryModel]:
        stmt = (
            select(LedgerEntryModel)
            .where(LedgerEntryModel.user_id == user_id)
            .where(*statement_filter.clauses())
            .order_by(*statement_filter.ordering())
        )
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.exec(stmt))

    def count_entries(self, user_id: int, statement_filter: StatementFilter = NEWEST_FIRST) -> int:
        stmt = (
            select(func.count())
            .select_from(LedgerEntryModel)
            .where(LedgerEntryModel.user_id == user_id)
            .where(*statement_filter.clauses())
        )
        return self.session.exec(stmt).one()

    def sum_amounts(self, user_id: int, entry_type: EntryType) -> Decimal:
        stmt = (
            select(func.coalesce(func.sum(LedgerEntryModel.amount), 0))
            .where(LedgerEntryModel.user_id == user_id)
            .where(LedgerEntryModel.type == entry_type.value)
        )
        return to_money(self.session.exec(stmt).one())

    # Notifications ------------------------------------------------------
    def add_notification(
        self,
        *,
        notification_type: str,
        title: str,
        message: str,
        data: Optional[dict[str, Any]] = None,
        is_important: bool = False,
    ) -> AdminNotificationModel:
        notification = AdminNotificationModel(
            type=notification_type,
            title=title,
            message=message,
            data=data,
            is_important=is_important,
        )
        self.session.add(notification)
        self.session.flush()
        self.session.refresh(notification)
        return notification

    def list_notifications(
        self, limit: int, only_unread: bool = False
    ) -> list[AdminNotificationModel]:
        stmt = select(AdminNotificationModel)
        if only_unread:
            stmt = stmt.where(col(AdminNotificationModel.is_read).is_(False))
        stmt = stmt.order_by(
            desc(AdminNotificationModel.created_at), desc(AdminNotificationModel.id)
        )
        return list(self.session.exec(stmt.limit(limit)))
