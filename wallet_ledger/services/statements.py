"""Bank-statement style views over the ledger.

Every row carries the balance the owner had *before* the entry was applied.
Entries written by this service record ``balance_after`` in the same
transaction as the balance update, so a page is read with LIMIT/OFFSET and
each previous balance is derived from its own row. Rows without a snapshot
(imported history) fall back to walking the owner's full ledger backwards
from the current balance.
"""
from __future__ import annotations

import logging
import math
from decimal import Decimal
from typing import Iterable, Optional

from sqlmodel import Session

from ..core.config import Settings, get_settings
from ..core.errors import AccountNotFoundError, InvalidPaginationError
from ..core.money import to_money
from ..models import (
    EntryType,
    LedgerEntryModel,
    LedgerEntryResponse,
    Pagination,
    StatementResponse,
    StatementStatistics,
)
from .repository import LedgerRepository, StatementFilter


logger = logging.getLogger(__name__)


def previous_balance_from_snapshot(entry: LedgerEntryModel) -> Decimal:
    after = to_money(entry.balance_after)
    amount = to_money(entry.amount)
    if entry.type == EntryType.CREDIT.value:
        return after - amount
    if entry.type == EntryType.DEBIT.value:
        return after + amount
    return after


def reconstruct_previous_balances(
    entries_newest_first: Iterable[LedgerEntryModel], current_balance: Decimal
) -> dict[int, Decimal]:
    """Walk from the current balance back through time.

    ``entries_newest_first`` must be the owner's complete ledger; any gap
    shifts every older balance by the missing amount.
    """
    running = to_money(current_balance)
    previous: dict[int, Decimal] = {}
    for entry in entries_newest_first:
        amount = to_money(entry.amount)
        if entry.type == EntryType.CREDIT.value:
            before = running - amount
        elif entry.type == EntryType.DEBIT.value:
            before = running + amount
        else:
            before = running
        previous[entry.id] = before
        running = before
    return previous


class StatementService:
    def __init__(
        self,
        session: Session,
        repository: Optional[LedgerRepository] = None,
        *,
        settings: Optional[Settings] = None,
    ) -> None:
        self.session = session
        self.repository = repository or LedgerRepository(session)
        self.settings = settings or get_settings()

    def _begin_snapshot(self) -> None:
        # Must run before the first query of the session's transaction.
        isolation_level = self.settings.statement_isolation_level
        if isolation_level:
            self.session.connection(execution_options={"isolation_level": isolation_level})

    def get_statement(
        self,
        user_id: int,
        page: int = 1,
        limit: Optional[int] = None,
        search: Optional[str] = None,
        entry_type: Optional[str] = None,
        sort: str = "date",
        order: str = "desc",
    ) -> StatementResponse:
        if limit is None:
            limit = self.settings.statement_default_limit
        if page <= 0 or limit <= 0:
            raise InvalidPaginationError("Pagination parameters must be positive numbers.")
        limit = min(limit, self.settings.statement_max_limit)

        self._begin_snapshot()
        account = self.repository.get_account(user_id)
        if account is None:
            raise AccountNotFoundError(f"Account {user_id} not found")
        current_balance = to_money(account.balance)

        statement_filter = StatementFilter(
            search=search.strip() if search else None,
            entry_type=entry_type,
            sort=sort,
            order=order,
        )
        total = self.repository.count_entries(user_id, statement_filter)
        entries = self.repository.list_entries(
            user_id, statement_filter, offset=(page - 1) * limit, limit=limit
        )

        walked: dict[int, Decimal] = {}
        if any(entry.balance_after is None for entry in entries):
            logger.info("statement.legacy_walk", extra={"user_id": user_id})
            walked = reconstruct_previous_balances(
                self.repository.list_entries(user_id), current_balance
            )

        data = [
            LedgerEntryResponse(
                id=entry.id,
                user_id=entry.user_id,
                amount=to_money(entry.amount),
                type=entry.type,
                counterparty=entry.counterparty,
                notes=entry.notes,
                description=entry.description,
                created_at=entry.created_at,
                previous_balance=(
                    walked[entry.id]
                    if entry.balance_after is None
                    else previous_balance_from_snapshot(entry)
                ),
            )
            for entry in entries
        ]

        statistics = StatementStatistics(
            current_balance=current_balance,
            total_debits=self.repository.sum_amounts(user_id, EntryType.DEBIT),
            total_credits=self.repository.sum_amounts(user_id, EntryType.CREDIT),
            total_transactions=self.repository.count_entries(user_id),
        )
        total_pages = math.ceil(total / limit)
        return StatementResponse(
            data=data,
            pagination=Pagination(
                page=page,
                limit=limit,
                total_pages=total_pages,
                total_count=total,
                has_next_page=page < total_pages,
                has_prev_page=page > 1,
            ),
            statistics=statistics,
        )
