from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from ..core.db import atomic
from ..core.errors import (
    AccountNotFoundError,
    ConcurrentUpdateConflictError,
    DuplicateAccountError,
    DuplicateTransferError,
)
from ..core.money import normalize_amount, to_money
from ..models import (
    AccountCreate,
    AccountModel,
    AccountResponse,
    BalanceResponse,
    CreditResponse,
    EntryType,
)
from .notifications import NotificationDispatcher, NotificationEvent, dispatch_safely
from .repository import LedgerRepository
from .transfers import normalize_token


logger = logging.getLogger(__name__)

ADMIN_CREDIT_DESCRIPTION = "Credit added to account."


class AccountService:
    def __init__(
        self,
        session: Session,
        repository: Optional[LedgerRepository] = None,
        *,
        notifier: Optional[NotificationDispatcher] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.session = session
        self.repository = repository or LedgerRepository(session)
        self.notifier = notifier
        self.clock = clock or (lambda: datetime.now(UTC))

    def _get_account(self, user_id: int) -> AccountModel:
        account = self.repository.get_account(user_id)
        if account is None:
            raise AccountNotFoundError(f"Account {user_id} not found")
        return account

    def _account_to_response(self, account: AccountModel) -> AccountResponse:
        return AccountResponse(
            user_id=account.user_id,
            username=account.username,
            email=account.email,
            balance=to_money(account.balance),
            created_at=account.created_at,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def create_account(self, payload: AccountCreate) -> AccountResponse:
        with atomic(self.session):
            if self.repository.find_conflicting_account(payload.username, payload.email):
                raise DuplicateAccountError("Username or email is already registered")
            try:
                account = self.repository.add_account(
                    username=payload.username, email=payload.email
                )
            except IntegrityError as exc:
                raise DuplicateAccountError("Username or email is already registered") from exc
            response = self._account_to_response(account)
        logger.info(
            "account.created",
            extra={"user_id": response.user_id, "username": response.username},
        )
        return response

    def get_account(self, user_id: int) -> AccountResponse:
        return self._account_to_response(self._get_account(user_id))

    def get_balance(self, user_id: int) -> BalanceResponse:
        account = self._get_account(user_id)
        return BalanceResponse(user_id=account.user_id, balance=to_money(account.balance))

    def credit(
        self,
        user_id: int,
        amount: Any,
        notes: Optional[str] = None,
        idempotency_token: Optional[str] = None,
    ) -> CreditResponse:
        """Administrative top-up: lock, conditional write, one credit row."""
        value = normalize_amount(amount)
        token = normalize_token(idempotency_token) if idempotency_token else None

        with atomic(self.session):
            if token is not None and self.repository.find_entry_by_token(token) is not None:
                raise DuplicateTransferError(token)

            locked = self.repository.lock_accounts([user_id])
            account = locked.get(user_id)
            if account is None:
                raise AccountNotFoundError(f"Account {user_id} not found")

            previous = to_money(account.balance)
            new_balance = previous + value
            if self.repository.update_balance(user_id, new_balance, expected_balance=previous) != 1:
                raise ConcurrentUpdateConflictError("Failed to update account balance")

            now = self.clock()
            try:
                entry = self.repository.add_entry(
                    user_id=user_id,
                    amount=value,
                    entry_type=EntryType.CREDIT,
                    balance_after=new_balance,
                    notes=notes or ADMIN_CREDIT_DESCRIPTION,
                    description=ADMIN_CREDIT_DESCRIPTION,
                    idempotency_token=token,
                    created_at=now,
                )
            except IntegrityError as exc:
                raise DuplicateTransferError(token or "") from exc

            response = CreditResponse(
                user_id=user_id,
                entry_id=entry.id,
                amount=value,
                previous_balance=previous,
                new_balance=new_balance,
                timestamp=now,
            )
            username, email = account.username, account.email

        logger.info(
            "account.credit",
            extra={"user_id": user_id, "amount": str(value), "balance": str(new_balance)},
        )
        dispatch_safely(
            self.notifier,
            NotificationEvent(
                type="admin_credit_added",
                title="Admin Credit Addition",
                message=f"Admin added {value} credits to user {username} (ID: {user_id})",
                data={
                    "user_id": user_id,
                    "username": username,
                    "email": email,
                    "amount_added": str(value),
                    "previous_balance": str(previous),
                    "new_balance": str(new_balance),
                    "admin_action": "credit_addition",
                },
                is_important=True,
            ),
        )
        return response
