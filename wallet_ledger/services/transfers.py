"""Wallet-to-wallet transfers.

A transfer moves an amount from one account to another inside a single
database transaction: both account rows are locked in ascending id order,
the sender is debited with a conditional write, the receiver is credited,
and a debit/credit pair sharing one idempotency token is appended to the
ledger. Any failure rolls the whole transaction back.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from ..core.config import Settings, get_settings
from ..core.db import atomic
from ..core.errors import (
    AmountLimitExceededError,
    ConcurrentUpdateConflictError,
    DuplicateTransferError,
    InsufficientBalanceError,
    InvalidRequestError,
    InvariantViolationError,
    RateLimitExceededError,
    ReceiverNotFoundError,
    SelfTransferNotAllowedError,
    SenderNotFoundError,
    WalletError,
)
from ..core.money import normalize_amount, to_money
from ..models import AccountModel, EntryType, TransferResponse
from .notifications import NotificationDispatcher, NotificationEvent, dispatch_safely
from .repository import LedgerRepository


logger = logging.getLogger(__name__)

DEFAULT_TRANSFER_NOTE = "Transfer Credit"
MAX_TOKEN_LENGTH = 64


class TransferStage(str, Enum):
    VALIDATING = "validating"
    LOCKING = "locking"
    MUTATING = "mutating"
    LEDGER_WRITING = "ledger_writing"
    COMMITTED = "committed"
    ABORTED = "aborted"


def normalize_token(token: Optional[str]) -> str:
    """Return the caller's idempotency token, or a fresh one when absent."""
    if token is None or not token.strip():
        return str(uuid4())
    token = token.strip()
    if len(token) > MAX_TOKEN_LENGTH:
        raise InvalidRequestError(
            f"Idempotency token cannot exceed {MAX_TOKEN_LENGTH} characters"
        )
    return token


def is_self_transfer(sender: AccountModel, receiver: AccountModel, identifier: str) -> bool:
    target = identifier.strip().lower()
    return (
        sender.user_id == receiver.user_id
        or sender.username.lower() == receiver.username.lower()
        or sender.email.lower() == receiver.email.lower()
        or sender.username.lower() == target
        or sender.email.lower() == target
    )


class TransferService:
    def __init__(
        self,
        session: Session,
        repository: Optional[LedgerRepository] = None,
        *,
        settings: Optional[Settings] = None,
        notifier: Optional[NotificationDispatcher] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.session = session
        self.repository = repository or LedgerRepository(session)
        self.settings = settings or get_settings()
        self.notifier = notifier
        self.clock = clock or (lambda: datetime.now(UTC))
        self.stage = TransferStage.VALIDATING

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def transfer(
        self,
        sender_id: int,
        receiver_identifier: str,
        amount: Any,
        notes: Optional[str] = None,
        idempotency_token: Optional[str] = None,
    ) -> TransferResponse:
        self.stage = TransferStage.VALIDATING
        try:
            value = normalize_amount(amount)
            if value > self.settings.max_transfer_amount:
                raise AmountLimitExceededError(
                    f"Transfer amount cannot exceed {self.settings.max_transfer_amount}"
                )
            token = normalize_token(idempotency_token)
            with atomic(self.session):
                response, event = self._execute(
                    sender_id, receiver_identifier.strip(), value, notes, token
                )
        except WalletError as exc:
            logger.info(
                "transfer.aborted",
                extra={
                    "sender_id": sender_id,
                    "receiver": receiver_identifier,
                    "stage": self.stage.value,
                    "error_code": exc.code,
                },
            )
            self.stage = TransferStage.ABORTED
            raise

        self.stage = TransferStage.COMMITTED
        logger.info(
            "transfer.committed",
            extra={
                "transfer_id": response.transfer_id,
                "sender_id": response.sender_id,
                "receiver_id": response.receiver_id,
                "amount": str(response.amount),
            },
        )
        dispatch_safely(self.notifier, event)
        return response

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------
    def _execute(
        self,
        sender_id: int,
        receiver_identifier: str,
        amount: Decimal,
        notes: Optional[str],
        token: str,
    ) -> tuple[TransferResponse, NotificationEvent]:
        if self.repository.find_entry_by_token(token) is not None:
            raise DuplicateTransferError(token)

        sender = self.repository.get_account(sender_id)
        if sender is None:
            raise SenderNotFoundError("Sender not found.")

        # Addressing yourself must fail the same way whether or not the
        # identifier's casing matches a stored row.
        target = receiver_identifier.lower()
        if target in (sender.username.lower(), sender.email.lower()):
            raise SelfTransferNotAllowedError(
                "Cannot transfer money to your own account. Self-transfers are not allowed."
            )

        receiver = self._resolve_receiver(receiver_identifier)
        if is_self_transfer(sender, receiver, receiver_identifier):
            raise SelfTransferNotAllowedError(
                "Cannot transfer money to your own account. Self-transfers are not allowed."
            )

        self._ensure_covered(sender.balance, amount)
        self._enforce_rate_limit(sender.user_id)

        self.stage = TransferStage.LOCKING
        locked = self.repository.lock_accounts([sender.user_id, receiver.user_id])
        if sender.user_id not in locked:
            raise SenderNotFoundError("Sender not found.")
        if receiver.user_id not in locked:
            raise ReceiverNotFoundError("The recipient's email or username does not exist.")
        sender = locked[sender.user_id]
        receiver = locked[receiver.user_id]

        sender_previous = to_money(sender.balance)
        receiver_previous = to_money(receiver.balance)
        self._ensure_covered(sender_previous, amount)
        sender_new = sender_previous - amount
        receiver_new = receiver_previous + amount

        self.stage = TransferStage.MUTATING
        updated = self.repository.update_balance(
            sender.user_id,
            sender_new,
            expected_balance=sender_previous,
            expected_minimum=amount,
        )
        if updated != 1:
            raise ConcurrentUpdateConflictError("Failed to update sender balance")
        updated = self.repository.update_balance(
            receiver.user_id, receiver_new, expected_balance=receiver_previous
        )
        if updated != 1:
            raise ConcurrentUpdateConflictError("Failed to update receiver balance")

        self.session.refresh(sender)
        if to_money(sender.balance) < 0:
            raise InvariantViolationError("Transfer would result in negative balance")

        self.stage = TransferStage.LEDGER_WRITING
        note = notes if notes else DEFAULT_TRANSFER_NOTE
        now = self.clock()
        try:
            debit = self.repository.add_entry(
                user_id=sender.user_id,
                amount=amount,
                entry_type=EntryType.DEBIT,
                balance_after=sender_new,
                notes=note,
                description=f"Credit sent to {receiver.email} - Transfer ID: {token}",
                counterparty=receiver.username,
                idempotency_token=token,
                created_at=now,
            )
            credit = self.repository.add_entry(
                user_id=receiver.user_id,
                amount=amount,
                entry_type=EntryType.CREDIT,
                balance_after=receiver_new,
                notes=note,
                description=f"Received credit from {sender.email} - Transfer ID: {token}",
                counterparty=sender.username,
                idempotency_token=token,
                created_at=now,
            )
        except IntegrityError as exc:
            # A concurrent request with the same token committed first.
            raise DuplicateTransferError(token) from exc

        response = TransferResponse(
            transfer_id=token,
            sender_id=sender.user_id,
            sender=sender.username,
            receiver_id=receiver.user_id,
            receiver=receiver.username,
            amount=amount,
            sender_new_balance=sender_new,
            receiver_new_balance=receiver_new,
            debit_entry_id=debit.id,
            credit_entry_id=credit.id,
            timestamp=now,
        )
        event = NotificationEvent(
            type="balance_transfer",
            title="Balance Transfer Completed",
            message=(
                f"Balance transfer of {amount} completed from "
                f"{sender.username} to {receiver.username}"
            ),
            data={
                "transfer_id": token,
                "sender_id": sender.user_id,
                "sender_username": sender.username,
                "sender_email": sender.email,
                "receiver_id": receiver.user_id,
                "receiver_username": receiver.username,
                "receiver_email": receiver.email,
                "amount": str(amount),
                "sender_previous_balance": str(sender_previous),
                "sender_new_balance": str(sender_new),
                "receiver_previous_balance": str(receiver_previous),
                "receiver_new_balance": str(receiver_new),
                "notes": note,
            },
            is_important=True,
        )
        return response, event

    def _resolve_receiver(self, identifier: str) -> AccountModel:
        matches = self.repository.find_accounts_by_identifier(identifier)
        # An identifier that is one user's email and another's username is ambiguous.
        if len(matches) != 1:
            raise ReceiverNotFoundError("The recipient's email or username does not exist.")
        return matches[0]

    @staticmethod
    def _ensure_covered(balance: Decimal, amount: Decimal) -> None:
        available = to_money(balance)
        if available < amount:
            raise InsufficientBalanceError(available=available, required=amount)

    def _enforce_rate_limit(self, sender_id: int) -> None:
        since = self.clock() - timedelta(seconds=self.settings.transfer_rate_window_seconds)
        recent = self.repository.count_recent_entries(sender_id, EntryType.DEBIT, since)
        if recent >= self.settings.transfer_rate_limit:
            raise RateLimitExceededError(
                "Too many transfers. Please wait before making another transfer."
            )
