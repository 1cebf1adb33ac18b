from __future__ import annotations

from decimal import Decimal
from typing import Any


class WalletError(Exception):
    """Base class for every error the wallet services hand back to callers."""

    status_code = 500
    code = "wallet_error"

    def __init__(self, message: str, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        self.extra = extra


class InvalidRequestError(WalletError):
    status_code = 400
    code = "invalid_request"


class InvalidAmountError(WalletError):
    """Raised when an amount is not a finite positive value in cents."""

    status_code = 400
    code = "invalid_amount"


class AmountLimitExceededError(WalletError):
    status_code = 400
    code = "amount_limit_exceeded"


class InvalidPaginationError(WalletError):
    status_code = 400
    code = "invalid_pagination"


class AccountNotFoundError(WalletError):
    """Raised when a user id is missing from the account store."""

    status_code = 404
    code = "account_not_found"


class SenderNotFoundError(AccountNotFoundError):
    code = "sender_not_found"


class ReceiverNotFoundError(AccountNotFoundError):
    code = "receiver_not_found"


class DuplicateAccountError(WalletError):
    status_code = 409
    code = "duplicate_account"


class SelfTransferNotAllowedError(WalletError):
    status_code = 400
    code = "self_transfer_not_allowed"


class InsufficientBalanceError(WalletError):
    """Raised when a transfer would drop the sender below zero."""

    status_code = 400
    code = "insufficient_balance"

    def __init__(self, available: Decimal, required: Decimal) -> None:
        super().__init__(
            f"Insufficient balance. Available: {available}, Required: {required}",
            available=str(available),
            required=str(required),
        )
        self.available = available
        self.required = required


class RateLimitExceededError(WalletError):
    status_code = 429
    code = "rate_limit_exceeded"


class DuplicateTransferError(WalletError):
    """Raised when an idempotency token has already been recorded in the ledger."""

    status_code = 409
    code = "duplicate_transfer"

    def __init__(self, token: str) -> None:
        super().__init__("Transfer already processed", transfer_id=token)
        self.token = token


class ConcurrentUpdateConflictError(WalletError):
    code = "concurrent_update_conflict"


class InvariantViolationError(WalletError):
    code = "invariant_violation"


class StorageFailureError(WalletError):
    code = "storage_failure"
