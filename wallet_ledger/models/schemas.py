from datetime import datetime
from decimal import Decimal
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, Field


class AccountCreate(BaseModel):
    username: str = Field(..., min_length=1, max_length=64)
    email: str = Field(..., min_length=3, max_length=255)


class AccountResponse(BaseModel):
    user_id: int
    username: str
    email: str
    balance: Decimal = Field(..., ge=0, description="Wallet balance, two decimal places")
    created_at: datetime


class BalanceResponse(BaseModel):
    user_id: int
    balance: Decimal


class CreditRequest(BaseModel):
    # Text is passed through; the service rejects anything that is not a valid amount.
    amount: Union[Decimal, str]
    notes: Optional[str] = Field(default=None, description="Narrative to display on the statement")


class CreditResponse(BaseModel):
    user_id: int
    entry_id: int
    amount: Decimal
    previous_balance: Decimal
    new_balance: Decimal
    timestamp: datetime


class TransferRequest(BaseModel):
    sender_id: int
    receiver: str = Field(..., min_length=1, description="Receiver email or username")
    amount: Union[Decimal, str]
    notes: Optional[str] = None


class TransferResponse(BaseModel):
    transfer_id: str
    sender_id: int
    sender: str
    receiver_id: int
    receiver: str
    amount: Decimal
    sender_new_balance: Decimal
    receiver_new_balance: Decimal
    debit_entry_id: int
    credit_entry_id: int
    timestamp: datetime


class LedgerEntryResponse(BaseModel):
    id: int
    user_id: int
    amount: Decimal
    type: Literal["debit", "credit"]
    counterparty: Optional[str] = None
    notes: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime
    previous_balance: Decimal = Field(..., description="Balance before this entry was applied")


class Pagination(BaseModel):
    page: int
    limit: int
    total_pages: int
    total_count: int
    has_next_page: bool
    has_prev_page: bool


class StatementStatistics(BaseModel):
    current_balance: Decimal
    total_debits: Decimal
    total_credits: Decimal
    total_transactions: int


class StatementResponse(BaseModel):
    data: list[LedgerEntryResponse]
    pagination: Pagination
    statistics: StatementStatistics


class NotificationResponse(BaseModel):
    id: int
    type: str
    title: str
    message: str
    data: Optional[dict[str, Any]] = None
    is_important: bool
    is_read: bool
    created_at: datetime
