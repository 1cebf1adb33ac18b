from .db import Account as AccountModel
from .db import AdminNotification as AdminNotificationModel
from .db import EntryType
from .db import LedgerEntry as LedgerEntryModel
from .schemas import (
    AccountCreate,
    AccountResponse,
    BalanceResponse,
    CreditRequest,
    CreditResponse,
    LedgerEntryResponse,
    NotificationResponse,
    Pagination,
    StatementResponse,
    StatementStatistics,
    TransferRequest,
    TransferResponse,
)

__all__ = [
    "AccountCreate",
    "AccountResponse",
    "BalanceResponse",
    "CreditRequest",
    "CreditResponse",
    "LedgerEntryResponse",
    "NotificationResponse",
    "Pagination",
    "StatementResponse",
    "StatementStatistics",
    "TransferRequest",
    "TransferResponse",
    "AccountModel",
    "AdminNotificationModel",
    "EntryType",
    "LedgerEntryModel",
]
