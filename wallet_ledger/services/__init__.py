from .accounts import AccountService
from .notifications import (
    DatabaseNotificationDispatcher,
    NotificationDispatcher,
    NotificationEvent,
    NotificationService,
    NullNotificationDispatcher,
    build_notifier,
)
from .repository import LedgerRepository, StatementFilter
from .statements import StatementService, reconstruct_previous_balances
from .transfers import TransferService, TransferStage

__all__ = [
    "AccountService",
    "DatabaseNotificationDispatcher",
    "LedgerRepository",
    "NotificationDispatcher",
    "NotificationEvent",
    "NotificationService",
    "NullNotificationDispatcher",
    "StatementFilter",
    "StatementService",
    "TransferService",
    "TransferStage",
    "build_notifier",
    "reconstruct_previous_balances",
]
