from fastapi import Depends, Request
from sqlmodel import Session

from ..services import (
    AccountService,
    LedgerRepository,
    NotificationService,
    StatementService,
    TransferService,
)
from .db import get_session


def get_account_service(
    request: Request, session: Session = Depends(get_session)
) -> AccountService:
    return AccountService(
        session, LedgerRepository(session), notifier=request.app.state.notifier
    )


def get_transfer_service(
    request: Request, session: Session = Depends(get_session)
) -> TransferService:
    return TransferService(
        session,
        LedgerRepository(session),
        settings=request.app.state.settings,
        notifier=request.app.state.notifier,
    )


def get_statement_service(
    request: Request, session: Session = Depends(get_session)
) -> StatementService:
    return StatementService(
        session, LedgerRepository(session), settings=request.app.state.settings
    )


def get_notification_service(session: Session = Depends(get_session)) -> NotificationService:
    return NotificationService(session, LedgerRepository(session))
