from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, status

from ..core.dependencies import (
    get_account_service,
    get_notification_service,
    get_statement_service,
    get_transfer_service,
)
from ..models import (
    AccountCreate,
    AccountResponse,
    BalanceResponse,
    CreditRequest,
    CreditResponse,
    NotificationResponse,
    StatementResponse,
    TransferRequest,
    TransferResponse,
)
from ..services import AccountService, NotificationService, StatementService, TransferService


router = APIRouter(prefix="/accounts", tags=["accounts"])

@router.post("", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
def create_account(
    payload: AccountCreate,
    service: AccountService = Depends(get_account_service),
) -> AccountResponse:
    return service.create_account(payload)

@router.get("/{user_id}", response_model=AccountResponse)
def get_account(
    user_id: int,
    service: AccountService = Depends(get_account_service),
) -> AccountResponse:
    return service.get_account(user_id)

@router.get("/{user_id}/balance", response_model=BalanceResponse)
def get_balance(
    user_id: int,
    service: AccountService = Depends(get_account_service),
) -> BalanceResponse:
    return service.get_balance(user_id)

@router.post(
    "/{user_id}/credits",
    response_model=CreditResponse,
    status_code=status.HTTP_201_CREATED,
)
def add_credit(
    user_id: int,
    payload: CreditRequest,
    service: AccountService = Depends(get_account_service),
    idempotency_key: Optional[str] = Header(
        default=None, convert_underscores=False, alias="Idempotency-Key"
    ),
) -> CreditResponse:
    return service.credit(user_id, payload.amount, payload.notes, idempotency_key)

@router.get("/{user_id}/statement", response_model=StatementResponse)
def get_statement(
    user_id: int,
    page: int = 1,
    limit: Optional[int] = None,
    search: Optional[str] = None,
    entry_type: Optional[str] = Query(default=None, alias="type"),
    sort: str = "date",
    order: str = "desc",
    service: StatementService = Depends(get_statement_service),
) -> StatementResponse:
    return service.get_statement(
        user_id,
        page=page,
        limit=limit,
        search=search,
        entry_type=entry_type,
        sort=sort,
        order=order,
    )

transfer_router = APIRouter(prefix="/transfers", tags=["transfers"])

@transfer_router.post("", response_model=TransferResponse, status_code=status.HTTP_201_CREATED)
def create_transfer(
    payload: TransferRequest,
    service: TransferService = Depends(get_transfer_service),
    idempotency_key: Optional[str] = Header(
        default=None, convert_underscores=False, alias="Idempotency-Key"
    ),
) -> TransferResponse:
    return service.transfer(
        payload.sender_id,
        payload.receiver,
        payload.amount,
        notes=payload.notes,
        idempotency_token=idempotency_key,
    )

notification_router = APIRouter(prefix="/notifications", tags=["notifications"])

@notification_router.get("", response_model=list[NotificationResponse])
def list_notifications(
    limit: int = 20,
    unread: bool = False,
    service: NotificationService = Depends(get_notification_service),
) -> list[NotificationResponse]:
    return service.list_notifications(limit=limit, only_unread=unread)

__all__ = ["router", "transfer_router", "notification_router"]
