from decimal import Decimal

from sqlalchemy import func
from sqlmodel import select

from ..core.db import Database
from ..core.money import to_money
from ..models import AccountModel, LedgerEntryModel
from ..services.notifications import NotificationEvent


class RecordingNotifier:
    def __init__(self) -> None:
        self.events: list[NotificationEvent] = []

    def dispatch(self, event: NotificationEvent) -> None:
        self.events.append(event)


class FailingNotifier:
    def dispatch(self, event: NotificationEvent) -> None:
        raise RuntimeError("notification backend is down")


def balance_of(database: Database, user_id: int) -> Decimal:
    with database.session() as session:
        return to_money(session.get(AccountModel, user_id).balance)


def ledger_size(database: Database) -> int:
    with database.session() as session:
        return session.exec(select(func.count()).select_from(LedgerEntryModel)).one()


def entries_for(database: Database, user_id: int) -> list[LedgerEntryModel]:
    with database.session() as session:
        stmt = (
            select(LedgerEntryModel)
            .where(LedgerEntryModel.user_id == user_id)
            .order_by(LedgerEntryModel.id)
        )
        entries = list(session.exec(stmt))
        session.expunge_all()
        return entries
