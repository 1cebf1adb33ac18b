from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from sqlmodel import Session

from ..core.config import Settings
from ..core.db import Database
from ..models import NotificationResponse
from .repository import LedgerRepository


logger = logging.getLogger(__name__)


@dataclass
class NotificationEvent:
    type: str
    title: str
    message: str
    data: dict[str, Any] = field(default_factory=dict)
    is_important: bool = False


class NotificationDispatcher(Protocol):
    def dispatch(self, event: NotificationEvent) -> None: ...


class DatabaseNotificationDispatcher:
    """Stores events as admin notifications, in a session of its own.

    Called after the originating transaction has committed, so a failure here
    can never undo the movement that triggered it.
    """

    def __init__(self, database: Database) -> None:
        self.database = database

    def dispatch(self, event: NotificationEvent) -> None:
        with self.database.session() as session:
            notification = LedgerRepository(session).add_notification(
                notification_type=event.type,
                title=event.title,
                message=event.message,
                data=event.data,
                is_important=event.is_important,
            )
            session.commit()
            logger.info(
                "notification.created",
                extra={"notification_id": notification.id, "notification_type": event.type},
            )


class NullNotificationDispatcher:
    def dispatch(self, event: NotificationEvent) -> None:
        logger.debug("notification.skipped", extra={"notification_type": event.type})


def build_notifier(settings: Settings, database: Database) -> NotificationDispatcher:
    if settings.notifications_enabled:
        return DatabaseNotificationDispatcher(database)
    return NullNotificationDispatcher()


def dispatch_safely(notifier: Optional[NotificationDispatcher], event: NotificationEvent) -> None:
    if notifier is None:
        return
    try:
        notifier.dispatch(event)
    except Exception:
        logger.exception(
            "notification.failed", extra={"notification_type": event.type}
        )


class NotificationService:
    def __init__(self, session: Session, repository: Optional[LedgerRepository] = None) -> None:
        self.session = session
        self.repository = repository or LedgerRepository(session)

    def list_notifications(
        self, limit: int = 20, only_unread: bool = False
    ) -> list[NotificationResponse]:
        return [
            NotificationResponse.model_validate(notification, from_attributes=True)
            for notification in self.repository.list_notifications(max(1, min(limit, 100)), only_unread)
        ]
