from __future__ import annotations

import logging
from collections.abc import Generator, Iterator
from contextlib import contextmanager
from typing import Any

from fastapi import Request
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, create_engine

from ..models import db as _db_models  # noqa: F401 - ensure models register with metadata
from .config import Settings
from .errors import StorageFailureError


logger = logging.getLogger(__name__)


def create_engine_for_url(
    database_url: str,
    *,
    echo: bool = False,
    pool_size: int | None = None,
    pool_timeout: int | None = None,
) -> Engine:
    connect_args: dict[str, Any] = {}
    options: dict[str, Any] = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
    else:
        options["pool_pre_ping"] = True
        if pool_size is not None:
            options["pool_size"] = pool_size
        if pool_timeout is not None:
            options["pool_timeout"] = pool_timeout
    return create_engine(database_url, echo=echo, connect_args=connect_args, **options)


class Database:
    """Owns the engine and its connection pool for the lifetime of the process."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        engine = create_engine_for_url(
            settings.database_url,
            echo=settings.database_echo,
            pool_size=settings.pool_size,
            pool_timeout=settings.pool_timeout,
        )
        return cls(engine)

    def create_all(self) -> None:
        SQLModel.metadata.create_all(self.engine)

    def session(self) -> Session:
        return Session(self.engine)

    def dispose(self) -> None:
        self.engine.dispose()
        logger.info("database.disposed", extra={"url": str(self.engine.url)})


def get_session(request: Request) -> Generator[Session, None, None]:
    database: Database = request.app.state.database
    with database.session() as session:
        yield session


def acquire_write_lock(session: Session) -> None:
    """Hold SQLite's database write lock until the session's transaction ends.

    SQLite ignores ``FOR UPDATE``, so row locks become ``BEGIN IMMEDIATE``:
    concurrent writers queue on the driver's busy timeout instead of
    interleaving their reads and writes. Other backends lock rows themselves.
    """
    connection = session.connection()
    if connection.dialect.name != "sqlite":
        return
    driver_connection = connection.connection.driver_connection
    # A transaction that already wrote holds the lock.
    if not driver_connection.in_transaction:
        connection.exec_driver_sql("BEGIN IMMEDIATE")


@contextmanager
def atomic(session: Session) -> Iterator[Session]:
    """Commit on success; roll back on any error and surface driver errors as StorageFailure."""
    try:
        yield session
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        raise StorageFailureError(
            "An error occurred while processing the request. Please try again."
        ) from exc
    except Exception:
        session.rollback()
        raise
