import itertools
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from ..core.config import Settings
from ..core.db import Database
from ..main import create_app
from ..services import LedgerRepository
from .helpers import RecordingNotifier


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(database_url=f"sqlite:///{tmp_path / 'test.db'}", log_level="WARNING")


@pytest.fixture
def client(settings: Settings) -> TestClient:
    app = create_app(settings)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def database(settings: Settings) -> Database:
    database = Database.from_settings(settings)
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def session(database: Database):
    with database.session() as session:
        yield session


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def make_account(session):
    counter = itertools.count(1)

    def _make(balance: str = "0.00", username: str | None = None, email: str | None = None) -> int:
        username = username or f"user{next(counter)}"
        account = LedgerRepository(session).add_account(
            username=username,
            email=email or f"{username}@example.com",
            balance=Decimal(balance),
        )
        session.commit()
        return account.user_id

    return _make
