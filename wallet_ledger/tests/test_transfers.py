from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from ..core.errors import (
    AmountLimitExceededError,
    ConcurrentUpdateConflictError,
    DuplicateTransferError,
    InsufficientBalanceError,
    InvalidAmountError,
    InvariantViolationError,
    RateLimitExceededError,
    ReceiverNotFoundError,
    SelfTransferNotAllowedError,
    SenderNotFoundError,
    StorageFailureError,
)
from ..models import EntryType
from ..services import LedgerRepository, TransferService, TransferStage
from .helpers import FailingNotifier, balance_of, entries_for, ledger_size


@pytest.fixture
def service(session, settings, notifier) -> TransferService:
    return TransferService(session, settings=settings, notifier=notifier)


def test_transfer_moves_funds_and_writes_one_pair(service, database, make_account) -> None:
    sender = make_account("100.00", username="alice")
    receiver = make_account("10.00", username="bob")

    result = service.transfer(sender, "bob@example.com", "40.00", notes="dinner")

    assert result.sender_new_balance == Decimal("60.00")
    assert result.receiver_new_balance == Decimal("50.00")
    assert balance_of(database, sender) == Decimal("60.00")
    assert balance_of(database, receiver) == Decimal("50.00")
    assert ledger_size(database) == 2

    [debit] = entries_for(database, sender)
    [credit] = entries_for(database, receiver)
    assert debit.type == EntryType.DEBIT.value
    assert credit.type == EntryType.CREDIT.value
    assert debit.amount == credit.amount == Decimal("40.00")
    assert debit.idempotency_token == credit.idempotency_token == result.transfer_id
    assert result.transfer_id in debit.description
    assert debit.counterparty == "bob"
    assert credit.counterparty == "alice"
    assert debit.balance_after == Decimal("60.00")
    assert credit.balance_after == Decimal("50.00")
    assert service.stage is TransferStage.COMMITTED


def test_receiver_can_be_addressed_by_username(service, database, make_account) -> None:
    sender = make_account("20.00", username="carol")
    receiver = make_account(username="dave")

    service.transfer(sender, "dave", "5.00")

    assert balance_of(database, receiver) == Decimal("5.00")


@pytest.mark.parametrize(
    ("sender_balance", "receiver_balance", "amount"),
    [
        ("100.00", "10.00", "40.00"),
        ("50.00", "0.00", "50.00"),
        ("12.34", "0.00", "0.01"),
        ("999.99", "1.01", "998.98"),
        ("10000.00", "250.50", "10000.00"),
    ],
)
def test_successful_transfers_conserve_total_balance(
    service, database, make_account, sender_balance, receiver_balance, amount
) -> None:
    sender = make_account(sender_balance)
    receiver = make_account(receiver_balance)
    total_before = Decimal(sender_balance) + Decimal(receiver_balance)

    service.transfer(sender, "user2@example.com", amount)

    sender_after = balance_of(database, sender)
    receiver_after = balance_of(database, receiver)
    assert sender_after == Decimal(sender_balance) - Decimal(amount)
    assert receiver_after == Decimal(receiver_balance) + Decimal(amount)
    assert sender_after + receiver_after == total_before
    assert sender_after >= 0


def test_insufficient_balance_leaves_everything_untouched(service, database, make_account) -> None:
    sender = make_account("5.00")
    receiver = make_account("0.00")

    with pytest.raises(InsufficientBalanceError) as excinfo:
        service.transfer(sender, "user2@example.com", "10.00")

    assert excinfo.value.available == Decimal("5.00")
    assert excinfo.value.required == Decimal("10.00")
    assert balance_of(database, sender) == Decimal("5.00")
    assert balance_of(database, receiver) == Decimal("0.00")
    assert ledger_size(database) == 0
    assert service.stage is TransferStage.ABORTED


def test_transfer_of_entire_balance_leaves_zero(service, database, make_account) -> None:
    sender = make_account("25.00")
    make_account()

    service.transfer(sender, "user2@example.com", "25.00")

    assert balance_of(database, sender) == Decimal("0.00")


def test_one_cent_over_balance_is_rejected(service, database, make_account) -> None:
    sender = make_account("25.00")
    make_account()

    with pytest.raises(InsufficientBalanceError):
        service.transfer(sender, "user2@example.com", "25.01")

    assert balance_of(database, sender) == Decimal("25.00")


@pytest.mark.parametrize(
    "identifier",
    ["alice@example.com", "ALICE@Example.COM", "alice", "Alice", "  alice  "],
)
def test_self_transfer_is_rejected_for_every_identifier(
    service, database, make_account, identifier
) -> None:
    sender = make_account("100.00", username="alice")
    make_account(username="bob")

    with pytest.raises(SelfTransferNotAllowedError):
        service.transfer(sender, identifier, "20.00")

    assert balance_of(database, sender) == Decimal("100.00")
    assert ledger_size(database) == 0


def test_self_transfer_detected_when_receiver_row_shares_email_casing(
    service, database, make_account
) -> None:
    # Receiver row differs only in email casing, a legacy duplicate.
    sender = make_account("100.00", username="erin", email="erin@example.com")
    make_account(username="erin-alt", email="ERIN@example.com")

    with pytest.raises(SelfTransferNotAllowedError):
        service.transfer(sender, "erin-alt", "1.00")

    assert balance_of(database, sender) == Decimal("100.00")


def test_unknown_sender(service, make_account) -> None:
    make_account()

    with pytest.raises(SenderNotFoundError):
        service.transfer(999, "user1@example.com", "1.00")


def test_unknown_receiver(service, database, make_account) -> None:
    sender = make_account("10.00")

    with pytest.raises(ReceiverNotFoundError):
        service.transfer(sender, "nobody@example.com", "1.00")

    assert balance_of(database, sender) == Decimal("10.00")


def test_ambiguous_receiver_identifier_is_not_resolved(service, make_account) -> None:
    sender = make_account("10.00")
    make_account(username="frank", email="frank@example.com")
    make_account(username="grace", email="frank")

    with pytest.raises(ReceiverNotFoundError):
        service.transfer(sender, "frank", "1.00")


@pytest.mark.parametrize("amount", ["0", "-5.00", "NaN", "Infinity", "abc", "1.001"])
def test_invalid_amounts_are_rejected(service, database, make_account, amount) -> None:
    sender = make_account("100.00")
    make_account()

    with pytest.raises(InvalidAmountError):
        service.transfer(sender, "user2@example.com", amount)

    assert balance_of(database, sender) == Decimal("100.00")


def test_amount_ceiling(service, database, make_account) -> None:
    sender = make_account("20000.00")
    make_account()

    with pytest.raises(AmountLimitExceededError):
        service.transfer(sender, "user2@example.com", "10000.01")

    service.transfer(sender, "user2@example.com", "10000.00")
    assert balance_of(database, sender) == Decimal("10000.00")


def test_tenth_transfer_in_the_hour_succeeds_and_eleventh_fails(
    service, database, make_account
) -> None:
    sender = make_account("100.00")
    make_account()

    for _ in range(10):
        service.transfer(sender, "user2@example.com", "1.00")

    with pytest.raises(RateLimitExceededError):
        service.transfer(sender, "user2@example.com", "1.00")

    assert balance_of(database, sender) == Decimal("90.00")
    assert ledger_size(database) == 20


def test_rate_limit_window_is_rolling(session, settings, database, make_account) -> None:
    now = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
    sender = make_account("100.00")
    make_account()
    repository = LedgerRepository(session)
    for minutes_ago in range(61, 71):
        repository.add_entry(
            user_id=sender,
            amount=Decimal("1.00"),
            entry_type=EntryType.DEBIT,
            balance_after=Decimal("100.00"),
            created_at=now - timedelta(minutes=minutes_ago),
        )
    session.commit()
    service = TransferService(session, settings=settings, clock=lambda: now)

    service.transfer(sender, "user2@example.com", "1.00")

    later = TransferService(session, settings=settings, clock=lambda: now + timedelta(minutes=1))
    for _ in range(9):
        later.transfer(sender, "user2@example.com", "1.00")
    with pytest.raises(RateLimitExceededError):
        later.transfer(sender, "user2@example.com", "1.00")


def test_received_credits_do_not_count_toward_rate_limit(service, make_account) -> None:
    sender = make_account("100.00")
    receiver = make_account("100.00")

    for _ in range(10):
        service.transfer(receiver, "user1@example.com", "1.00")

    service.transfer(sender, "user2@example.com", "1.00")


def test_replayed_token_is_rejected_and_moves_money_once(
    service, database, make_account
) -> None:
    sender = make_account("100.00")
    receiver = make_account("0.00")

    first = service.transfer(sender, "user2@example.com", "15.00", idempotency_token="tok-1")
    with pytest.raises(DuplicateTransferError) as excinfo:
        service.transfer(sender, "user2@example.com", "15.00", idempotency_token="tok-1")

    assert first.transfer_id == "tok-1"
    assert excinfo.value.token == "tok-1"
    assert balance_of(database, sender) == Decimal("85.00")
    assert balance_of(database, receiver) == Decimal("15.00")
    assert ledger_size(database) == 2


def test_token_race_is_caught_by_unique_constraint(
    service, database, make_account, monkeypatch
) -> None:
    sender = make_account("100.00")
    receiver = make_account("0.00")
    service.transfer(sender, "user2@example.com", "15.00", idempotency_token="tok-race")

    # The second request's pre-check runs before the first one commits.
    monkeypatch.setattr(LedgerRepository, "find_entry_by_token", lambda self, token: None)
    with pytest.raises(DuplicateTransferError):
        service.transfer(sender, "user2@example.com", "15.00", idempotency_token="tok-race")

    assert balance_of(database, sender) == Decimal("85.00")
    assert balance_of(database, receiver) == Decimal("15.00")
    assert ledger_size(database) == 2


def test_generated_tokens_are_unique(service, make_account) -> None:
    sender = make_account("100.00")
    make_account()

    first = service.transfer(sender, "user2@example.com", "1.00")
    second = service.transfer(sender, "user2@example.com", "1.00")

    assert first.transfer_id != second.transfer_id


def test_conditional_write_miss_rolls_back(service, database, make_account, monkeypatch) -> None:
    sender = make_account("100.00")
    receiver = make_account("0.00")
    monkeypatch.setattr(LedgerRepository, "update_balance", lambda self, *args, **kwargs: 0)

    with pytest.raises(ConcurrentUpdateConflictError) as excinfo:
        service.transfer(sender, "user2@example.com", "10.00")

    assert excinfo.value.status_code == 500
    assert balance_of(database, sender) == Decimal("100.00")
    assert balance_of(database, receiver) == Decimal("0.00")
    assert ledger_size(database) == 0


class NegativeWriteRepository(LedgerRepository):
    def update_balance(self, user_id, new_balance, **conditions):
        if conditions.get("expected_minimum") is not None:
            new_balance = Decimal("-1.00")
        return super().update_balance(user_id, new_balance, **conditions)


def test_negative_sender_balance_aborts(session, settings, database, make_account) -> None:
    sender = make_account("100.00")
    receiver = make_account("0.00")
    service = TransferService(session, NegativeWriteRepository(session), settings=settings)

    with pytest.raises(InvariantViolationError):
        service.transfer(sender, "user2@example.com", "10.00")

    assert balance_of(database, sender) == Decimal("100.00")
    assert balance_of(database, receiver) == Decimal("0.00")
    assert ledger_size(database) == 0
    assert service.stage is TransferStage.ABORTED


def test_storage_failure_during_ledger_write_rolls_back(
    service, database, make_account, monkeypatch
) -> None:
    sender = make_account("100.00")
    receiver = make_account("0.00")

    def _fail(self, **kwargs):
        raise OperationalError("INSERT INTO ledger_entries", {}, Exception("disk I/O error"))

    monkeypatch.setattr(LedgerRepository, "add_entry", _fail)

    with pytest.raises(StorageFailureError):
        service.transfer(sender, "user2@example.com", "10.00")

    assert balance_of(database, sender) == Decimal("100.00")
    assert balance_of(database, receiver) == Decimal("0.00")
    assert ledger_size(database) == 0


def test_notification_carries_before_and_after_balances(service, notifier, make_account) -> None:
    sender = make_account("100.00", username="alice")
    make_account("10.00", username="bob")

    result = service.transfer(sender, "bob", "40.00")

    [event] = notifier.events
    assert event.type == "balance_transfer"
    assert event.data["transfer_id"] == result.transfer_id
    assert event.data["sender_username"] == "alice"
    assert event.data["receiver_username"] == "bob"
    assert event.data["sender_previous_balance"] == "100.00"
    assert event.data["sender_new_balance"] == "60.00"
    assert event.data["receiver_previous_balance"] == "10.00"
    assert event.data["receiver_new_balance"] == "50.00"


def test_failed_transfer_sends_no_notification(service, notifier, make_account) -> None:
    sender = make_account("1.00")
    make_account()

    with pytest.raises(InsufficientBalanceError):
        service.transfer(sender, "user2@example.com", "10.00")

    assert notifier.events == []


def test_notification_failure_does_not_undo_transfer(
    session, settings, database, make_account
) -> None:
    sender = make_account("100.00")
    receiver = make_account("0.00")
    service = TransferService(session, settings=settings, notifier=FailingNotifier())

    result = service.transfer(sender, "user2@example.com", "30.00")

    assert result.sender_new_balance == Decimal("70.00")
    assert balance_of(database, receiver) == Decimal("30.00")


def test_accounts_are_locked_in_ascending_order(session, make_account) -> None:
    first = make_account()
    second = make_account()

    locked = LedgerRepository(session).lock_accounts([second, first])

    assert list(locked) == [first, second]


def test_balance_write_computed_from_a_stale_read_is_skipped(
    session, database, make_account
) -> None:
    user_id = make_account("100.00")
    repository = LedgerRepository(session)

    stale = repository.update_balance(
        user_id, Decimal("50.00"), expected_balance=Decimal("90.00")
    )
    fresh = repository.update_balance(
        user_id, Decimal("60.00"), expected_balance=Decimal("100.00")
    )
    session.commit()

    assert (stale, fresh) == (0, 1)
    assert balance_of(database, user_id) == Decimal("60.00")
