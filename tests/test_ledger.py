from datetime import datetime, timezone

import pytest

from kidpoints.exceptions import InsufficientPointsError, LedgerError
from kidpoints.ledger import PointsLedger
from kidpoints.models import TransactionType, utcnow


def test_credit_records_entry_with_running_balance() -> None:
    ledger = PointsLedger("Ava")

    entry = ledger.credit(5, TransactionType.HABIT, "Habit completed: Brush teeth", related_id=7)

    assert ledger.balance == 5
    assert entry.balance_after == 5
    assert entry.related_id == 7
    assert entry.type is TransactionType.HABIT
    assert ledger.transactions[-1] is entry


def test_zero_point_credit_still_records_entry() -> None:
    ledger = PointsLedger("Ava")

    entry = ledger.credit(0, TransactionType.HABIT, "Habit completed: Read")

    assert ledger.balance == 0
    assert entry.points == 0
    assert len(ledger.transactions) == 1


def test_debit_refuses_to_overdraw() -> None:
    ledger = PointsLedger("Ava")
    ledger.credit(3, TransactionType.BEHAVIOR, "Positive behavior: Shared toys")

    with pytest.raises(InsufficientPointsError):
        ledger.debit(4, TransactionType.BEHAVIOR, "Negative behavior: Yelling")

    assert ledger.balance == 3
    assert len(ledger.transactions) == 1


def test_apply_routes_signed_values() -> None:
    ledger = PointsLedger("Ava", starting_balance=10)

    ledger.apply(-4, TransactionType.HABIT, "Habit record removed: Read")
    ledger.apply(2, TransactionType.ROUTINE, "Routine completed: Morning")

    assert ledger.balance == 8
    assert [entry.points for entry in ledger.transactions] == [10, -4, 2]


def test_apply_capped_debits_at_most_the_balance() -> None:
    ledger = PointsLedger.resume("Ava", 2)

    entry = ledger.apply_capped(-5, TransactionType.BEHAVIOR, "Negative behavior: Hitting")

    assert ledger.balance == 0
    assert entry.points == -2
    assert entry.metadata["requested_points"] == "-5"


def test_redeem_deducts_cost() -> None:
    ledger = PointsLedger.resume("Ava", 12)

    entry = ledger.redeem("Movie night", 10, related_id=3)

    assert ledger.balance == 2
    assert entry.type is TransactionType.REWARD_REDEMPTION
    assert "Movie night" in entry.description
    with pytest.raises(InsufficientPointsError):
        ledger.redeem("Ice cream", 3)


def test_adjust_limits() -> None:
    ledger = PointsLedger.resume("Ava", 5)

    with pytest.raises(LedgerError):
        ledger.adjust(0, "Nothing")
    with pytest.raises(LedgerError):
        ledger.adjust(101, "Too generous")
    with pytest.raises(InsufficientPointsError):
        ledger.adjust(-6, "Too harsh")

    entry = ledger.adjust(-5, "Broke a rule")
    assert entry.type is TransactionType.ADJUSTMENT
    assert ledger.balance == 0


def test_recent_and_filters() -> None:
    ledger = PointsLedger("Ava")
    ledger.credit(1, TransactionType.HABIT, "first")
    ledger.credit(2, TransactionType.BEHAVIOR, "second")
    ledger.debit(1, TransactionType.REWARD_REDEMPTION, "third")

    assert [entry.description for entry in ledger.recent(2)] == ["third", "second"]
    assert ledger.recent(0) == ()
    assert [entry.description for entry in ledger.filter(types=[TransactionType.HABIT])] == ["first"]
    assert ledger.last(transaction_type=TransactionType.BEHAVIOR).description == "second"
    assert ledger.earned() == 3
    assert ledger.spent() == 1


def test_export_csv_and_statement() -> None:
    ledger = PointsLedger("Ava")
    ledger.credit(4, TransactionType.HABIT, "Habit completed: Brush teeth")

    csv_text = ledger.export_csv()
    statement = ledger.statement()

    assert csv_text.splitlines()[0] == "timestamp,type,description,points,balance"
    assert "HABIT,Habit completed: Brush teeth,4,4" in csv_text
    assert "Current balance: 4 points" in statement


def test_replay_flags_broken_chain() -> None:
    report = PointsLedger.replay(1, [(1, 5, 5), (2, 3, 9), (3, -2, 7)], stored_balance=6)

    assert report.computed_balance == 6
    assert not report.is_valid
    assert [issue.transaction_id for issue in report.issues] == [2, 3]
    assert report.issues[0].expected_balance == 8


def test_replay_of_clean_history_is_valid() -> None:
    report = PointsLedger.replay(1, [(1, 5, 5), (2, -5, 0)], stored_balance=0)

    assert report.is_valid
    assert report.as_dict()["issues"] == []


def test_replay_detects_negative_running_balance() -> None:
    report = PointsLedger.replay(1, [(1, -1, -1)])

    assert report.negative_balance
    assert not report.is_valid


def test_entries_are_stamped_with_naive_utc_time() -> None:
    before = datetime.now(timezone.utc).replace(tzinfo=None)

    entry = PointsLedger("Ava").credit(1, TransactionType.HABIT, "Habit completed: Read")

    assert entry.timestamp.tzinfo is None
    assert before <= entry.timestamp <= utcnow()
