"""Domain models used by the KidPoints package."""

from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Dict, List, Optional


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the form every stored timestamp takes."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


class TransactionType(str, Enum):
    """Enumerates the causes of a points balance change."""

    HABIT = "HABIT"
    BEHAVIOR = "BEHAVIOR"
    ROUTINE = "ROUTINE"
    REWARD_REDEMPTION = "REWARD_REDEMPTION"
    ADJUSTMENT = "ADJUSTMENT"

    @property
    def label(self) -> str:
        return _TRANSACTION_LABELS[self]


_TRANSACTION_LABELS = {
    TransactionType.HABIT: "Habit",
    TransactionType.BEHAVIOR: "Behavior",
    TransactionType.ROUTINE: "Routine",
    TransactionType.REWARD_REDEMPTION: "Reward",
    TransactionType.ADJUSTMENT: "Adjustment",
}


class HabitCategory(str, Enum):
    SLEEP = "SLEEP"
    NUTRITION = "NUTRITION"
    EXERCISE = "EXERCISE"
    HYGIENE = "HYGIENE"
    SOCIAL = "SOCIAL"


class BehaviorType(str, Enum):
    POSITIVE = "POSITIVE"
    NEGATIVE = "NEGATIVE"


class AdhdType(str, Enum):
    INATTENTIVE = "INATTENTIVE"
    HYPERACTIVE = "HYPERACTIVE"
    COMBINED = "COMBINED"


class Weekday(str, Enum):
    """Days a routine can be scheduled on, in ``date.weekday()`` order."""

    MONDAY = "MONDAY"
    TUESDAY = "TUESDAY"
    WEDNESDAY = "WEDNESDAY"
    THURSDAY = "THURSDAY"
    FRIDAY = "FRIDAY"
    SATURDAY = "SATURDAY"
    SUNDAY = "SUNDAY"

    @classmethod
    def for_date(cls, day: date) -> "Weekday":
        return list(cls)[day.weekday()]


class SummaryPeriod(str, Enum):
    """Reporting windows for points summaries and statistics."""

    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"

    def start(self, now: datetime) -> datetime:
        """Return the first moment included in the period ending at ``now``."""

        if self is SummaryPeriod.WEEK:
            return now - timedelta(days=7)
        if self is SummaryPeriod.MONTH:
            return datetime(now.year, now.month, 1)
        if self is SummaryPeriod.QUARTER:
            return datetime(now.year, (now.month - 1) // 3 * 3 + 1, 1)
        return datetime(now.year, 1, 1)

    def rolling_start(self, now: datetime) -> datetime:
        """Return the start of a rolling window of this length ending at ``now``."""

        if self is SummaryPeriod.WEEK:
            return now - timedelta(days=7)
        if self is SummaryPeriod.MONTH:
            return _shift_months(now, -1)
        if self is SummaryPeriod.QUARTER:
            return _shift_months(now, -3)
        return _shift_months(now, -12)


def _shift_months(moment: datetime, months: int) -> datetime:
    index = moment.year * 12 + moment.month - 1 + months
    year, month = divmod(index, 12)
    day = min(moment.day, calendar.monthrange(year, month + 1)[1])
    return moment.replace(year=year, month=month + 1, day=day)


@dataclass(slots=True)
class LedgerEntry:
    """Represents a single entry of a :class:`~kidpoints.ledger.PointsLedger`."""

    points: int
    type: TransactionType
    description: str
    balance_after: int
    related_id: Optional[int] = None
    metadata: Dict[str, str] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", TransactionType(self.type))


@dataclass(slots=True)
class ConsistencyIssue:
    """One ledger entry whose stored balance breaks the running sum."""

    index: int
    transaction_id: Optional[int]
    expected_balance: int
    stored_balance: int


@dataclass(slots=True)
class ConsistencyReport:
    """Result of replaying a child's transactions."""

    child_id: Optional[int]
    computed_balance: int
    stored_balance: Optional[int] = None
    issues: List[ConsistencyIssue] = field(default_factory=list)
    negative_balance: bool = False

    @property
    def is_valid(self) -> bool:
        balance_matches = self.stored_balance is None or self.stored_balance == self.computed_balance
        return balance_matches and not self.issues and not self.negative_balance

    def as_dict(self) -> Dict[str, object]:
        return {
            "child_id": self.child_id,
            "computed_balance": self.computed_balance,
            "stored_balance": self.stored_balance,
            "negative_balance": self.negative_balance,
            "is_valid": self.is_valid,
            "issues": [
                {
                    "index": issue.index,
                    "transaction_id": issue.transaction_id,
                    "expected_balance": issue.expected_balance,
                    "stored_balance": issue.stored_balance,
                }
                for issue in self.issues
            ],
        }
