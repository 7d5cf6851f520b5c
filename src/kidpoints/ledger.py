"""Points ledger encapsulating the balance rules for a single child."""

from __future__ import annotations

import csv
from datetime import datetime
from io import StringIO
from typing import Iterable, Mapping, Optional, Sequence, Tuple

from .exceptions import InsufficientPointsError, LedgerError
from .models import ConsistencyIssue, ConsistencyReport, LedgerEntry, TransactionType
from .points import MAX_ADJUSTMENT, PointsLike, format_points, require_positive, to_points


class PointsLedger:
    """Append-only ledger of point changes for one child.

    The balance always equals the sum of the recorded deltas and never drops
    below zero.
    """

    __slots__ = ("child_name", "_balance", "_entries")

    def __init__(self, child_name: str, *, starting_balance: PointsLike = 0) -> None:
        self.child_name = child_name
        self._balance = 0
        self._entries: list[LedgerEntry] = []
        opening = require_positive(to_points(starting_balance), allow_zero=True)
        if opening:
            self.adjust(opening, "Starting balance", limit=None)

    @classmethod
    def resume(cls, child_name: str, balance: int) -> "PointsLedger":
        """Continue a ledger whose earlier entries are stored elsewhere."""

        ledger = cls(child_name)
        ledger._balance = require_positive(to_points(balance), allow_zero=True)
        return ledger

    @property
    def balance(self) -> int:
        """Return the current points balance."""

        return self._balance

    @property
    def transactions(self) -> Tuple[LedgerEntry, ...]:
        """Return an immutable view of the transaction history."""

        return tuple(self._entries)

    def credit(
        self,
        points: PointsLike,
        transaction_type: TransactionType,
        description: str,
        *,
        related_id: Optional[int] = None,
        metadata: Optional[Mapping[str, str]] = None,
    ) -> LedgerEntry:
        """Add points earned by a habit, behavior or routine."""

        value = require_positive(to_points(points), allow_zero=True)
        return self._record(value, transaction_type, description, related_id, metadata)

    def debit(
        self,
        points: PointsLike,
        transaction_type: TransactionType,
        description: str,
        *,
        related_id: Optional[int] = None,
        metadata: Optional[Mapping[str, str]] = None,
    ) -> LedgerEntry:
        """Remove points if the balance covers them."""

        value = require_positive(to_points(points), allow_zero=True)
        self._ensure_sufficient(value)
        return self._record(-value, transaction_type, description, related_id, metadata)

    def apply(
        self,
        points: PointsLike,
        transaction_type: TransactionType,
        description: str,
        *,
        related_id: Optional[int] = None,
        metadata: Optional[Mapping[str, str]] = None,
    ) -> LedgerEntry:
        """Apply a signed delta, refusing to overdraw the balance."""

        value = to_points(points)
        if value < 0:
            return self.debit(-value, transaction_type, description, related_id=related_id, metadata=metadata)
        return self.credit(value, transaction_type, description, related_id=related_id, metadata=metadata)

    def apply_capped(
        self,
        points: PointsLike,
        transaction_type: TransactionType,
        description: str,
        *,
        related_id: Optional[int] = None,
        metadata: Optional[Mapping[str, str]] = None,
    ) -> LedgerEntry:
        """Apply a signed delta, debiting at most the available balance."""

        value = to_points(points)
        extra = dict(metadata or {})
        if value < 0 and -value > self._balance:
            extra["requested_points"] = str(value)
            value = -self._balance
        return self._record(value, transaction_type, description, related_id, extra)

    def redeem(self, reward_title: str, cost: PointsLike, *, related_id: Optional[int] = None) -> LedgerEntry:
        """Redeem a reward by deducting its cost from the balance."""

        value = require_positive(to_points(cost))
        self._ensure_sufficient(value)
        return self._record(
            -value,
            TransactionType.REWARD_REDEMPTION,
            f"Reward redeemed: {reward_title}",
            related_id,
            None,
        )

    def adjust(
        self,
        points: PointsLike,
        description: str,
        *,
        limit: Optional[int] = MAX_ADJUSTMENT,
    ) -> LedgerEntry:
        """Record a manual adjustment made by a parent."""

        value = to_points(points)
        if value == 0:
            raise LedgerError("An adjustment must change the balance.")
        if limit is not None and abs(value) > limit:
            raise LedgerError(f"Adjustments are limited to {limit} points either way.")
        if self._balance + value < 0:
            raise InsufficientPointsError(
                f"Adjusting by {format_points(value)} would leave {self.child_name} with a negative balance."
            )
        return self._record(value, TransactionType.ADJUSTMENT, description, None, None)

    def recent(self, count: int = 10) -> Tuple[LedgerEntry, ...]:
        """Return the most recent ``count`` entries, newest first."""

        if count < 0:
            raise ValueError("count must not be negative")
        if count == 0:
            return tuple()
        return tuple(reversed(self._entries[-count:]))

    def filter(
        self,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        types: Optional[Sequence[TransactionType]] = None,
    ) -> Tuple[LedgerEntry, ...]:
        """Return entries filtered by the provided criteria."""

        result: list[LedgerEntry] = []
        for entry in self._entries:
            if start and entry.timestamp < start:
                continue
            if end and entry.timestamp > end:
                continue
            if types and entry.type not in types:
                continue
            result.append(entry)
        return tuple(result)

    def last(self, *, transaction_type: TransactionType | None = None) -> Optional[LedgerEntry]:
        for entry in reversed(self._entries):
            if transaction_type and entry.type is not transaction_type:
                continue
            return entry
        return None

    def earned(self, **filters: object) -> int:
        return sum(entry.points for entry in self.filter(**filters) if entry.points > 0)  # type: ignore[arg-type]

    def spent(self, **filters: object) -> int:
        return -sum(entry.points for entry in self.filter(**filters) if entry.points < 0)  # type: ignore[arg-type]

    def statement(self, *, max_entries: int = 10) -> str:
        """Create a human-readable summary of the ledger."""

        lines = [
            f"Child: {self.child_name}",
            f"Current balance: {format_points(self._balance)}",
            "",
            "Recent activity:",
        ]
        entries = self.recent(min(max_entries, len(self._entries)))
        if not entries:
            lines.append("  (no activity yet)")
        for entry in entries:
            lines.append(
                "  "
                f"[{entry.timestamp:%Y-%m-%d}] {entry.type.label}: "
                f"{entry.points:+d} ({entry.description}; balance {entry.balance_after})"
            )
        return "\n".join(lines)

    def export_csv(
        self,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        transaction_type: TransactionType | None = None,
    ) -> str:
        """Return a CSV export of the ledger."""

        return entries_to_csv(
            self.filter(start=start, end=end, types=(transaction_type,) if transaction_type else None)
        )

    @classmethod
    def replay(
        cls,
        child_id: Optional[int],
        entries: Iterable[Tuple[Optional[int], int, int]],
        *,
        stored_balance: Optional[int] = None,
    ) -> ConsistencyReport:
        """Re-run stored ``(id, points, balance_after)`` rows in chronological order."""

        running = 0
        report = ConsistencyReport(child_id=child_id, computed_balance=0, stored_balance=stored_balance)
        for index, (transaction_id, points, balance_after) in enumerate(entries):
            running += points
            if running < 0:
                report.negative_balance = True
            if balance_after != running:
                report.issues.append(
                    ConsistencyIssue(
                        index=index,
                        transaction_id=transaction_id,
                        expected_balance=running,
                        stored_balance=balance_after,
                    )
                )
        report.computed_balance = running
        return report

    def _record(
        self,
        points: int,
        transaction_type: TransactionType,
        description: str,
        related_id: Optional[int],
        metadata: Optional[Mapping[str, str]],
    ) -> LedgerEntry:
        self._balance += points
        entry = LedgerEntry(
            points=points,
            type=transaction_type,
            description=description,
            balance_after=self._balance,
            related_id=related_id,
            metadata=dict(metadata or {}),
        )
        self._entries.append(entry)
        return entry

    def _ensure_sufficient(self, points: int) -> None:
        if self._balance < points:
            raise InsufficientPointsError(
                f"{self.child_name} has {format_points(self._balance)} but needs {format_points(points)}."
            )


def entries_to_csv(entries: Iterable[LedgerEntry]) -> str:
    buffer = StringIO()
    writer = csv.writer(buffer)
    writer.writerow(["timestamp", "type", "description", "points", "balance"])
    for entry in entries:
        writer.writerow(
            [
                entry.timestamp.isoformat(),
                entry.type.value,
                entry.description,
                entry.points,
                entry.balance_after,
            ]
        )
    return buffer.getvalue()


__all__ = ["PointsLedger", "entries_to_csv"]
