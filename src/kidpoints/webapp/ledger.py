"""Database-backed points ledger operations.

Every write loads the child's stored balance into a
:class:`~kidpoints.ledger.PointsLedger`, applies the change there, then persists
the resulting entries together with the new balance in a single commit.  A
process-wide lock serialises writers so two completions for the same child can
never interleave their balance updates.
"""
from __future__ import annotations

import threading
from collections import defaultdict
from contextlib import contextmanager
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from sqlalchemy import func
from sqlmodel import Session, desc, select

from ..exceptions import DuplicateClaimError, DuplicateRecordError, LedgerError
from ..ledger import PointsLedger, entries_to_csv
from ..models import BehaviorType, ConsistencyReport, LedgerEntry, SummaryPeriod, TransactionType, Weekday, utcnow
from ..points import calculate_behavior_points
from ..validation import PointsHistoryFilter
from .config import RECENT_TRANSACTIONS, ROUTINE_STATS_DAYS, TOGGLE_NOTE, TOP_BEHAVIORS, app_timezone
from .persistence import (
    Behavior,
    BehaviorRecord,
    Child,
    Habit,
    HabitRecord,
    PointsTransaction,
    Reward,
    RewardClaim,
    Routine,
    RoutineCompletion,
    RoutineHabit,
    model_dict,
    routine_days,
)

_LEDGER_LOCK = threading.RLock()


def now_utc() -> datetime:
    return utcnow()


def today_local() -> date:
    """Return the current calendar day in the configured timezone."""

    return datetime.now(app_timezone()).date()


def local_day(moment: datetime) -> date:
    return moment.replace(tzinfo=timezone.utc).astimezone(app_timezone()).date()


@contextmanager
def ledger_write(session: Session) -> Iterator[None]:
    """Serialise a ledger write and commit it, rolling back on any failure."""

    with _LEDGER_LOCK:
        try:
            yield
            session.commit()
        except Exception:
            session.rollback()
            raise


def _ledger_for(session: Session, child: Child) -> PointsLedger:
    session.refresh(child)
    return PointsLedger.resume(child.name, child.points_balance)


def _post(session: Session, child: Child, ledger: PointsLedger, entry: LedgerEntry) -> PointsTransaction:
    row = PointsTransaction(
        child_id=child.id,
        transaction_type=entry.type.value,
        related_id=entry.related_id,
        points=entry.points,
        balance_after=entry.balance_after,
        description=entry.description,
        created_at=entry.timestamp,
    )
    child.points_balance = ledger.balance
    child.updated_at = now_utc()
    session.add(row)
    session.add(child)
    session.flush()
    return row


def _as_entry(row: PointsTransaction) -> LedgerEntry:
    return LedgerEntry(
        points=row.points,
        type=TransactionType(row.transaction_type),
        description=row.description,
        balance_after=row.balance_after,
        related_id=row.related_id,
        timestamp=row.created_at,
    )


def transaction_dict(row: PointsTransaction) -> Dict[str, Any]:
    return model_dict(row, label=TransactionType(row.transaction_type).label)


def _child_transactions(
    session: Session,
    child: Child,
    *,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    transaction_type: Optional[TransactionType] = None,
) -> List[PointsTransaction]:
    query = select(PointsTransaction).where(PointsTransaction.child_id == child.id)
    if start is not None:
        query = query.where(PointsTransaction.created_at >= start)
    if end is not None:
        query = query.where(PointsTransaction.created_at <= end)
    if transaction_type is not None:
        query = query.where(PointsTransaction.transaction_type == transaction_type.value)
    return list(session.exec(query.order_by(PointsTransaction.created_at, PointsTransaction.id)).all())


# ---------------------------------------------------------------------------
# Balance and history
# ---------------------------------------------------------------------------
def get_child_points_balance(session: Session, child: Child) -> int:
    session.refresh(child)
    return child.points_balance


def get_child_points_history(
    session: Session, child: Child, filters: PointsHistoryFilter
) -> Tuple[List[PointsTransaction], int]:
    """Return one page of transactions (newest first) and the total match count."""

    conditions = [PointsTransaction.child_id == child.id]
    if filters.start_date is not None:
        conditions.append(PointsTransaction.created_at >= filters.start_date)
    if filters.end_date is not None:
        conditions.append(PointsTransaction.created_at <= filters.end_date)
    if filters.transaction_type is not None:
        conditions.append(PointsTransaction.transaction_type == filters.transaction_type.value)
    total = session.exec(select(func.count()).select_from(PointsTransaction).where(*conditions)).one()
    rows = session.exec(
        select(PointsTransaction)
        .where(*conditions)
        .order_by(desc(PointsTransaction.created_at), desc(PointsTransaction.id))
        .offset(filters.offset)
        .limit(filters.limit)
    ).all()
    return list(rows), int(total)


def export_history_csv(
    session: Session,
    child: Child,
    *,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    transaction_type: Optional[TransactionType] = None,
) -> str:
    rows = _child_transactions(session, child, start=start, end=end, transaction_type=transaction_type)
    return entries_to_csv(_as_entry(row) for row in rows)


def adjust_child_points(session: Session, child: Child, points: int, description: str) -> PointsTransaction:
    """Apply a manual adjustment of at most 100 points either way."""

    with ledger_write(session):
        ledger = _ledger_for(session, child)
        entry = ledger.adjust(points, description)
        return _post(session, child, ledger, entry)


# ---------------------------------------------------------------------------
# Habits
# ---------------------------------------------------------------------------
def habit_award(session: Session, habit: Habit) -> int:
    """Points a completion earns: routine overrides when assigned, else the base value."""

    links = session.exec(select(RoutineHabit).where(RoutineHabit.habit_id == habit.id)).all()
    if links:
        return sum(link.points_value for link in links)
    return habit.points_value


def _record_habit(
    session: Session,
    child: Child,
    ledger: PointsLedger,
    habit: Habit,
    day: date,
    value: float,
    notes: Optional[str],
) -> Tuple[HabitRecord, PointsTransaction]:
    existing = session.exec(
        select(HabitRecord).where(HabitRecord.habit_id == habit.id, HabitRecord.date == day)
    ).first()
    if existing is not None:
        raise DuplicateRecordError(f"'{habit.title}' is already recorded for {day.isoformat()}.")
    award = habit_award(session, habit)
    record = HabitRecord(habit_id=habit.id, date=day, value=value, notes=notes, points_awarded=award)
    session.add(record)
    session.flush()
    entry = ledger.credit(award, TransactionType.HABIT, f"Habit completed: {habit.title}", related_id=record.id)
    transaction = _post(session, child, ledger, entry)
    _reevaluate_routines(session, child, ledger, habit, day)
    return record, transaction


def _delete_habit_record(
    session: Session, child: Child, ledger: PointsLedger, habit: Habit, record: HabitRecord
) -> PointsTransaction:
    entry = ledger.apply(
        -record.points_awarded,
        TransactionType.HABIT,
        f"Habit record removed: {habit.title}",
        related_id=record.id,
    )
    transaction = _post(session, child, ledger, entry)
    day = record.date
    session.delete(record)
    session.flush()
    _reevaluate_routines(session, child, ledger, habit, day)
    return transaction


def record_habit(
    session: Session, habit: Habit, day: date, value: float = 1, notes: Optional[str] = None
) -> Tuple[HabitRecord, PointsTransaction]:
    """Create a habit record and its single HABIT transaction."""

    with ledger_write(session):
        child = session.get(Child, habit.child_id)
        ledger = _ledger_for(session, child)
        return _record_habit(session, child, ledger, habit, day, value, notes)


def update_habit_record(session: Session, record: HabitRecord, value: float, notes: Optional[str]) -> HabitRecord:
    record.value = value
    record.notes = notes
    record.updated_at = now_utc()
    session.add(record)
    session.commit()
    return record


def delete_habit_record(session: Session, record: HabitRecord) -> PointsTransaction:
    """Remove a record and reverse the points it awarded."""

    with ledger_write(session):
        habit = session.get(Habit, record.habit_id)
        child = session.get(Child, habit.child_id)
        ledger = _ledger_for(session, child)
        return _delete_habit_record(session, child, ledger, habit, record)


# ---------------------------------------------------------------------------
# Behaviors and rewards
# ---------------------------------------------------------------------------
def record_behavior(
    session: Session, behavior: Behavior, day: date, notes: Optional[str] = None
) -> Tuple[BehaviorRecord, PointsTransaction]:
    """Create a behavior record and its single BEHAVIOR transaction.

    A negative behavior never takes more than the child currently has; the
    transaction stores the delta actually applied.
    """

    with ledger_write(session):
        child = session.get(Child, behavior.child_id)
        ledger = _ledger_for(session, child)
        record = BehaviorRecord(behavior_id=behavior.id, date=day, notes=notes)
        session.add(record)
        session.flush()
        delta = calculate_behavior_points(behavior.points_value, behavior.type)
        if BehaviorType(behavior.type) is BehaviorType.POSITIVE:
            description = f"Positive behavior: {behavior.title}"
        else:
            description = f"Negative behavior: {behavior.title}"
            if -delta > ledger.balance:
                description += " (limited to available balance)"
        entry = ledger.apply_capped(delta, TransactionType.BEHAVIOR, description, related_id=record.id)
        return record, _post(session, child, ledger, entry)


def reward_claimed(session: Session, reward: Reward) -> bool:
    return session.exec(select(RewardClaim.id).where(RewardClaim.reward_id == reward.id)).first() is not None


def can_child_claim_reward(session: Session, child: Child, reward: Reward) -> bool:
    if not reward.is_active or reward.child_id != child.id:
        return False
    if reward_claimed(session, reward):
        return False
    return get_child_points_balance(session, child) >= reward.points_required


def claim_reward(session: Session, reward: Reward, notes: Optional[str] = None) -> Tuple[RewardClaim, PointsTransaction]:
    """Redeem ``reward`` once, deducting its cost from the child's balance."""

    with ledger_write(session):
        if not reward.is_active:
            raise LedgerError("This reward is not active.")
        if reward_claimed(session, reward):
            raise DuplicateClaimError("This reward has already been redeemed.")
        child = session.get(Child, reward.child_id)
        ledger = _ledger_for(session, child)
        claim = RewardClaim(reward_id=reward.id, notes=notes, claimed_at=now_utc())
        session.add(claim)
        session.flush()
        entry = ledger.redeem(reward.title, reward.points_required, related_id=claim.id)
        return claim, _post(session, child, ledger, entry)


def get_next_achievable_reward(session: Session, child: Child) -> Optional[Dict[str, Any]]:
    """Return the cheapest active, unclaimed reward and the points still needed."""

    claimed = select(RewardClaim.reward_id)
    reward = session.exec(
        select(Reward)
        .where(Reward.child_id == child.id, Reward.is_active == True, Reward.id.not_in(claimed))  # noqa: E712
        .order_by(Reward.points_required, Reward.id)
    ).first()
    if reward is None:
        return None
    balance = get_child_points_balance(session, child)
    return {
        "reward": model_dict(reward),
        "points_needed": max(reward.points_required - balance, 0),
        "can_redeem": balance >= reward.points_required,
    }


# ---------------------------------------------------------------------------
# Routines
# ---------------------------------------------------------------------------
def _completion_counts(session: Session, routine: Routine, day: date) -> Tuple[int, int]:
    habit_ids = list(session.exec(select(RoutineHabit.habit_id).where(RoutineHabit.routine_id == routine.id)).all())
    if not habit_ids:
        return 0, 0
    done = session.exec(
        select(func.count())
        .select_from(HabitRecord)
        .where(HabitRecord.habit_id.in_(habit_ids), HabitRecord.date == day)
    ).one()
    return int(done), len(habit_ids)


def is_scheduled(routine: Routine, day: date) -> bool:
    return routine.is_active and Weekday.for_date(day) in routine_days(routine)


def _evaluate_routine(
    session: Session, child: Child, ledger: PointsLedger, routine: Routine, day: date
) -> RoutineCompletion:
    completed, total = _completion_counts(session, routine, day)
    percentage = completed * 100 // total if total else 0
    completion = session.exec(
        select(RoutineCompletion).where(
            RoutineCompletion.routine_id == routine.id, RoutineCompletion.completion_date == day
        )
    ).first()
    if completion is None:
        completion = RoutineCompletion(routine_id=routine.id, child_id=child.id, completion_date=day)
    completion.completion_percentage = percentage
    completion.completed_habits = completed
    completion.total_habits = total
    completion.updated_at = now_utc()
    met = total > 0 and percentage >= routine.completion_threshold
    if met and completion.bonus_transaction_id is None and routine.bonus_points > 0 and is_scheduled(routine, day):
        entry = ledger.credit(
            routine.bonus_points,
            TransactionType.ROUTINE,
            f"Routine completed: {routine.title}",
            related_id=routine.id,
        )
        completion.bonus_transaction_id = _post(session, child, ledger, entry).id
    elif not met and completion.bonus_transaction_id is not None:
        bonus = session.get(PointsTransaction, completion.bonus_transaction_id)
        entry = ledger.apply(
            -(bonus.points if bonus else routine.bonus_points),
            TransactionType.ROUTINE,
            f"Routine bonus reversed: {routine.title}",
            related_id=routine.id,
        )
        _post(session, child, ledger, entry)
        completion.bonus_transaction_id = None
    session.add(completion)
    session.flush()
    return completion


def _reevaluate_routines(session: Session, child: Child, ledger: PointsLedger, habit: Habit, day: date) -> None:
    routines = session.exec(
        select(Routine)
        .join(RoutineHabit, RoutineHabit.routine_id == Routine.id)
        .where(RoutineHabit.habit_id == habit.id)
    ).all()
    for routine in routines:
        _evaluate_routine(session, child, ledger, routine, day)


def evaluate_routine_completion(session: Session, routine: Routine, day: date) -> RoutineCompletion:
    """Recompute the completion percentage of ``routine`` on ``day`` and settle its bonus."""

    with ledger_write(session):
        child = session.get(Child, routine.child_id)
        ledger = _ledger_for(session, child)
        return _evaluate_routine(session, child, ledger, routine, day)


def get_routine_streak(session: Session, routine: Routine, today: Optional[date] = None) -> int:
    """Count consecutive scheduled days, ending today, on which the routine met its threshold.

    Today only adds to the streak once it is complete; an unfinished today does
    not break it.
    """

    today = today or today_local()
    scheduled = set(routine_days(routine))
    rows = session.exec(select(RoutineCompletion).where(RoutineCompletion.routine_id == routine.id)).all()
    if not scheduled or not rows:
        return 0
    percentages = {row.completion_date: row.completion_percentage for row in rows}
    earliest = min(percentages)
    streak = 0
    day = today
    while day >= earliest:
        if Weekday.for_date(day) in scheduled:
            if day in percentages and percentages[day] >= routine.completion_threshold:
                streak += 1
            elif day != today:
                break
        day -= timedelta(days=1)
    return streak


def get_routine_stats(
    session: Session,
    child: Child,
    routine: Optional[Routine] = None,
    *,
    days: int = ROUTINE_STATS_DAYS,
    today: Optional[date] = None,
) -> Dict[str, Any]:
    today = today or today_local()
    window_start = today - timedelta(days=max(days, 1) - 1)
    routines = session.exec(select(Routine).where(Routine.child_id == child.id)).all()
    thresholds = {row.id: row.completion_threshold for row in routines}
    query = select(RoutineCompletion).where(
        RoutineCompletion.child_id == child.id,
        RoutineCompletion.completion_date >= window_start,
        RoutineCompletion.completion_date <= today,
    )
    if routine is not None:
        query = query.where(RoutineCompletion.routine_id == routine.id)
    window = session.exec(query).all()
    met = [row for row in window if row.completion_percentage >= thresholds.get(row.routine_id, 100)]
    average = round(sum(row.completion_percentage for row in window) / len(window)) if window else 0
    return {
        "streak": get_routine_streak(session, routine, today) if routine is not None else None,
        "days": days,
        "completions": len(met),
        "total_active_routines": sum(1 for row in routines if row.is_active),
        "completed_today": sum(1 for row in met if row.completion_date == today),
        "average_completion": average,
    }


# ---------------------------------------------------------------------------
# Today view
# ---------------------------------------------------------------------------
def get_today_overview(session: Session, child: Child, today: Optional[date] = None) -> Dict[str, Any]:
    """Return today's scheduled routines with each assigned habit's state."""

    today = today or today_local()
    routines = [
        routine
        for routine in session.exec(
            select(Routine).where(Routine.child_id == child.id).order_by(Routine.time, Routine.id)
        ).all()
        if is_scheduled(routine, today)
    ]
    cards: List[Dict[str, Any]] = []
    habit_total = habit_done = 0
    for routine in routines:
        rows = session.exec(
            select(RoutineHabit, Habit)
            .join(Habit, Habit.id == RoutineHabit.habit_id)
            .where(RoutineHabit.routine_id == routine.id)
            .order_by(RoutineHabit.id)
        ).all()
        habits: List[Dict[str, Any]] = []
        for link, habit in rows:
            record = session.exec(
                select(HabitRecord).where(HabitRecord.habit_id == habit.id, HabitRecord.date == today)
            ).first()
            habits.append(
                {
                    "habit_id": habit.id,
                    "routine_habit_id": link.id,
                    "title": habit.title,
                    "category": habit.category,
                    "unit": habit.unit,
                    "points_value": link.points_value,
                    "is_required": link.is_required,
                    "is_completed": record is not None,
                    "record_id": record.id if record else None,
                }
            )
        completed = sum(1 for item in habits if item["is_completed"])
        percentage = completed * 100 // len(habits) if habits else 0
        habit_total += len(habits)
        habit_done += completed
        cards.append(
            {
                "id": routine.id,
                "title": routine.title,
                "description": routine.description,
                "time": routine.time,
                "completion_threshold": routine.completion_threshold,
                "bonus_points": routine.bonus_points,
                "habits": habits,
                "completed_habits": completed,
                "total_habits": len(habits),
                "completion_percentage": percentage,
                "is_completed": bool(habits) and percentage >= routine.completion_threshold,
            }
        )
    earned_today = sum(
        row.points
        for row in _child_transactions(session, child, start=now_utc() - timedelta(days=2))
        if row.points > 0 and local_day(row.created_at) == today
    )
    return {
        "date": today,
        "routines": cards,
        "stats": {
            "total_routines": len(cards),
            "total_habits": habit_total,
            "completed_habits": habit_done,
            "progress": habit_done * 100 // habit_total if habit_total else 0,
            "points_earned_today": earned_today,
        },
    }


def toggle_habit_today(
    session: Session, child: Child, habit: Habit, completed: bool, today: Optional[date] = None
) -> Dict[str, Any]:
    """Mark ``habit`` done or undone for today.

    Returns the action taken (``created``, ``updated``, ``deleted`` or ``none``)
    and the points it moved.
    """

    today = today or today_local()
    with ledger_write(session):
        ledger = _ledger_for(session, child)
        record = session.exec(
            select(HabitRecord).where(HabitRecord.habit_id == habit.id, HabitRecord.date == today)
        ).first()
        if completed and record is not None:
            record.value = 1
            record.notes = TOGGLE_NOTE
            record.updated_at = now_utc()
            session.add(record)
            return {"action": "updated", "record": model_dict(record), "points": 0}
        if completed:
            record, transaction = _record_habit(session, child, ledger, habit, today, 1, TOGGLE_NOTE)
            return {"action": "created", "record": model_dict(record), "points": transaction.points}
        if record is not None:
            snapshot = model_dict(record)
            transaction = _delete_habit_record(session, child, ledger, habit, record)
            return {"action": "deleted", "record": snapshot, "points": transaction.points}
        return {"action": "none", "record": None, "points": 0}


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------
def _earned(rows: Iterable[PointsTransaction], since: Optional[datetime] = None) -> int:
    return sum(row.points for row in rows if row.points > 0 and (since is None or row.created_at >= since))


def _spent(rows: Iterable[PointsTransaction], since: Optional[datetime] = None) -> int:
    return -sum(row.points for row in rows if row.points < 0 and (since is None or row.created_at >= since))


def get_points_summary(
    session: Session,
    child: Child,
    period: SummaryPeriod = SummaryPeriod.MONTH,
    *,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    now = now or now_utc()
    week_start = SummaryPeriod.WEEK.start(now)
    month_start = SummaryPeriod.MONTH.start(now)
    period_start = period.start(now)
    rows = _child_transactions(session, child, start=min(week_start, month_start, period_start))
    recent = session.exec(
        select(PointsTransaction)
        .where(PointsTransaction.child_id == child.id)
        .order_by(desc(PointsTransaction.created_at), desc(PointsTransaction.id))
        .limit(RECENT_TRANSACTIONS)
    ).all()
    return {
        "child_id": child.id,
        "period": period.value,
        "current_balance": get_child_points_balance(session, child),
        "earned_this_week": _earned(rows, week_start),
        "earned_this_month": _earned(rows, month_start),
        "spent_this_month": _spent(rows, month_start),
        "earned_in_period": _earned(rows, period_start),
        "spent_in_period": _spent(rows, period_start),
        "recent_transactions": [transaction_dict(row) for row in recent],
    }


def get_points_stats(
    session: Session,
    child: Child,
    period: SummaryPeriod = SummaryPeriod.MONTH,
    *,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Aggregate transactions over a rolling week, month or year."""

    if period is SummaryPeriod.QUARTER:
        raise LedgerError("Statistics are available per week, month or year.")
    now = now or now_utc()
    start = period.rolling_start(now)
    previous_start = period.rolling_start(start)
    rows = _child_transactions(session, child, start=start)
    previous = [row for row in _child_transactions(session, child, start=previous_start) if row.created_at < start]

    by_type: Dict[str, Dict[str, int]] = {}
    daily: Dict[date, Dict[str, int]] = defaultdict(lambda: {"earned": 0, "spent": 0})
    for row in rows:
        bucket = by_type.setdefault(row.transaction_type, {"count": 0, "points": 0})
        bucket["count"] += 1
        bucket["points"] += row.points
        day = daily[local_day(row.created_at)]
        if row.points > 0:
            day["earned"] += row.points
        else:
            day["spent"] += -row.points
    earned, spent = _earned(rows), _spent(rows)
    previous_earned, previous_spent = _earned(previous), _spent(previous)
    return {
        "child_id": child.id,
        "period": period.value,
        "current_balance": get_child_points_balance(session, child),
        "total_earned": earned,
        "total_spent": spent,
        "net_gain": earned - spent,
        "transactions_count": len(rows),
        "by_type": by_type,
        "daily_breakdown": [
            {"date": day, "earned": data["earned"], "spent": data["spent"], "net": data["earned"] - data["spent"]}
            for day, data in sorted(daily.items())
        ],
        "trends": {
            "earned_change": earned - previous_earned,
            "spent_change": spent - previous_spent,
            "earned_percentage": _percent_change(previous_earned, earned),
            "spent_percentage": _percent_change(previous_spent, spent),
        },
        "next_reward": get_next_achievable_reward(session, child),
    }


def _percent_change(before: int, after: int) -> int:
    if before == 0:
        return 100 if after > 0 else 0
    return round((after - before) * 100 / before)


def top_behaviors(session: Session, child: Child, limit: int = TOP_BEHAVIORS) -> List[Dict[str, Any]]:
    rows = session.exec(
        select(Behavior, func.count(BehaviorRecord.id))
        .join(BehaviorRecord, BehaviorRecord.behavior_id == Behavior.id)
        .where(Behavior.child_id == child.id, Behavior.type == BehaviorType.POSITIVE.value)
        .group_by(Behavior.id)
    ).all()
    ranked = sorted(
        (
            {"behavior_id": behavior.id, "title": behavior.title, "times": count, "points": count * behavior.points_value}
            for behavior, count in rows
        ),
        key=lambda item: (-item["points"], item["title"]),
    )
    return ranked[:limit]


def redemption_history(session: Session, child: Child) -> List[Dict[str, Any]]:
    rows = session.exec(
        select(RewardClaim, Reward)
        .join(Reward, Reward.id == RewardClaim.reward_id)
        .where(Reward.child_id == child.id)
        .order_by(desc(RewardClaim.claimed_at), desc(RewardClaim.id))
    ).all()
    return [model_dict(claim, reward=model_dict(reward)) for claim, reward in rows]


def get_points_dashboard(session: Session, child: Child) -> Dict[str, Any]:
    return {
        "summary": get_points_summary(session, child),
        "top_behaviors": top_behaviors(session, child),
        "redemptions": redemption_history(session, child),
        "next_reward": get_next_achievable_reward(session, child),
    }


# ---------------------------------------------------------------------------
# Consistency
# ---------------------------------------------------------------------------
def verify_ledger_consistency(session: Session, children: Sequence[Child]) -> List[ConsistencyReport]:
    """Replay each child's stored transactions and compare with the stored balance."""

    reports: List[ConsistencyReport] = []
    for child in children:
        session.refresh(child)
        rows = _child_transactions(session, child)
        reports.append(
            PointsLedger.replay(
                child.id,
                ((row.id, row.points, row.balance_after) for row in rows),
                stored_balance=child.points_balance,
            )
        )
    return reports


def repair_balances(session: Session, children: Sequence[Child]) -> List[ConsistencyReport]:
    """Reset each stored balance to its ledger sum; returns the pre-repair reports."""

    with ledger_write(session):
        reports = verify_ledger_consistency(session, children)
        for child, report in zip(children, reports):
            if report.stored_balance != report.computed_balance and report.computed_balance >= 0:
                child.points_balance = report.computed_balance
                child.updated_at = now_utc()
                session.add(child)
        return reports


__all__ = [
    "adjust_child_points",
    "can_child_claim_reward",
    "claim_reward",
    "delete_habit_record",
    "evaluate_routine_completion",
    "export_history_csv",
    "get_child_points_balance",
    "get_child_points_history",
    "get_next_achievable_reward",
    "get_points_dashboard",
    "get_points_stats",
    "get_points_summary",
    "get_routine_stats",
    "get_routine_streak",
    "get_today_overview",
    "habit_award",
    "is_scheduled",
    "ledger_write",
    "record_behavior",
    "record_habit",
    "redemption_history",
    "repair_balances",
    "reward_claimed",
    "today_local",
    "toggle_habit_today",
    "top_behaviors",
    "transaction_dict",
    "update_habit_record",
    "verify_ledger_consistency",
]
