"""Persistence and SQLModel definitions for the KidPoints web API."""
from __future__ import annotations

import sqlite3
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import UniqueConstraint
from sqlalchemy.engine import Engine
from sqlmodel import Field, Session, SQLModel, create_engine

from ..models import Weekday, utcnow
from .config import SQLITE_FILE_NAME

Day = date


def _build_engine(path: str) -> Engine:
    return create_engine(
        f"sqlite:///{path}",
        echo=False,
        connect_args={"check_same_thread": False},
    )


# ---------------------------------------------------------------------------
# Database models
# ---------------------------------------------------------------------------
_database_path = SQLITE_FILE_NAME
engine = _build_engine(_database_path)
MIGRATIONS_APPLIED: List[str] = []


class User(SQLModel, table=True):
    __tablename__ = "parent_user"

    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, unique=True)
    full_name: str
    password_hash: str
    avatar_url: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Child(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    parent_id: int = Field(foreign_key="parent_user.id", index=True)
    name: str
    birth_date: date
    adhd_type: str  # INATTENTIVE|HYPERACTIVE|COMBINED
    avatar_url: Optional[str] = None
    points_balance: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Habit(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    child_id: int = Field(foreign_key="child.id", index=True)
    title: str
    description: Optional[str] = None
    category: str  # SLEEP|NUTRITION|EXERCISE|HYGIENE|SOCIAL
    target_frequency: int = 1
    unit: str = "times"
    points_value: int = 1
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Behavior(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    child_id: int = Field(foreign_key="child.id", index=True)
    title: str
    description: Optional[str] = None
    type: str  # POSITIVE|NEGATIVE
    points_value: int
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Routine(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    child_id: int = Field(foreign_key="child.id", index=True)
    title: str
    description: Optional[str] = None
    time: str  # HH:MM
    days: str  # comma separated weekday names
    is_active: bool = True
    completion_threshold: int = 100
    bonus_points: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class RoutineHabit(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("routine_id", "habit_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    routine_id: int = Field(foreign_key="routine.id", index=True)
    habit_id: int = Field(foreign_key="habit.id", index=True)
    points_value: int = 0
    is_required: bool = True
    created_at: datetime = Field(default_factory=utcnow)


class HabitRecord(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("habit_id", "date"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    habit_id: int = Field(foreign_key="habit.id", index=True)
    date: Day = Field(index=True)
    value: float = 1
    notes: Optional[str] = None
    points_awarded: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class BehaviorRecord(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    behavior_id: int = Field(foreign_key="behavior.id", index=True)
    date: Day = Field(index=True)
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class RoutineCompletion(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("routine_id", "completion_date"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    routine_id: int = Field(foreign_key="routine.id", index=True)
    child_id: int = Field(foreign_key="child.id", index=True)
    completion_date: Day
    completion_percentage: int = 0
    completed_habits: int = 0
    total_habits: int = 0
    bonus_transaction_id: Optional[int] = None
    updated_at: datetime = Field(default_factory=utcnow)


class Reward(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    child_id: int = Field(foreign_key="child.id", index=True)
    title: str
    description: Optional[str] = None
    points_required: int
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class RewardClaim(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    reward_id: int = Field(foreign_key="reward.id", index=True)
    claimed_at: datetime = Field(default_factory=utcnow)
    notes: Optional[str] = None


class PointsTransaction(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    child_id: int = Field(foreign_key="child.id", index=True)
    transaction_type: str  # HABIT|BEHAVIOR|ROUTINE|REWARD_REDEMPTION|ADJUSTMENT
    related_id: Optional[int] = None
    points: int
    balance_after: int
    description: str = ""
    created_at: datetime = Field(default_factory=utcnow, index=True)


# ---------------------------------------------------------------------------
# Column helpers
# ---------------------------------------------------------------------------
def routine_days(routine: Routine) -> List[Weekday]:
    return [Weekday(part) for part in (routine.days or "").split(",") if part]


def encode_days(days: Sequence[Weekday | str]) -> str:
    return ",".join(Weekday(day).value for day in days)


def child_age(child: Child, today: Optional[date] = None) -> int:
    today = today or date.today()
    birth = child.birth_date
    years = today.year - birth.year
    if (today.month, today.day) < (birth.month, birth.day):
        years -= 1
    return max(years, 0)


def model_dict(row: SQLModel, **extra: Any) -> Dict[str, Any]:
    payload = row.model_dump()
    payload.update(extra)
    return payload


# ---------------------------------------------------------------------------
# Database initialisation & migrations
# ---------------------------------------------------------------------------
def open_session() -> Session:
    """Open a session on the current engine that keeps objects loaded after commit."""

    return Session(engine, expire_on_commit=False)


def create_db_and_tables() -> None:
    SQLModel.metadata.create_all(engine)


def _column_exists(conn: sqlite3.Connection, table: str, column: str) -> bool:
    cur = conn.execute(f"PRAGMA table_info({table});")
    return any(row[1] == column for row in cur.fetchall())


def run_migrations() -> List[str]:
    """Apply additive column migrations and return the names that ran."""

    applied: List[str] = []
    raw = sqlite3.connect(_database_path)
    try:
        if not _column_exists(raw, "child", "points_balance"):
            raw.execute("ALTER TABLE child ADD COLUMN points_balance INTEGER DEFAULT 0;")
            raw.execute(
                """
                UPDATE child
                SET points_balance = IFNULL(
                    (SELECT SUM(points) FROM pointstransaction WHERE pointstransaction.child_id = child.id),
                    0
                );
                """
            )
            applied.append("child.points_balance")
        if not _column_exists(raw, "habit", "points_value"):
            raw.execute("ALTER TABLE habit ADD COLUMN points_value INTEGER DEFAULT 1;")
            applied.append("habit.points_value")
        if not _column_exists(raw, "routine", "completion_threshold"):
            raw.execute("ALTER TABLE routine ADD COLUMN completion_threshold INTEGER DEFAULT 100;")
            applied.append("routine.completion_threshold")
        if not _column_exists(raw, "routine", "bonus_points"):
            raw.execute("ALTER TABLE routine ADD COLUMN bonus_points INTEGER DEFAULT 0;")
            applied.append("routine.bonus_points")
        if not _column_exists(raw, "habitrecord", "points_awarded"):
            raw.execute("ALTER TABLE habitrecord ADD COLUMN points_awarded INTEGER DEFAULT 0;")
            raw.execute(
                """
                UPDATE habitrecord
                SET points_awarded = IFNULL(
                    (
                        SELECT SUM(points) FROM pointstransaction
                        WHERE pointstransaction.transaction_type = 'HABIT'
                        AND pointstransaction.related_id = habitrecord.id
                    ),
                    0
                );
                """
            )
            applied.append("habitrecord.points_awarded")
        if not _column_exists(raw, "routinecompletion", "bonus_transaction_id"):
            raw.execute("ALTER TABLE routinecompletion ADD COLUMN bonus_transaction_id INTEGER;")
            applied.append("routinecompletion.bonus_transaction_id")
        raw.commit()
    finally:
        raw.close()
    MIGRATIONS_APPLIED.extend(name for name in applied if name not in MIGRATIONS_APPLIED)
    return applied


def init_engine(path: str | Path) -> Engine:
    """Point the module at another SQLite file and prepare its schema."""

    global engine, _database_path
    engine.dispose()
    _database_path = str(path)
    engine = _build_engine(_database_path)
    create_db_and_tables()
    run_migrations()
    return engine


def database_path() -> str:
    return _database_path


create_db_and_tables()
run_migrations()


__all__ = [
    "MIGRATIONS_APPLIED",
    "Behavior",
    "BehaviorRecord",
    "Child",
    "Habit",
    "HabitRecord",
    "PointsTransaction",
    "Reward",
    "RewardClaim",
    "Routine",
    "RoutineCompletion",
    "RoutineHabit",
    "User",
    "child_age",
    "create_db_and_tables",
    "database_path",
    "encode_days",
    "init_engine",
    "model_dict",
    "open_session",
    "routine_days",
    "run_migrations",
]
