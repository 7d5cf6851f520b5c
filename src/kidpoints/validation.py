"""Form validation schemas for KidPoints input.

Every request body and query string passes through one of these pydantic
models before it reaches the datastore.  :func:`validate_form` turns pydantic's
error list into a :class:`~kidpoints.exceptions.FormValidationError` so the web
layer can render a validation toast.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any, ClassVar, Dict, FrozenSet, List, Mapping, Optional, Type, TypeVar

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    ValidationError,
    ValidationInfo,
    field_validator,
    model_validator,
)

from .exceptions import FormValidationError
from .models import AdhdType, BehaviorType, HabitCategory, SummaryPeriod, TransactionType, Weekday
from .points import MAX_ADJUSTMENT, MAX_ROUTINE_HABIT_POINTS
from .security import MAX_PASSWORD_BYTES

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PASSWORD_STRENGTH = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)")
TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"

SchemaT = TypeVar("SchemaT", bound=BaseModel)
Day = date


class FormModel(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")


class UpdateForm(FormModel):
    """Partial update: omitted fields are left alone, only nullable columns accept ``null``."""

    nullable_fields: ClassVar[FrozenSet[str]] = frozenset({"description", "avatar_url", "notes"})

    @field_validator("*")
    @classmethod
    def reject_null(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None and info.field_name not in cls.nullable_fields:
            raise ValueError("This field cannot be empty.")
        return value


def _check_email(value: str) -> str:
    if not value:
        raise ValueError("Email is required.")
    if not EMAIL_PATTERN.match(value):
        raise ValueError("Invalid email.")
    return value.lower()


def _check_birth_date(value: date) -> date:
    if value > date.today():
        raise ValueError("Birth date cannot be in the future.")
    return value


def _dedupe_days(value: List[Weekday]) -> List[Weekday]:
    return sorted(set(value), key=list(Weekday).index)


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------
class LoginForm(FormModel):
    email: str
    password: str = Field(min_length=6)

    @field_validator("email")
    @classmethod
    def valid_email(cls, value: str) -> str:
        return _check_email(value)


class RegisterForm(FormModel):
    full_name: str = Field(min_length=2, max_length=50)
    email: str
    password: str = Field(min_length=6)
    confirm_password: str = Field(min_length=1)

    @field_validator("email")
    @classmethod
    def valid_email(cls, value: str) -> str:
        return _check_email(value)

    @field_validator("password")
    @classmethod
    def strong_password(cls, value: str) -> str:
        if not PASSWORD_STRENGTH.match(value):
            raise ValueError("Password must contain an upper-case letter, a lower-case letter and a number.")
        if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes long.")
        return value

    @model_validator(mode="after")
    def passwords_match(self) -> "RegisterForm":
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match.")
        return self


# ---------------------------------------------------------------------------
# Registries
# ---------------------------------------------------------------------------
class ChildForm(FormModel):
    name: str = Field(min_length=1, max_length=100)
    birth_date: date
    adhd_type: AdhdType
    avatar_url: Optional[str] = None

    @field_validator("birth_date")
    @classmethod
    def not_in_future(cls, value: date) -> date:
        return _check_birth_date(value)


class ChildUpdate(UpdateForm):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    birth_date: Optional[date] = None
    adhd_type: Optional[AdhdType] = None
    avatar_url: Optional[str] = None

    @field_validator("birth_date")
    @classmethod
    def not_in_future(cls, value: Optional[date]) -> Optional[date]:
        return _check_birth_date(value) if value else value


class HabitForm(FormModel):
    child_id: int
    title: str = Field(min_length=3, max_length=100)
    description: Optional[str] = None
    category: HabitCategory
    target_frequency: int = Field(gt=0)
    unit: str = Field(min_length=1, max_length=50)
    points_value: int = Field(default=1, ge=0, le=100)


class HabitUpdate(UpdateForm):
    title: Optional[str] = Field(default=None, min_length=3, max_length=100)
    description: Optional[str] = None
    category: Optional[HabitCategory] = None
    target_frequency: Optional[int] = Field(default=None, gt=0)
    unit: Optional[str] = Field(default=None, min_length=1, max_length=50)
    points_value: Optional[int] = Field(default=None, ge=0, le=100)


class BehaviorForm(FormModel):
    child_id: int
    title: str = Field(min_length=3, max_length=100)
    description: Optional[str] = Field(default=None, max_length=255)
    type: BehaviorType
    points_value: int = Field(gt=0)


class BehaviorUpdate(UpdateForm):
    title: Optional[str] = Field(default=None, min_length=3, max_length=100)
    description: Optional[str] = Field(default=None, max_length=255)
    type: Optional[BehaviorType] = None
    points_value: Optional[int] = Field(default=None, gt=0)


class RoutineForm(FormModel):
    child_id: int
    title: str = Field(min_length=3, max_length=100)
    description: Optional[str] = None
    time: str = Field(pattern=TIME_PATTERN)
    days: List[Weekday] = Field(min_length=1)
    is_active: bool = True
    completion_threshold: int = Field(default=100, ge=1, le=100)
    bonus_points: int = Field(default=0, ge=0, le=50)

    @field_validator("days")
    @classmethod
    def unique_days(cls, value: List[Weekday]) -> List[Weekday]:
        return _dedupe_days(value)


class RoutineUpdate(UpdateForm):
    title: Optional[str] = Field(default=None, min_length=3, max_length=100)
    description: Optional[str] = None
    time: Optional[str] = Field(default=None, pattern=TIME_PATTERN)
    days: Optional[List[Weekday]] = Field(default=None, min_length=1)
    is_active: Optional[bool] = None
    completion_threshold: Optional[int] = Field(default=None, ge=1, le=100)
    bonus_points: Optional[int] = Field(default=None, ge=0, le=50)

    @field_validator("days")
    @classmethod
    def unique_days(cls, value: Optional[List[Weekday]]) -> Optional[List[Weekday]]:
        return _dedupe_days(value) if value else value


class RoutineHabitForm(FormModel):
    routine_id: int
    habit_id: int
    points_value: int = Field(ge=0, le=MAX_ROUTINE_HABIT_POINTS)
    is_required: StrictBool = True


class RoutineHabitUpdate(UpdateForm):
    points_value: Optional[int] = Field(default=None, ge=0, le=MAX_ROUTINE_HABIT_POINTS)
    is_required: Optional[StrictBool] = None


class RewardForm(FormModel):
    child_id: int
    title: str = Field(min_length=3, max_length=100)
    description: Optional[str] = Field(default=None, max_length=255)
    points_required: int = Field(gt=0)
    is_active: bool = True


class RewardUpdate(UpdateForm):
    title: Optional[str] = Field(default=None, min_length=3, max_length=100)
    description: Optional[str] = Field(default=None, max_length=255)
    points_required: Optional[int] = Field(default=None, gt=0)
    is_active: Optional[bool] = None


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------
class HabitRecordForm(FormModel):
    habit_id: int
    date: Day
    value: float = Field(default=1, ge=0)
    notes: Optional[str] = None


class HabitRecordUpdate(FormModel):
    value: float = Field(ge=0)
    notes: Optional[str] = None


class HabitRecordFilter(FormModel):
    habit_id: Optional[int] = None
    child_id: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    limit: int = Field(default=50, ge=1, le=100)


class BehaviorRecordForm(FormModel):
    behavior_id: int
    date: Optional[Day] = None
    notes: Optional[str] = Field(default=None, max_length=255)


class RewardClaimForm(FormModel):
    reward_id: int
    notes: Optional[str] = Field(default=None, max_length=255)


class SelectChildForm(FormModel):
    child_id: int


class ToggleHabitForm(FormModel):
    habit_id: int
    child_id: int
    is_completed: StrictBool


# ---------------------------------------------------------------------------
# Points
# ---------------------------------------------------------------------------
class PointsAdjustmentForm(FormModel):
    child_id: int
    points: int = Field(ge=-MAX_ADJUSTMENT, le=MAX_ADJUSTMENT)
    description: str = Field(default="Manual points adjustment", min_length=3, max_length=255)

    @field_validator("points")
    @classmethod
    def non_zero(cls, value: int) -> int:
        if value == 0:
            raise ValueError("An adjustment must change the balance.")
        return value


class PointsHistoryFilter(FormModel):
    child_id: int
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    transaction_type: Optional[TransactionType] = None
    limit: int = Field(default=50, ge=1, le=100)
    offset: int = Field(default=0, ge=0)


class PointsSummaryQuery(FormModel):
    child_id: int
    period: SummaryPeriod = SummaryPeriod.MONTH


def validate_form(schema: Type[SchemaT], payload: Optional[Mapping[str, Any]]) -> SchemaT:
    """Validate ``payload`` against ``schema`` or raise :class:`FormValidationError`."""

    try:
        return schema.model_validate(dict(payload or {}))
    except ValidationError as exc:
        raise FormValidationError("Invalid data.", details=describe_errors(exc)) from exc


def describe_errors(exc: ValidationError) -> List[Dict[str, str]]:
    issues: List[Dict[str, str]] = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        message = str(error.get("msg", "Invalid value."))
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        issues.append({"field": location or "__root__", "message": message})
    return issues


__all__ = [
    "BehaviorForm",
    "BehaviorRecordForm",
    "BehaviorUpdate",
    "ChildForm",
    "ChildUpdate",
    "HabitForm",
    "HabitRecordFilter",
    "HabitRecordForm",
    "HabitRecordUpdate",
    "HabitUpdate",
    "LoginForm",
    "PointsAdjustmentForm",
    "PointsHistoryFilter",
    "PointsSummaryQuery",
    "RegisterForm",
    "RewardClaimForm",
    "RewardForm",
    "RewardUpdate",
    "RoutineForm",
    "RoutineHabitForm",
    "RoutineHabitUpdate",
    "RoutineUpdate",
    "SelectChildForm",
    "ToggleHabitForm",
    "describe_errors",
    "validate_form",
]
