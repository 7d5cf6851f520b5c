"""Utilities for working with point values in KidPoints."""

from __future__ import annotations

from typing import Union

from .models import BehaviorType

PointsLike = Union[int, float, str]

MAX_ADJUSTMENT = 100
MAX_ROUTINE_HABIT_POINTS = 20


def to_points(value: PointsLike) -> int:
    """Convert ``value`` to a whole number of points."""

    if isinstance(value, bool):
        raise ValueError("Booleans are not point values.")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"Points must be whole numbers, got {value!r}.")
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            try:
                number = float(text)
            except ValueError as exc:
                raise ValueError(f"'{value}' is not a valid point value.") from exc
            return to_points(number)
    raise TypeError(f"Unsupported points type: {type(value)!r}")


def require_positive(points: int, *, allow_zero: bool = False) -> int:
    """Ensure ``points`` is positive (or non-negative when ``allow_zero`` is true)."""

    if allow_zero:
        if points < 0:
            raise ValueError("Points must be zero or greater.")
    else:
        if points <= 0:
            raise ValueError("Points must be greater than zero.")
    return points


def calculate_behavior_points(points_value: int, behavior_type: BehaviorType | str) -> int:
    """Return the signed delta a behavior record applies to the balance."""

    kind = BehaviorType(behavior_type)
    magnitude = abs(to_points(points_value))
    return magnitude if kind is BehaviorType.POSITIVE else -magnitude


def validate_sufficient_points(current_balance: int, required_points: int) -> bool:
    """True when ``current_balance`` covers ``required_points``."""

    return current_balance >= required_points


def validate_points_adjustment(current_balance: int, adjustment: int) -> bool:
    """True when applying ``adjustment`` keeps the balance non-negative."""

    return current_balance + adjustment >= 0


def format_points(points: int) -> str:
    """Return ``points`` as a human readable string (e.g. ``1,250 points``)."""

    unit = "point" if abs(points) == 1 else "points"
    return f"{points:,} {unit}"


__all__ = [
    "MAX_ADJUSTMENT",
    "MAX_ROUTINE_HABIT_POINTS",
    "PointsLike",
    "calculate_behavior_points",
    "format_points",
    "require_positive",
    "to_points",
    "validate_points_adjustment",
    "validate_sufficient_points",
]
