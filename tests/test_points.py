from datetime import date, datetime

import pytest

from kidpoints.models import BehaviorType, SummaryPeriod, Weekday
from kidpoints.points import (
    calculate_behavior_points,
    format_points,
    require_positive,
    to_points,
    validate_points_adjustment,
    validate_sufficient_points,
)


def test_to_points_accepts_whole_numbers() -> None:
    assert to_points(5) == 5
    assert to_points(" 12 ") == 12
    assert to_points(3.0) == 3
    assert to_points("4.0") == 4


@pytest.mark.parametrize("value", [1.5, "2.25", "abc"])
def test_to_points_rejects_fractions_and_text(value) -> None:
    with pytest.raises(ValueError):
        to_points(value)


def test_to_points_rejects_booleans() -> None:
    with pytest.raises(ValueError):
        to_points(True)
    with pytest.raises(ValueError):
        to_points(False)


def test_require_positive() -> None:
    assert require_positive(3) == 3
    assert require_positive(0, allow_zero=True) == 0
    with pytest.raises(ValueError):
        require_positive(0)
    with pytest.raises(ValueError):
        require_positive(-1, allow_zero=True)


def test_behavior_points_take_sign_from_type() -> None:
    assert calculate_behavior_points(5, BehaviorType.POSITIVE) == 5
    assert calculate_behavior_points(5, "NEGATIVE") == -5
    assert calculate_behavior_points(-5, BehaviorType.POSITIVE) == 5


def test_balance_checks() -> None:
    assert validate_sufficient_points(10, 10)
    assert not validate_sufficient_points(9, 10)
    assert validate_points_adjustment(5, -5)
    assert not validate_points_adjustment(5, -6)


def test_format_points() -> None:
    assert format_points(1) == "1 point"
    assert format_points(-1) == "-1 point"
    assert format_points(1250) == "1,250 points"
    assert format_points(-3) == "-3 points"


def test_weekday_for_date() -> None:
    assert Weekday.for_date(date(2024, 5, 6)) is Weekday.MONDAY
    assert Weekday.for_date(date(2024, 5, 12)) is Weekday.SUNDAY


def test_summary_period_starts() -> None:
    now = datetime(2024, 5, 15, 12, 0)

    assert SummaryPeriod.MONTH.start(now) == datetime(2024, 5, 1)
    assert SummaryPeriod.QUARTER.start(now) == datetime(2024, 4, 1)
    assert SummaryPeriod.YEAR.start(now) == datetime(2024, 1, 1)
    assert SummaryPeriod.WEEK.start(now) == datetime(2024, 5, 8, 12, 0)


def test_rolling_start_clamps_short_months() -> None:
    assert SummaryPeriod.MONTH.rolling_start(datetime(2024, 3, 31)) == datetime(2024, 2, 29)
    assert SummaryPeriod.YEAR.rolling_start(datetime(2024, 2, 29)) == datetime(2023, 2, 28)
