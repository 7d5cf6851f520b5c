from datetime import date, timedelta

import pytest

from kidpoints.exceptions import FormValidationError
from kidpoints.models import Weekday
from kidpoints.validation import (
    BehaviorRecordForm,
    ChildForm,
    ChildUpdate,
    HabitForm,
    HabitRecordForm,
    HabitUpdate,
    LoginForm,
    PointsAdjustmentForm,
    PointsHistoryFilter,
    RegisterForm,
    RoutineForm,
    RoutineHabitForm,
    RoutineUpdate,
    SelectChildForm,
    ToggleHabitForm,
    validate_form,
)


def _fields(error: FormValidationError) -> set:
    return {issue["field"] for issue in error.details}


def test_register_form_normalises_email() -> None:
    form = validate_form(
        RegisterForm,
        {
            "full_name": "Pat Parent",
            "email": " Pat@Example.com ",
            "password": "Secret123",
            "confirm_password": "Secret123",
        },
    )

    assert form.email == "pat@example.com"


def test_register_form_rejects_mismatched_passwords() -> None:
    with pytest.raises(FormValidationError) as excinfo:
        validate_form(
            RegisterForm,
            {
                "full_name": "Pat Parent",
                "email": "pat@example.com",
                "password": "Secret123",
                "confirm_password": "Secret124",
            },
        )

    assert excinfo.value.kind == "validation"
    assert excinfo.value.details[0]["message"] == "Passwords do not match."


def test_register_form_requires_strong_password() -> None:
    with pytest.raises(FormValidationError) as excinfo:
        validate_form(
            RegisterForm,
            {"full_name": "Pat", "email": "pat@example.com", "password": "secret1", "confirm_password": "secret1"},
        )

    assert "password" in _fields(excinfo.value)


def test_login_form_rejects_bad_email() -> None:
    with pytest.raises(FormValidationError) as excinfo:
        validate_form(LoginForm, {"email": "not-an-email", "password": "Secret123"})

    assert _fields(excinfo.value) == {"email"}


def test_child_birth_date_cannot_be_in_future() -> None:
    tomorrow = date.today() + timedelta(days=1)

    with pytest.raises(FormValidationError) as excinfo:
        validate_form(ChildForm, {"name": "Ava", "birth_date": tomorrow.isoformat(), "adhd_type": "COMBINED"})

    assert _fields(excinfo.value) == {"birth_date"}


def test_habit_form_bounds() -> None:
    payload = {"child_id": 1, "title": "Brush teeth", "category": "HYGIENE", "target_frequency": 2, "unit": "times"}

    assert validate_form(HabitForm, payload).points_value == 1
    with pytest.raises(FormValidationError) as excinfo:
        validate_form(HabitForm, {**payload, "title": "No", "points_value": 101, "target_frequency": 0})

    assert _fields(excinfo.value) == {"title", "points_value", "target_frequency"}


def test_routine_form_dedupes_and_orders_days() -> None:
    form = validate_form(
        RoutineForm,
        {"child_id": 1, "title": "Morning", "time": "07:30", "days": ["FRIDAY", "MONDAY", "FRIDAY"]},
    )

    assert form.days == [Weekday.MONDAY, Weekday.FRIDAY]
    assert form.completion_threshold == 100
    assert form.bonus_points == 0


@pytest.mark.parametrize(
    "changes, field",
    [
        ({"time": "25:00"}, "time"),
        ({"days": []}, "days"),
        ({"completion_threshold": 0}, "completion_threshold"),
        ({"bonus_points": 51}, "bonus_points"),
    ],
)
def test_routine_form_rejects_invalid_values(changes, field) -> None:
    payload = {"child_id": 1, "title": "Morning", "time": "07:30", "days": ["MONDAY"], **changes}

    with pytest.raises(FormValidationError) as excinfo:
        validate_form(RoutineForm, payload)

    assert field in _fields(excinfo.value)


def test_routine_habit_points_are_capped() -> None:
    assert validate_form(RoutineHabitForm, {"routine_id": 1, "habit_id": 2, "points_value": 20}).is_required is True
    with pytest.raises(FormValidationError):
        validate_form(RoutineHabitForm, {"routine_id": 1, "habit_id": 2, "points_value": 21})


def test_adjustment_must_be_non_zero_and_bounded() -> None:
    form = validate_form(PointsAdjustmentForm, {"child_id": 1, "points": -100})
    assert form.description == "Manual points adjustment"

    for points in (0, 101, -101):
        with pytest.raises(FormValidationError) as excinfo:
            validate_form(PointsAdjustmentForm, {"child_id": 1, "points": points})
        assert _fields(excinfo.value) == {"points"}


def test_toggle_requires_real_boolean() -> None:
    assert validate_form(ToggleHabitForm, {"habit_id": 1, "child_id": 2, "is_completed": False}).is_completed is False
    with pytest.raises(FormValidationError):
        validate_form(ToggleHabitForm, {"habit_id": 1, "child_id": 2, "is_completed": "yes"})


def test_record_forms_parse_dates() -> None:
    record = validate_form(HabitRecordForm, {"habit_id": 3, "date": "2024-05-01"})
    behavior = validate_form(BehaviorRecordForm, {"behavior_id": 4})

    assert record.date == date(2024, 5, 1)
    assert record.value == 1
    assert behavior.date is None


def test_history_filter_from_query_strings() -> None:
    filters = validate_form(
        PointsHistoryFilter, {"child_id": "3", "limit": "10", "offset": "20", "transaction_type": "HABIT"}
    )

    assert filters.child_id == 3
    assert filters.limit == 10
    assert filters.offset == 20
    with pytest.raises(FormValidationError):
        validate_form(PointsHistoryFilter, {"child_id": "3", "limit": "500"})


def test_register_form_rejects_passwords_longer_than_bcrypt_accepts() -> None:
    password = "Aa1" + "x" * 70

    with pytest.raises(FormValidationError) as excinfo:
        validate_form(
            RegisterForm,
            {"full_name": "Pat", "email": "pat@example.com", "password": password, "confirm_password": password},
        )

    assert "password" in _fields(excinfo.value)


@pytest.mark.parametrize(
    "schema, field",
    [
        (ChildUpdate, "name"),
        (ChildUpdate, "birth_date"),
        (HabitUpdate, "title"),
        (HabitUpdate, "points_value"),
        (RoutineUpdate, "days"),
        (RoutineUpdate, "is_active"),
    ],
)
def test_updates_reject_null_for_required_columns(schema, field) -> None:
    with pytest.raises(FormValidationError) as excinfo:
        validate_form(schema, {field: None})

    assert _fields(excinfo.value) == {field}


def test_updates_allow_clearing_optional_columns() -> None:
    form = validate_form(HabitUpdate, {"description": None})

    assert form.model_dump(exclude_unset=True) == {"description": None}
    assert validate_form(ChildUpdate, {}).model_dump(exclude_unset=True) == {}


def test_select_child_requires_integer_id() -> None:
    assert validate_form(SelectChildForm, {"child_id": "7"}).child_id == 7
    with pytest.raises(FormValidationError) as excinfo:
        validate_form(SelectChildForm, {"child_id": "abc"})

    assert _fields(excinfo.value) == {"child_id"}
