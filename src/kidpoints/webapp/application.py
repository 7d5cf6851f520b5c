"""FastAPI JSON API for KidPoints.

Parents register, add their children and describe the habits, behaviors,
routines and rewards each child works with.  Every point-affecting action goes
through :mod:`kidpoints.webapp.ledger`, which keeps the denormalised balance in
step with the append-only transaction log.  Errors leave the API as toast
shaped JSON (``error``, ``kind``, ``title``, ``details``) and successful
mutations queue a success toast in the signed session cookie.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple, Type

from fastapi import Body, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy import delete, text
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, desc, select
from starlette.middleware.sessions import SessionMiddleware

from ..exceptions import (
    AccessDeniedError,
    AuthenticationError,
    ChildNotFoundError,
    DuplicateRecordError,
    FormValidationError,
    KidPointsError,
    NotFoundError,
)
from ..i18n import Translator
from ..models import SummaryPeriod
from ..notifications import NotificationCenter, error_payload
from ..ops import HealthMonitor, StructuredLogger
from ..points import format_points
from ..security import AuthManager, hash_password, verify_password
from ..store import StoreRegistry
from ..validation import (
    BehaviorForm,
    BehaviorRecordForm,
    BehaviorUpdate,
    ChildForm,
    ChildUpdate,
    HabitForm,
    HabitRecordFilter,
    HabitRecordForm,
    HabitRecordUpdate,
    HabitUpdate,
    LoginForm,
    PointsAdjustmentForm,
    PointsHistoryFilter,
    PointsSummaryQuery,
    RegisterForm,
    RewardClaimForm,
    RewardForm,
    RewardUpdate,
    RoutineForm,
    RoutineHabitForm,
    RoutineHabitUpdate,
    RoutineUpdate,
    SelectChildForm,
    ToggleHabitForm,
    describe_errors,
    validate_form,
)
from . import ledger
from . import persistence as _persistence
from .config import (
    DEFAULT_LOCALE,
    LOCKOUT_MINUTES,
    LOG_FILE,
    MAX_LOGIN_ATTEMPTS,
    ROUTINE_STATS_DAYS,
    SESSION_CHILD_KEY,
    SESSION_SECRET,
    SESSION_USER_KEY,
)
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
    User,
    child_age,
    encode_days,
    model_dict,
    open_session,
    routine_days,
)

# ---------------------------------------------------------------------------
# FastAPI application setup
# ---------------------------------------------------------------------------
app = FastAPI(title="KidPoints")
app.add_middleware(
    SessionMiddleware,
    secret_key=SESSION_SECRET,
    same_site="lax",
    max_age=None,
)

translator = Translator(DEFAULT_LOCALE)
notifications = NotificationCenter(translator)
auth_manager = AuthManager(max_attempts=MAX_LOGIN_ATTEMPTS, lockout_minutes=LOCKOUT_MINUTES)
stores = StoreRegistry()
logger = StructuredLogger(path=LOG_FILE)
health = HealthMonitor()

Payload = Dict[str, Any]


@app.exception_handler(KidPointsError)
async def handle_kidpoints_error(request: Request, exc: KidPointsError) -> JSONResponse:
    logger.log(
        "request_error",
        path=request.url.path,
        status=exc.status_code,
        error=exc.__class__.__name__,
        message=exc.message,
    )
    return JSONResponse(error_payload(exc, translator), status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    error = FormValidationError(translator.translate("form.invalid"), details=describe_errors(exc))
    logger.log("request_error", path=request.url.path, status=422, error="RequestValidationError")
    return JSONResponse(error_payload(error, translator), status_code=422)


# ---------------------------------------------------------------------------
# Session and scoping helpers
# ---------------------------------------------------------------------------
def _current_user(request: Request, session: Session) -> User:
    user_id = request.session.get(SESSION_USER_KEY)
    user = session.get(User, user_id) if user_id is not None else None
    if user is None:
        request.session.pop(SESSION_USER_KEY, None)
        raise AuthenticationError(translator.translate("auth.required"))
    return user


def _owned_child(session: Session, user: User, child_id: Optional[int]) -> Child:
    child = session.get(Child, child_id) if child_id is not None else None
    if child is None:
        raise ChildNotFoundError("Child not found.")
    if child.parent_id != user.id:
        raise AccessDeniedError(translator.translate("access.denied"))
    return child


def _owned(session: Session, user: User, model: Type[SQLModel], entity_id: int) -> Tuple[Any, Child]:
    """Load ``model`` by id and return it with the child that owns it."""

    row = session.get(model, entity_id)
    if row is None:
        raise NotFoundError(f"{model.__name__} not found.")
    if isinstance(row, RoutineHabit):
        owner_id = session.get(Routine, row.routine_id).child_id
    elif isinstance(row, HabitRecord):
        owner_id = session.get(Habit, row.habit_id).child_id
    elif isinstance(row, BehaviorRecord):
        owner_id = session.get(Behavior, row.behavior_id).child_id
    elif isinstance(row, RewardClaim):
        owner_id = session.get(Reward, row.reward_id).child_id
    else:
        owner_id = row.child_id
    return row, _owned_child(session, user, owner_id)


def _children_of(session: Session, user: User) -> List[Child]:
    return list(session.exec(select(Child).where(Child.parent_id == user.id).order_by(Child.name, Child.id)).all())


def _query(request: Request) -> Payload:
    return dict(request.query_params)


def _invalid_param(name: str, message: str) -> FormValidationError:
    return FormValidationError(translator.translate("form.invalid"), details=[{"field": name, "message": message}])


def _int_param(request: Request, name: str, *, required: bool = False) -> Optional[int]:
    raw = request.query_params.get(name)
    if not raw:
        if required:
            raise _invalid_param(name, f"{name} is required.")
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise _invalid_param(name, f"{name} must be an integer.") from exc


def _require_child_id(request: Request) -> int:
    """Return the ``child_id`` query parameter, falling back to the selected child."""

    child_id = _int_param(request, "child_id")
    if child_id is None:
        child_id = request.session.get(SESSION_CHILD_KEY)
    if child_id is None:
        raise _invalid_param("child_id", "child_id is required.")
    return child_id


def _apply_changes(row: SQLModel, changes: Payload) -> Payload:
    for key, value in changes.items():
        setattr(row, key, value.value if hasattr(value, "value") else value)
    if hasattr(row, "updated_at"):
        row.updated_at = ledger.now_utc()
    return changes


def _user_json(user: User) -> Payload:
    payload = model_dict(user)
    payload.pop("password_hash", None)
    return payload


def _child_json(child: Child) -> Payload:
    return model_dict(child, age=child_age(child, ledger.today_local()))


def _routine_json(routine: Routine, **extra: Any) -> Payload:
    return model_dict(routine, days=[day.value for day in routine_days(routine)], **extra)


def _reward_json(session: Session, child: Child, reward: Reward) -> Payload:
    claimed = ledger.reward_claimed(session, reward)
    return model_dict(
        reward,
        has_been_claimed=claimed,
        can_redeem=reward.is_active and not claimed and child.points_balance >= reward.points_required,
    )


def _notify(request: Request, message: str) -> None:
    notifications.success(request.session, message)


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------
@app.post("/api/auth/register", status_code=201)
def register(request: Request, payload: Payload = Body(default_factory=dict)) -> Payload:
    form = validate_form(RegisterForm, payload)
    with open_session() as session:
        existing = session.exec(select(User).where(User.email == form.email)).first()
        if existing is not None:
            raise DuplicateRecordError("An account with this email already exists.")
        user = User(email=form.email, full_name=form.full_name, password_hash=hash_password(form.password))
        session.add(user)
        session.commit()
        session.refresh(user)
    request.session[SESSION_USER_KEY] = user.id
    request.session.pop(SESSION_CHILD_KEY, None)
    logger.log("user_registered", user_id=user.id)
    _notify(request, f"Welcome, {user.full_name}!")
    return {"user": _user_json(user)}


@app.post("/api/auth/login")
def login(request: Request, payload: Payload = Body(default_factory=dict)) -> Payload:
    form = validate_form(LoginForm, payload)
    if auth_manager.is_locked(form.email):
        logger.log("login_locked", email=form.email)
        raise AuthenticationError(translator.translate("auth.locked"))
    with open_session() as session:
        user = session.exec(select(User).where(User.email == form.email)).first()
    if user is None or not verify_password(form.password, user.password_hash):
        auth_manager.record_login_attempt(form.email, success=False)
        logger.log("login_failed", email=form.email)
        raise AuthenticationError(translator.translate("auth.invalid"))
    auth_manager.record_login_attempt(form.email, success=True)
    request.session[SESSION_USER_KEY] = user.id
    logger.log("login_succeeded", user_id=user.id)
    return {"user": _user_json(user)}


@app.post("/api/auth/logout")
def logout(request: Request) -> Payload:
    user_id = request.session.get(SESSION_USER_KEY)
    if user_id is not None:
        stores.discard(user_id)
    request.session.clear()
    return {"ok": True}


@app.get("/api/auth/me")
def me(request: Request) -> Payload:
    with open_session() as session:
        user = _current_user(request, session)
    return {"user": _user_json(user)}


# ---------------------------------------------------------------------------
# Session store
# ---------------------------------------------------------------------------
@app.get("/api/session")
def session_state(request: Request) -> Payload:
    """Rehydrate the parent's cached state from the datastore."""

    with open_session() as session:
        user = _current_user(request, session)
        store = stores.for_user(user.id)

        def load() -> Tuple[Payload, List[Payload]]:
            return _user_json(user), [_child_json(child) for child in _children_of(session, user)]

        state = store.rehydrate(load, selected_child_id=request.session.get(SESSION_CHILD_KEY))
    if state.selected_child is not None:
        request.session[SESSION_CHILD_KEY] = state.selected_child["id"]
    else:
        request.session.pop(SESSION_CHILD_KEY, None)
    return store.as_dict()


@app.post("/api/session/select-child")
def select_child(request: Request, payload: Payload = Body(default_factory=dict)) -> Payload:
    form = validate_form(SelectChildForm, payload)
    with open_session() as session:
        user = _current_user(request, session)
        child = _owned_child(session, user, form.child_id)
        store = stores.for_user(user.id)
        if store.find_child(child.id) is None:
            store.add_child(_child_json(child))
        store.select_child_id(child.id)
    request.session[SESSION_CHILD_KEY] = child.id
    return store.as_dict()


@app.get("/api/notices")
def pop_notices(request: Request) -> Payload:
    return {"notices": [notice.as_dict() for notice in notifications.pop_all(request.session)]}


# ---------------------------------------------------------------------------
# Children
# ---------------------------------------------------------------------------
@app.get("/api/children")
def list_children(request: Request) -> Payload:
    with open_session() as session:
        user = _current_user(request, session)
        return {"data": [_child_json(child) for child in _children_of(session, user)]}


@app.post("/api/children", status_code=201)
def create_child(request: Request, payload: Payload = Body(default_factory=dict)) -> Payload:
    form = validate_form(ChildForm, payload)
    with open_session() as session:
        user = _current_user(request, session)
        child = Child(
            parent_id=user.id,
            name=form.name,
            birth_date=form.birth_date,
            adhd_type=form.adhd_type.value,
            avatar_url=form.avatar_url,
        )
        session.add(child)
        session.commit()
        session.refresh(child)
        data = _child_json(child)
    stores.for_user(user.id).add_child(data)
    _notify(request, f"{child.name} was added.")
    return {"data": data}


@app.get("/api/children/{child_id}")
def get_child(child_id: int, request: Request) -> Payload:
    with open_session() as session:
        user = _current_user(request, session)
        return {"data": _child_json(_owned_child(session, user, child_id))}


@app.put("/api/children/{child_id}")
def update_child(child_id: int, request: Request, payload: Payload = Body(default_factory=dict)) -> Payload:
    form = validate_form(ChildUpdate, payload)
    with open_session() as session:
        user = _current_user(request, session)
        child = _owned_child(session, user, child_id)
        _apply_changes(child, form.model_dump(exclude_unset=True))
        session.add(child)
        session.commit()
        session.refresh(child)
        data = _child_json(child)
    stores.for_user(user.id).update_child(child_id, **data)
    _notify(request, f"{child.name} was updated.")
    return {"data": data}


@app.delete("/api/children/{child_id}")
def delete_child(child_id: int, request: Request) -> Payload:
    with open_session() as session:
        user = _current_user(request, session)
        child = _owned_child(session, user, child_id)
        _purge_child(session, child)
        session.commit()
    stores.for_user(user.id).remove_child(child_id)
    if request.session.get(SESSION_CHILD_KEY) == child_id:
        request.session.pop(SESSION_CHILD_KEY, None)
    logger.log("child_deleted", child_id=child_id, user_id=user.id)
    _notify(request, f"{child.name} was removed.")
    return {"ok": True}


def _purge_child(session: Session, child: Child) -> None:
    habit_ids = select(Habit.id).where(Habit.child_id == child.id)
    behavior_ids = select(Behavior.id).where(Behavior.child_id == child.id)
    routine_ids = select(Routine.id).where(Routine.child_id == child.id)
    reward_ids = select(Reward.id).where(Reward.child_id == child.id)
    session.exec(delete(HabitRecord).where(HabitRecord.habit_id.in_(habit_ids)))
    session.exec(delete(RoutineHabit).where(RoutineHabit.routine_id.in_(routine_ids)))
    session.exec(delete(RoutineCompletion).where(RoutineCompletion.child_id == child.id))
    session.exec(delete(BehaviorRecord).where(BehaviorRecord.behavior_id.in_(behavior_ids)))
    session.exec(delete(RewardClaim).where(RewardClaim.reward_id.in_(reward_ids)))
    session.exec(delete(PointsTransaction).where(PointsTransaction.child_id == child.id))
    for model in (Habit, Behavior, Routine, Reward):
        session.exec(delete(model).where(model.child_id == child.id))
    session.delete(child)


# ---------------------------------------------------------------------------
# Habits
# ---------------------------------------------------------------------------
@app.get("/api/habits")
def list_habits(request: Request) -> Payload:
    child_id = _require_child_id(request)
    with open_session() as session:
        child = _owned_child(session, _current_user(request, session), child_id)
        rows = session.exec(select(Habit).where(Habit.child_id == child.id).order_by(Habit.created_at, Habit.id)).all()
        return {"data": [model_dict(row, award=ledger.habit_award(session, row)) for row in rows]}


@app.post("/api/habits", status_code=201)
def create_habit(request: Request, payload: Payload = Body(default_factory=dict)) -> Payload:
    form = validate_form(HabitForm, payload)
    with open_session() as session:
        _owned_child(session, _current_user(request, session), form.child_id)
        habit = Habit(**form.model_dump(exclude={"category"}), category=form.category.value)
        session.add(habit)
        session.commit()
        session.refresh(habit)
    _notify(request, f"Habit '{habit.title}' created.")
    return {"data": model_dict(habit)}


@app.get("/api/habits/{habit_id}")
def get_habit(habit_id: int, request: Request) -> Payload:
    with open_session() as session:
        habit, _ = _owned(session, _current_user(request, session), Habit, habit_id)
        return {"data": model_dict(habit, award=ledger.habit_award(session, habit))}


@app.put("/api/habits/{habit_id}")
def update_habit(habit_id: int, request: Request, payload: Payload = Body(default_factory=dict)) -> Payload:
    form = validate_form(HabitUpdate, payload)
    with open_session() as session:
        habit, _ = _owned(session, _current_user(request, session), Habit, habit_id)
        _apply_changes(habit, form.model_dump(exclude_unset=True))
        session.add(habit)
        session.commit()
        session.refresh(habit)
    _notify(request, f"Habit '{habit.title}' updated.")
    return {"data": model_dict(habit)}


@app.delete("/api/habits/{habit_id}")
def delete_habit(habit_id: int, request: Request) -> Payload:
    with open_session() as session:
        habit, _ = _owned(session, _current_user(request, session), Habit, habit_id)
        session.exec(delete(HabitRecord).where(HabitRecord.habit_id == habit.id))
        session.exec(delete(RoutineHabit).where(RoutineHabit.habit_id == habit.id))
        session.delete(habit)
        session.commit()
    _notify(request, f"Habit '{habit.title}' deleted.")
    return {"ok": True}


# ---------------------------------------------------------------------------
# Behaviors
# ---------------------------------------------------------------------------
@app.get("/api/behaviors")
def list_behaviors(request: Request) -> Payload:
    child_id = _require_child_id(request)
    with open_session() as session:
        child = _owned_child(session, _current_user(request, session), child_id)
        rows = session.exec(
            select(Behavior).where(Behavior.child_id == child.id).order_by(Behavior.type, Behavior.title)
        ).all()
        return {"data": [model_dict(row) for row in rows]}


@app.post("/api/behaviors", status_code=201)
def create_behavior(request: Request, payload: Payload = Body(default_factory=dict)) -> Payload:
    form = validate_form(BehaviorForm, payload)
    with open_session() as session:
        _owned_child(session, _current_user(request, session), form.child_id)
        behavior = Behavior(**form.model_dump(exclude={"type"}), type=form.type.value)
        session.add(behavior)
        session.commit()
        session.refresh(behavior)
    _notify(request, f"Behavior '{behavior.title}' created.")
    return {"data": model_dict(behavior)}


@app.get("/api/behaviors/{behavior_id}")
def get_behavior(behavior_id: int, request: Request) -> Payload:
    with open_session() as session:
        behavior, _ = _owned(session, _current_user(request, session), Behavior, behavior_id)
        return {"data": model_dict(behavior)}


@app.put("/api/behaviors/{behavior_id}")
def update_behavior(behavior_id: int, request: Request, payload: Payload = Body(default_factory=dict)) -> Payload:
    form = validate_form(BehaviorUpdate, payload)
    with open_session() as session:
        behavior, _ = _owned(session, _current_user(request, session), Behavior, behavior_id)
        _apply_changes(behavior, form.model_dump(exclude_unset=True))
        session.add(behavior)
        session.commit()
        session.refresh(behavior)
    _notify(request, f"Behavior '{behavior.title}' updated.")
    return {"data": model_dict(behavior)}


@app.delete("/api/behaviors/{behavior_id}")
def delete_behavior(behavior_id: int, request: Request) -> Payload:
    with open_session() as session:
        behavior, _ = _owned(session, _current_user(request, session), Behavior, behavior_id)
        session.exec(delete(BehaviorRecord).where(BehaviorRecord.behavior_id == behavior.id))
        session.delete(behavior)
        session.commit()
    _notify(request, f"Behavior '{behavior.title}' deleted.")
    return {"ok": True}


@app.get("/api/behavior-records")
def list_behavior_records(request: Request) -> Payload:
    child_id = _require_child_id(request)
    with open_session() as session:
        child = _owned_child(session, _current_user(request, session), child_id)
        rows = session.exec(
            select(BehaviorRecord, Behavior)
            .join(Behavior, Behavior.id == BehaviorRecord.behavior_id)
            .where(Behavior.child_id == child.id)
            .order_by(desc(BehaviorRecord.date), desc(BehaviorRecord.id))
        ).all()
        return {"data": [model_dict(record, behavior=model_dict(behavior)) for record, behavior in rows]}


@app.post("/api/behavior-records", status_code=201)
def create_behavior_record(request: Request, payload: Payload = Body(default_factory=dict)) -> Payload:
    form = validate_form(BehaviorRecordForm, payload)
    with open_session() as session:
        behavior, child = _owned(session, _current_user(request, session), Behavior, form.behavior_id)
        record, transaction = ledger.record_behavior(
            session, behavior, form.date or ledger.today_local(), form.notes
        )
    logger.log("behavior_recorded", child_id=child.id, behavior_id=behavior.id, points=transaction.points)
    _notify(request, f"{behavior.title}: {format_points(transaction.points)}.")
    return {
        "data": model_dict(record),
        "transaction": ledger.transaction_dict(transaction),
        "balance": transaction.balance_after,
    }


# ---------------------------------------------------------------------------
# Routines
# ---------------------------------------------------------------------------
def _routine_fields(form: Any, changes: Payload) -> Payload:
    if "days" in changes:
        changes["days"] = encode_days(form.days)
    return changes


@app.get("/api/routines")
def list_routines(request: Request) -> Payload:
    child_id = _require_child_id(request)
    with open_session() as session:
        child = _owned_child(session, _current_user(request, session), child_id)
        rows = session.exec(
            select(Routine).where(Routine.child_id == child.id).order_by(Routine.time, Routine.id)
        ).all()
        return {"data": [_routine_json(row) for row in rows]}


@app.post("/api/routines", status_code=201)
def create_routine(request: Request, payload: Payload = Body(default_factory=dict)) -> Payload:
    form = validate_form(RoutineForm, payload)
    with open_session() as session:
        _owned_child(session, _current_user(request, session), form.child_id)
        routine = Routine(**_routine_fields(form, form.model_dump()))
        session.add(routine)
        session.commit()
        session.refresh(routine)
    _notify(request, f"Routine '{routine.title}' created.")
    return {"data": _routine_json(routine)}


@app.get("/api/routines/today")
def routines_today(request: Request) -> Payload:
    child_id = _require_child_id(request)
    with open_session() as session:
        child = _owned_child(session, _current_user(request, session), child_id)
        overview = ledger.get_today_overview(session, child)
    return {"data": overview["routines"], "date": overview["date"]}


@app.get("/api/routines/stats")
def routines_stats(request: Request) -> Payload:
    child_id = _require_child_id(request)
    routine_id = _int_param(request, "routine_id")
    window = _int_param(request, "days") or ROUTINE_STATS_DAYS
    with open_session() as session:
        user = _current_user(request, session)
        child = _owned_child(session, user, child_id)
        routine = None
        if routine_id is not None:
            routine, owner = _owned(session, user, Routine, routine_id)
            if owner.id != child.id:
                raise AccessDeniedError(translator.translate("access.denied"))
        return {"data": ledger.get_routine_stats(session, child, routine, days=window)}


@app.get("/api/routines/{routine_id}")
def get_routine(routine_id: int, request: Request) -> Payload:
    with open_session() as session:
        routine, _ = _owned(session, _current_user(request, session), Routine, routine_id)
        return {"data": _routine_json(routine, streak=ledger.get_routine_streak(session, routine))}


@app.put("/api/routines/{routine_id}")
def update_routine(routine_id: int, request: Request, payload: Payload = Body(default_factory=dict)) -> Payload:
    form = validate_form(RoutineUpdate, payload)
    with open_session() as session:
        routine, _ = _owned(session, _current_user(request, session), Routine, routine_id)
        _apply_changes(routine, _routine_fields(form, form.model_dump(exclude_unset=True)))
        session.add(routine)
        session.commit()
        session.refresh(routine)
        # A new threshold or bonus re-settles today's bonus once the day has activity.
        today = ledger.today_local()
        started = session.exec(
            select(RoutineCompletion.id).where(
                RoutineCompletion.routine_id == routine.id, RoutineCompletion.completion_date == today
            )
        ).first()
        if started is not None:
            ledger.evaluate_routine_completion(session, routine, today)
    _notify(request, f"Routine '{routine.title}' updated.")
    return {"data": _routine_json(routine)}


@app.delete("/api/routines/{routine_id}")
def delete_routine(routine_id: int, request: Request) -> Payload:
    with open_session() as session:
        routine, _ = _owned(session, _current_user(request, session), Routine, routine_id)
        session.exec(delete(RoutineHabit).where(RoutineHabit.routine_id == routine.id))
        session.exec(delete(RoutineCompletion).where(RoutineCompletion.routine_id == routine.id))
        session.delete(routine)
        session.commit()
    _notify(request, f"Routine '{routine.title}' deleted.")
    return {"ok": True}


@app.get("/api/routine-habits")
def list_routine_habits(request: Request) -> Payload:
    routine_id = _int_param(request, "routine_id", required=True)
    with open_session() as session:
        routine, _ = _owned(session, _current_user(request, session), Routine, routine_id)
        rows = session.exec(
            select(RoutineHabit, Habit)
            .join(Habit, Habit.id == RoutineHabit.habit_id)
            .where(RoutineHabit.routine_id == routine.id)
            .order_by(RoutineHabit.id)
        ).all()
        return {"data": [model_dict(link, habit=model_dict(habit)) for link, habit in rows]}


@app.post("/api/routine-habits", status_code=201)
def assign_routine_habit(request: Request, payload: Payload = Body(default_factory=dict)) -> Payload:
    form = validate_form(RoutineHabitForm, payload)
    with open_session() as session:
        user = _current_user(request, session)
        routine, routine_child = _owned(session, user, Routine, form.routine_id)
        habit, habit_child = _owned(session, user, Habit, form.habit_id)
        if routine_child.id != habit_child.id:
            raise _invalid_param("habit_id", "The habit and the routine must belong to the same child.")
        existing = session.exec(
            select(RoutineHabit).where(RoutineHabit.routine_id == routine.id, RoutineHabit.habit_id == habit.id)
        ).first()
        if existing is not None:
            raise DuplicateRecordError(f"'{habit.title}' is already part of '{routine.title}'.")
        link = RoutineHabit(**form.model_dump())
        session.add(link)
        session.commit()
        session.refresh(link)
    _notify(request, f"'{habit.title}' added to '{routine.title}'.")
    return {"data": model_dict(link, habit=model_dict(habit))}


@app.put("/api/routine-habits/{link_id}")
def update_routine_habit(link_id: int, request: Request, payload: Payload = Body(default_factory=dict)) -> Payload:
    form = validate_form(RoutineHabitUpdate, payload)
    with open_session() as session:
        link, _ = _owned(session, _current_user(request, session), RoutineHabit, link_id)
        _apply_changes(link, form.model_dump(exclude_unset=True))
        session.add(link)
        session.commit()
        session.refresh(link)
    return {"data": model_dict(link)}


@app.delete("/api/routine-habits/{link_id}")
def remove_routine_habit(link_id: int, request: Request) -> Payload:
    with open_session() as session:
        link, _ = _owned(session, _current_user(request, session), RoutineHabit, link_id)
        session.delete(link)
        session.commit()
    return {"ok": True}


# ---------------------------------------------------------------------------
# Habit records
# ---------------------------------------------------------------------------
@app.get("/api/habit-records")
def list_habit_records(request: Request) -> Payload:
    filters = validate_form(HabitRecordFilter, _query(request))
    with open_session() as session:
        user = _current_user(request, session)
        query = select(HabitRecord, Habit).join(Habit, Habit.id == HabitRecord.habit_id)
        if filters.habit_id is not None:
            habit, _ = _owned(session, user, Habit, filters.habit_id)
            query = query.where(HabitRecord.habit_id == habit.id)
        elif filters.child_id is not None:
            child = _owned_child(session, user, filters.child_id)
            query = query.where(Habit.child_id == child.id)
        else:
            query = query.where(Habit.child_id.in_(select(Child.id).where(Child.parent_id == user.id)))
        if filters.start_date is not None:
            query = query.where(HabitRecord.date >= filters.start_date)
        if filters.end_date is not None:
            query = query.where(HabitRecord.date <= filters.end_date)
        rows = session.exec(
            query.order_by(desc(HabitRecord.date), desc(HabitRecord.id)).limit(filters.limit)
        ).all()
        return {"data": [model_dict(record, habit=model_dict(habit)) for record, habit in rows]}


@app.post("/api/habit-records", status_code=201)
def create_habit_record(request: Request, payload: Payload = Body(default_factory=dict)) -> Payload:
    form = validate_form(HabitRecordForm, payload)
    with open_session() as session:
        habit, child = _owned(session, _current_user(request, session), Habit, form.habit_id)
        record, transaction = ledger.record_habit(session, habit, form.date, form.value, form.notes)
        balance = ledger.get_child_points_balance(session, child)
    logger.log("habit_recorded", child_id=child.id, habit_id=habit.id, points=transaction.points)
    _notify(request, f"{habit.title}: {format_points(transaction.points)}.")
    return {"data": model_dict(record), "transaction": ledger.transaction_dict(transaction), "balance": balance}


@app.put("/api/habit-records/{record_id}")
def update_habit_record(record_id: int, request: Request, payload: Payload = Body(default_factory=dict)) -> Payload:
    form = validate_form(HabitRecordUpdate, payload)
    with open_session() as session:
        record, _ = _owned(session, _current_user(request, session), HabitRecord, record_id)
        record = ledger.update_habit_record(session, record, form.value, form.notes)
    return {"data": model_dict(record)}


@app.delete("/api/habit-records/{record_id}")
def delete_habit_record(record_id: int, request: Request) -> Payload:
    with open_session() as session:
        record, child = _owned(session, _current_user(request, session), HabitRecord, record_id)
        transaction = ledger.delete_habit_record(session, record)
        balance = ledger.get_child_points_balance(session, child)
    logger.log("habit_record_deleted", child_id=child.id, record_id=record_id, points=transaction.points)
    return {"ok": True, "transaction": ledger.transaction_dict(transaction), "balance": balance}


# ---------------------------------------------------------------------------
# Rewards
# ---------------------------------------------------------------------------
@app.get("/api/rewards")
def list_rewards(request: Request) -> Payload:
    child_id = _require_child_id(request)
    active_only = request.query_params.get("active_only", "").lower() in {"1", "true", "yes"}
    with open_session() as session:
        child = _owned_child(session, _current_user(request, session), child_id)
        query = select(Reward).where(Reward.child_id == child.id)
        if active_only:
            query = query.where(Reward.is_active == True)  # noqa: E712
        rows = session.exec(query.order_by(Reward.points_required, Reward.id)).all()
        return {
            "data": [_reward_json(session, child, row) for row in rows],
            "balance": child.points_balance,
        }


@app.post("/api/rewards", status_code=201)
def create_reward(request: Request, payload: Payload = Body(default_factory=dict)) -> Payload:
    form = validate_form(RewardForm, payload)
    with open_session() as session:
        child = _owned_child(session, _current_user(request, session), form.child_id)
        reward = Reward(**form.model_dump())
        session.add(reward)
        session.commit()
        session.refresh(reward)
        data = _reward_json(session, child, reward)
    _notify(request, f"Reward '{reward.title}' created.")
    return {"data": data}


@app.get("/api/rewards/{reward_id}")
def get_reward(reward_id: int, request: Request) -> Payload:
    with open_session() as session:
        reward, child = _owned(session, _current_user(request, session), Reward, reward_id)
        return {"data": _reward_json(session, child, reward)}


@app.put("/api/rewards/{reward_id}")
def update_reward(reward_id: int, request: Request, payload: Payload = Body(default_factory=dict)) -> Payload:
    form = validate_form(RewardUpdate, payload)
    with open_session() as session:
        reward, child = _owned(session, _current_user(request, session), Reward, reward_id)
        _apply_changes(reward, form.model_dump(exclude_unset=True))
        session.add(reward)
        session.commit()
        session.refresh(reward)
        data = _reward_json(session, child, reward)
    _notify(request, f"Reward '{reward.title}' updated.")
    return {"data": data}


@app.delete("/api/rewards/{reward_id}")
def delete_reward(reward_id: int, request: Request) -> Payload:
    with open_session() as session:
        reward, _ = _owned(session, _current_user(request, session), Reward, reward_id)
        session.exec(delete(RewardClaim).where(RewardClaim.reward_id == reward.id))
        session.delete(reward)
        session.commit()
    _notify(request, f"Reward '{reward.title}' deleted.")
    return {"ok": True}


@app.get("/api/reward-claims")
def list_reward_claims(request: Request) -> Payload:
    child_id = _require_child_id(request)
    with open_session() as session:
        child = _owned_child(session, _current_user(request, session), child_id)
        return {"data": ledger.redemption_history(session, child)}


@app.post("/api/reward-claims", status_code=201)
def create_reward_claim(request: Request, payload: Payload = Body(default_factory=dict)) -> Payload:
    form = validate_form(RewardClaimForm, payload)
    with open_session() as session:
        reward, child = _owned(session, _current_user(request, session), Reward, form.reward_id)
        claim, transaction = ledger.claim_reward(session, reward, form.notes)
    logger.log("reward_claimed", child_id=child.id, reward_id=reward.id, points=transaction.points)
    _notify(request, f"{child.name} redeemed '{reward.title}'.")
    return {
        "data": model_dict(claim, reward=model_dict(reward)),
        "transaction": ledger.transaction_dict(transaction),
        "balance": transaction.balance_after,
    }


# ---------------------------------------------------------------------------
# Points
# ---------------------------------------------------------------------------
@app.get("/api/points")
def points_overview(request: Request) -> Payload:
    filters = validate_form(PointsHistoryFilter, _query(request))
    with open_session() as session:
        child = _owned_child(session, _current_user(request, session), filters.child_id)
        rows, total = ledger.get_child_points_history(session, child, filters)
        return {
            "balance": ledger.get_child_points_balance(session, child),
            "stats": ledger.get_points_summary(session, child),
            "transactions": [ledger.transaction_dict(row) for row in rows],
            "pagination": {
                "total": total,
                "limit": filters.limit,
                "offset": filters.offset,
                "has_more": filters.offset + len(rows) < total,
            },
        }


@app.post("/api/points")
def adjust_points(request: Request, payload: Payload = Body(default_factory=dict)) -> Payload:
    form = validate_form(PointsAdjustmentForm, payload)
    with open_session() as session:
        user = _current_user(request, session)
        child = _owned_child(session, user, form.child_id)
        transaction = ledger.adjust_child_points(session, child, form.points, form.description)
    logger.log("points_adjusted", child_id=child.id, user_id=user.id, points=transaction.points)
    _notify(request, f"{child.name}: {format_points(transaction.points)}.")
    return {"transaction": ledger.transaction_dict(transaction), "balance": transaction.balance_after}


@app.get("/api/points/summary")
def points_summary(request: Request) -> Payload:
    query = validate_form(PointsSummaryQuery, _query(request))
    with open_session() as session:
        child = _owned_child(session, _current_user(request, session), query.child_id)
        return {"data": ledger.get_points_summary(session, child, query.period)}


@app.get("/api/points/stats")
def points_stats(request: Request) -> Payload:
    query = validate_form(PointsSummaryQuery, _query(request))
    if query.period is SummaryPeriod.QUARTER:
        raise _invalid_param("period", "Use week, month or year.")
    with open_session() as session:
        child = _owned_child(session, _current_user(request, session), query.child_id)
        return {"data": ledger.get_points_stats(session, child, query.period)}


@app.get("/api/points/dashboard")
def points_dashboard(request: Request) -> Payload:
    child_id = _require_child_id(request)
    with open_session() as session:
        child = _owned_child(session, _current_user(request, session), child_id)
        return {"data": ledger.get_points_dashboard(session, child)}


@app.get("/api/points/export")
def export_points(request: Request) -> StreamingResponse:
    filters = validate_form(PointsHistoryFilter, _query(request))
    with open_session() as session:
        child = _owned_child(session, _current_user(request, session), filters.child_id)
        content = ledger.export_history_csv(
            session,
            child,
            start=filters.start_date,
            end=filters.end_date,
            transaction_type=filters.transaction_type,
        )
    filename = f"points-{child.id}.csv"
    return StreamingResponse(
        iter([content]),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@app.get("/api/points/eligibility")
def reward_eligibility(request: Request) -> Payload:
    reward_id = _int_param(request, "reward_id", required=True)
    with open_session() as session:
        reward, child = _owned(session, _current_user(request, session), Reward, reward_id)
        balance = ledger.get_child_points_balance(session, child)
        return {
            "can_claim": ledger.can_child_claim_reward(session, child, reward),
            "balance": balance,
            "points_required": reward.points_required,
            "points_needed": max(reward.points_required - balance, 0),
            "is_active": reward.is_active,
            "already_claimed": ledger.reward_claimed(session, reward),
        }


def _consistency(request: Request, *, repair: bool) -> Payload:
    with open_session() as session:
        user = _current_user(request, session)
        children = _children_of(session, user)
        if repair:
            reports = ledger.repair_balances(session, children)
        else:
            reports = ledger.verify_ledger_consistency(session, children)
    broken = [report.child_id for report in reports if not report.is_valid]
    health.record_consistency_check(broken)
    if broken:
        logger.log("ledger_inconsistent", user_id=user.id, children=broken, repaired=repair)
    return {"data": [report.as_dict() for report in reports], "inconsistent_children": broken}


@app.get("/api/points/verify")
def verify_points(request: Request) -> Payload:
    return _consistency(request, repair=False)


@app.post("/api/points/repair")
def repair_points(request: Request) -> Payload:
    return _consistency(request, repair=True)


# ---------------------------------------------------------------------------
# Today
# ---------------------------------------------------------------------------
@app.get("/api/today")
def today_overview(request: Request) -> Payload:
    child_id = _require_child_id(request)
    with open_session() as session:
        child = _owned_child(session, _current_user(request, session), child_id)
        overview = ledger.get_today_overview(session, child)
        overview["child"] = _child_json(child)
    return {"data": overview}


@app.post("/api/today/toggle-habit")
def toggle_habit(request: Request, payload: Payload = Body(default_factory=dict)) -> Payload:
    form = validate_form(ToggleHabitForm, payload)
    with open_session() as session:
        user = _current_user(request, session)
        child = _owned_child(session, user, form.child_id)
        habit, owner = _owned(session, user, Habit, form.habit_id)
        if owner.id != child.id:
            raise NotFoundError("This habit does not belong to that child.")
        result = ledger.toggle_habit_today(session, child, habit, form.is_completed)
        result["balance"] = ledger.get_child_points_balance(session, child)
    logger.log("habit_toggled", child_id=child.id, habit_id=habit.id, action=result["action"], points=result["points"])
    return {"data": result}


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------
@app.get("/api/health")
def health_status() -> Payload:
    try:
        with open_session() as session:
            session.connection().execute(text("SELECT 1"))
        health.database_online = True
    except SQLAlchemyError as exc:
        health.database_online = False
        logger.log("database_unavailable", error=str(exc))
    for name in _persistence.MIGRATIONS_APPLIED:
        health.add_migration(name)
    return health.status()


__all__ = [
    "app",
    "auth_manager",
    "health",
    "logger",
    "notifications",
    "stores",
    "translator",
]
