"""KidPoints package: a points-based token economy for parents and their children."""

from .exceptions import (
    AccessDeniedError,
    AuthenticationError,
    ChildNotFoundError,
    DuplicateClaimError,
    DuplicateRecordError,
    FormValidationError,
    InsufficientPointsError,
    KidPointsError,
    LedgerError,
    NotFoundError,
)
from .i18n import Translator
from .ledger import PointsLedger
from .models import (
    AdhdType,
    BehaviorType,
    ConsistencyReport,
    HabitCategory,
    LedgerEntry,
    SummaryPeriod,
    TransactionType,
    Weekday,
)
from .notifications import Notice, NoticeKind, NotificationCenter
from .ops import HealthMonitor, StructuredLogger
from .security import AuthManager
from .store import AppState, AppStore, StoreRegistry

__all__ = [
    "AccessDeniedError",
    "AdhdType",
    "AppState",
    "AppStore",
    "AuthManager",
    "AuthenticationError",
    "BehaviorType",
    "ChildNotFoundError",
    "ConsistencyReport",
    "DuplicateClaimError",
    "DuplicateRecordError",
    "FormValidationError",
    "HabitCategory",
    "HealthMonitor",
    "InsufficientPointsError",
    "KidPointsError",
    "LedgerEntry",
    "LedgerError",
    "Notice",
    "NoticeKind",
    "NotificationCenter",
    "NotFoundError",
    "PointsLedger",
    "StoreRegistry",
    "StructuredLogger",
    "SummaryPeriod",
    "TransactionType",
    "Translator",
    "Weekday",
]
