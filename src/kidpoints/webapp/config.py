"""Configuration constants for the KidPoints web API."""
from __future__ import annotations

import os
from datetime import timezone, tzinfo
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

load_dotenv()

SESSION_SECRET = os.environ.get("SESSION_SECRET", "change-this-session-secret")
SQLITE_FILE_NAME = os.environ.get("KIDPOINTS_SQLITE", "kidpoints.db")
TIMEZONE_NAME = os.environ.get("KIDPOINTS_TIMEZONE", "UTC")
DEFAULT_LOCALE = os.environ.get("KIDPOINTS_LOCALE", "en")
MAX_LOGIN_ATTEMPTS = int(os.environ.get("KIDPOINTS_MAX_LOGIN_ATTEMPTS", "5"))
LOCKOUT_MINUTES = int(os.environ.get("KIDPOINTS_LOCKOUT_MINUTES", "15"))
_LOG_FILE = os.environ.get("KIDPOINTS_LOG_FILE", "").strip()
LOG_FILE: Optional[Path] = Path(_LOG_FILE) if _LOG_FILE else None

SESSION_USER_KEY = "user_id"
SESSION_CHILD_KEY = "selected_child_id"
RECENT_TRANSACTIONS = 10
TOP_BEHAVIORS = 5
ROUTINE_STATS_DAYS = 30
TOGGLE_NOTE = "Completed from the today view"


def app_timezone() -> tzinfo:
    """Return the zone that defines the calendar day for records."""

    if TIMEZONE_NAME.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(TIMEZONE_NAME)


__all__ = [
    "DEFAULT_LOCALE",
    "LOCKOUT_MINUTES",
    "LOG_FILE",
    "MAX_LOGIN_ATTEMPTS",
    "RECENT_TRANSACTIONS",
    "ROUTINE_STATS_DAYS",
    "SESSION_CHILD_KEY",
    "SESSION_SECRET",
    "SESSION_USER_KEY",
    "SQLITE_FILE_NAME",
    "TIMEZONE_NAME",
    "TOGGLE_NOTE",
    "TOP_BEHAVIORS",
    "app_timezone",
]
