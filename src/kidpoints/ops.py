"""Operational utilities for KidPoints."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Optional

from .models import utcnow


class HealthMonitor:
    """Aggregate runtime health information for the status endpoint."""

    def __init__(self) -> None:
        self.database_online = True
        self.migrations: list[str] = []
        self.last_consistency_check: Optional[datetime] = None
        self.inconsistent_children: list[int] = []

    def add_migration(self, name: str) -> None:
        if name not in self.migrations:
            self.migrations.append(name)

    def record_consistency_check(self, inconsistent_children: list[int], *, at: Optional[datetime] = None) -> None:
        self.last_consistency_check = at or utcnow()
        self.inconsistent_children = list(inconsistent_children)

    def status(self) -> dict:
        return {
            "database": "ok" if self.database_online else "down",
            "migrations": list(self.migrations),
            "ledger": {
                "last_check": self.last_consistency_check.isoformat() if self.last_consistency_check else None,
                "inconsistent_children": list(self.inconsistent_children),
            },
        }


class StructuredLogger:
    """Write JSON lines log entries for later inspection."""

    def __init__(self, *, path: Path | None = None, keep: int = 1000) -> None:
        self.path = path
        self._keep = keep
        self._entries: list[dict] = []

    def log(self, event_type: str, **fields: object) -> dict:
        entry = {"timestamp": utcnow().isoformat(), "event": event_type, **fields}
        self._entries.append(entry)
        if len(self._entries) > self._keep:
            del self._entries[: len(self._entries) - self._keep]
        if self.path:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(entry, default=str) + "\n")
        return entry

    def events(self, event_type: str) -> tuple[dict, ...]:
        return tuple(entry for entry in self._entries if entry["event"] == event_type)


__all__ = ["HealthMonitor", "StructuredLogger"]
