"""Toast notification primitives for KidPoints."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, MutableMapping, Optional, Sequence

from .exceptions import KidPointsError
from .i18n import Translator
from .models import utcnow

NOTICE_SESSION_KEY = "notices"
MAX_QUEUED_NOTICES = 20


class NoticeKind(str, Enum):
    SUCCESS = "success"
    INFO = "info"
    VALIDATION = "validation"
    BACKEND = "backend"


@dataclass(slots=True)
class Notice:
    """A toast waiting to be shown to the parent."""

    kind: NoticeKind
    title: str
    message: str
    details: List[Dict[str, str]] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "title": self.title,
            "message": self.message,
            "details": list(self.details),
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, payload: MutableMapping[str, Any]) -> "Notice":
        created = payload.get("created_at")
        return cls(
            kind=NoticeKind(payload.get("kind", NoticeKind.INFO.value)),
            title=str(payload.get("title", "")),
            message=str(payload.get("message", "")),
            details=list(payload.get("details") or []),
            created_at=datetime.fromisoformat(created) if created else utcnow(),
        )


class NotificationCenter:
    """Build toasts and keep them in a session mapping until popped."""

    def __init__(self, translator: Optional[Translator] = None) -> None:
        self._translator = translator or Translator()

    def build(self, kind: NoticeKind, message: str, *, details: Optional[Sequence[Dict[str, str]]] = None) -> Notice:
        title = self._translator.translate(f"toast.{kind.value}")
        return Notice(kind=kind, title=title, message=message, details=list(details or []))

    def from_error(self, error: KidPointsError) -> Notice:
        kind = NoticeKind.VALIDATION if error.kind == NoticeKind.VALIDATION.value else NoticeKind.BACKEND
        return self.build(kind, error.message, details=error.details)

    def queue(self, session: MutableMapping[str, Any], notice: Notice) -> None:
        queued = session.get(NOTICE_SESSION_KEY)
        if not isinstance(queued, list):
            queued = []
        queued.append(notice.as_dict())
        session[NOTICE_SESSION_KEY] = queued[-MAX_QUEUED_NOTICES:]

    def success(self, session: MutableMapping[str, Any], message: str) -> Notice:
        notice = self.build(NoticeKind.SUCCESS, message)
        self.queue(session, notice)
        return notice

    def pending(self, session: MutableMapping[str, Any]) -> Sequence[Notice]:
        queued = session.get(NOTICE_SESSION_KEY)
        if not isinstance(queued, list):
            return tuple()
        return tuple(Notice.from_dict(item) for item in queued if isinstance(item, dict))

    def pop_all(self, session: MutableMapping[str, Any]) -> Sequence[Notice]:
        pending = self.pending(session)
        session.pop(NOTICE_SESSION_KEY, None)
        return pending


def error_payload(error: KidPointsError, translator: Translator) -> Dict[str, Any]:
    """Return the JSON body used for error responses."""

    return {
        "error": error.message,
        "kind": error.kind,
        "title": translator.translate(f"toast.{error.kind}"),
        "details": list(error.details),
    }


__all__ = [
    "MAX_QUEUED_NOTICES",
    "NOTICE_SESSION_KEY",
    "Notice",
    "NoticeKind",
    "NotificationCenter",
    "error_payload",
]
