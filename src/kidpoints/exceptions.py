"""Custom exception hierarchy for the KidPoints package."""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence


class KidPointsError(Exception):
    """Base class for all KidPoints specific errors."""

    status_code = 400
    kind = "backend"

    def __init__(self, message: str = "", *, details: Optional[Sequence[Dict[str, str]]] = None) -> None:
        super().__init__(message)
        self.message = message or self.__class__.__doc__ or "Unexpected error."
        self.details: List[Dict[str, str]] = list(details or [])


class FormValidationError(KidPointsError):
    """Raised when user input fails schema validation."""

    kind = "validation"


class AuthenticationError(KidPointsError):
    """Raised when a request needs a signed-in parent."""

    status_code = 401


class AccessDeniedError(KidPointsError):
    """Raised when a parent touches data owned by someone else."""

    status_code = 403


class NotFoundError(KidPointsError):
    """Raised when an entity lookup fails."""

    status_code = 404


class ChildNotFoundError(NotFoundError):
    """Raised when a child lookup fails."""


class LedgerError(KidPointsError):
    """Raised when a points ledger operation cannot be applied."""


class InsufficientPointsError(LedgerError):
    """Raised when a ledger operation would result in a negative balance."""


class DuplicateClaimError(LedgerError):
    """Raised when a reward has already been claimed."""

    status_code = 409


class DuplicateRecordError(KidPointsError):
    """Raised when creating a record that already exists."""

    status_code = 409
