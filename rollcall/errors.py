"""Exceptions raised along the check-in pipeline."""

from __future__ import annotations

from datetime import datetime
from typing import Optional


class CheckInError(RuntimeError):
    """Base class for failures that terminate a single check-in."""

    outcome = "error"

    def __init__(self, message: str, *, person_name: Optional[str] = None) -> None:
        super().__init__(message)
        self.person_name = person_name


class PayloadMalformed(CheckInError):
    outcome = "malformed"

    def __init__(self, payload: str, reason: str = "unrecognised payload") -> None:
        super().__init__(f"Malformed payload {payload!r}: {reason}")
        self.payload = payload
        self.reason = reason


class PersonNotFound(CheckInError):
    outcome = "not_found"

    def __init__(self, lookup: str) -> None:
        super().__init__(f"No active person matches {lookup!r}")
        self.lookup = lookup


class PersonInactive(PersonNotFound):
    """Person exists but is not active; reported to operators as not found."""

    def __init__(self, lookup: str, person_name: str) -> None:
        super().__init__(lookup)
        self.person_name = person_name


class ContextRequired(CheckInError):
    outcome = "context_required"

    def __init__(self, message: str, *, person_name: Optional[str] = None, choice: str = "session") -> None:
        super().__init__(message, person_name=person_name)
        self.choice = choice


class DuplicateAttendance(CheckInError):
    outcome = "duplicate"

    def __init__(
        self,
        person_id: str,
        existing_checked_in_at: Optional[datetime],
        *,
        person_name: Optional[str] = None,
        record_id: Optional[str] = None,
    ) -> None:
        when = existing_checked_in_at.isoformat() if existing_checked_in_at else "an unknown time"
        super().__init__(
            f"Attendance already recorded for person {person_id} at {when}",
            person_name=person_name,
        )
        self.person_id = person_id
        self.existing_checked_in_at = existing_checked_in_at
        self.record_id = record_id


class PersistenceError(CheckInError):
    """Storage failure other than a uniqueness violation."""

    outcome = "persistence_error"
    retryable = True

    def __init__(self, operation: str, error: str, *, person_name: Optional[str] = None) -> None:
        super().__init__(f"Storage error during {operation}: {error}", person_name=person_name)
        self.operation = operation
        self.error = error


__all__ = [
    "CheckInError",
    "ContextRequired",
    "DuplicateAttendance",
    "PayloadMalformed",
    "PersistenceError",
    "PersonInactive",
    "PersonNotFound",
]
