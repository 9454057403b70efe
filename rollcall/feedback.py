"""Translate pipeline results into operator-facing outcomes."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from .errors import (
    CheckInError,
    ContextRequired,
    DuplicateAttendance,
    PayloadMalformed,
    PersistenceError,
    PersonNotFound,
)
from .models import AttendanceRecord, Person

logger = logging.getLogger(__name__)

COMMITTED = "committed"
SUPPRESSED = "suppressed"
DUPLICATE = "duplicate"
NOT_FOUND = "not_found"
MALFORMED = "malformed"
CONTEXT_REQUIRED = "context_required"
PERSISTENCE_ERROR = "persistence_error"

SUCCESS = "success"
INFO = "info"
ERROR = "error"

CATEGORIES = {
    COMMITTED: SUCCESS,
    SUPPRESSED: INFO,
    DUPLICATE: INFO,
    NOT_FOUND: ERROR,
    MALFORMED: ERROR,
    CONTEXT_REQUIRED: ERROR,
    PERSISTENCE_ERROR: ERROR,
}


@dataclass(slots=True)
class CheckInOutcome:
    """Terminal state of one candidate scan or manual selection."""

    kind: str
    message: str
    person_id: Optional[str] = None
    person_name: Optional[str] = None
    context_label: Optional[str] = None
    payload: Optional[str] = None
    record: Optional[AttendanceRecord] = None
    existing_checked_in_at: Optional[datetime] = None
    retryable: bool = False
    choice: Optional[str] = None

    @property
    def category(self) -> str:
        return CATEGORIES[self.kind]

    @property
    def committed(self) -> bool:
        return self.kind == COMMITTED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "category": self.category,
            "message": self.message,
            "person_id": self.person_id,
            "person_name": self.person_name,
            "context_label": self.context_label,
            "payload": self.payload,
            "record": self.record.to_dict() if self.record else None,
            "existing_checked_in_at": (
                self.existing_checked_in_at.isoformat() if self.existing_checked_in_at else None
            ),
            "retryable": self.retryable,
            "choice": self.choice,
        }


Listener = Callable[[CheckInOutcome], Union[None, Awaitable[None]]]


class FeedbackNotifier:
    """Builds outcomes and fans them out to subscribers, one per terminal state."""

    def __init__(self, zone: tzinfo) -> None:
        self.zone = zone
        self._listeners: List[Listener] = []
        self.history: List[CheckInOutcome] = []
        self.history_size = 50

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _clock_text(self, moment: datetime) -> str:
        return moment.astimezone(self.zone).strftime("%H:%M:%S")

    # region Outcome builders
    def committed(self, record: AttendanceRecord, person: Person, payload: Optional[str] = None) -> CheckInOutcome:
        return CheckInOutcome(
            kind=COMMITTED,
            message=(
                f"{person.full_name} - {record.context_label} "
                f"at {self._clock_text(record.checked_in_at)}"
            ),
            person_id=person.id,
            person_name=person.full_name,
            context_label=record.context_label,
            payload=payload,
            record=record,
        )

    def suppressed(self, payload: str) -> CheckInOutcome:
        return CheckInOutcome(
            kind=SUPPRESSED,
            message=f"Code already processed: {payload}",
            payload=payload,
        )

    def failed(
        self,
        error: CheckInError,
        *,
        person: Optional[Person] = None,
        payload: Optional[str] = None,
        context_label: Optional[str] = None,
    ) -> CheckInOutcome:
        name = person.full_name if person else error.person_name
        outcome = CheckInOutcome(
            kind=error.outcome,
            message=str(error),
            person_id=person.id if person else None,
            person_name=name,
            context_label=context_label,
            payload=payload,
        )
        if isinstance(error, DuplicateAttendance):
            outcome.existing_checked_in_at = error.existing_checked_in_at
            when = (
                f" at {self._clock_text(error.existing_checked_in_at)}"
                if error.existing_checked_in_at
                else ""
            )
            outcome.message = f"{name or 'This person'} is already checked in today{when}"
        elif isinstance(error, PersonNotFound):
            outcome.message = "Person not found or not active"
        elif isinstance(error, PayloadMalformed):
            outcome.message = f"Unrecognised code: {error.reason}"
        elif isinstance(error, ContextRequired):
            outcome.choice = error.choice
            outcome.message = str(error)
        elif isinstance(error, PersistenceError):
            outcome.retryable = True
            outcome.message = f"Could not record attendance for {name or 'this person'}; try again"
        return outcome

    # endregion

    async def publish(self, outcome: CheckInOutcome) -> CheckInOutcome:
        self._log(outcome)
        self.history.insert(0, outcome)
        del self.history[self.history_size:]
        for listener in list(self._listeners):
            try:
                result = listener(outcome)
                if inspect.isawaitable(result):
                    await result
            except Exception:  # noqa: BLE001
                logger.exception("Feedback listener failed for %s outcome", outcome.kind)
        return outcome

    def _log(self, outcome: CheckInOutcome) -> None:
        if outcome.kind == PERSISTENCE_ERROR:
            logger.warning("Check-in failed: %s", outcome.message)
        elif outcome.kind == COMMITTED:
            logger.info("Check-in confirmed: %s", outcome.message)
        else:
            logger.info("Check-in %s: %s", outcome.kind, outcome.message)


__all__ = [
    "CheckInOutcome",
    "FeedbackNotifier",
    "COMMITTED",
    "SUPPRESSED",
    "DUPLICATE",
    "NOT_FOUND",
    "MALFORMED",
    "CONTEXT_REQUIRED",
    "PERSISTENCE_ERROR",
    "SUCCESS",
    "INFO",
    "ERROR",
]
