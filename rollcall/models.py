"""Dataclasses representing rollcall domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

CLASS_SESSION = "class_session"
EVENT = "event"
NO_CONTEXT = "none"


class VerificationMethod(str, Enum):
    MANUAL = "manual"
    SCANNED_CODE = "scanned_code"


@dataclass(slots=True)
class Person:
    id: str
    full_name: str
    national_id: str = ""
    qr_code: str | None = None
    badge_number: str | None = None
    role: str = "member"
    status: str = "active"

    @property
    def is_active(self) -> bool:
        return self.status == "active"


@dataclass(frozen=True, slots=True)
class AttendanceContext:
    """Tagged union of class session, event or no context."""

    kind: str = NO_CONTEXT
    ref_id: Optional[str] = None

    @classmethod
    def class_session(cls, class_id: str) -> "AttendanceContext":
        return cls(CLASS_SESSION, class_id)

    @classmethod
    def event(cls, event_id: str) -> "AttendanceContext":
        return cls(EVENT, event_id)

    @classmethod
    def none(cls) -> "AttendanceContext":
        return cls(NO_CONTEXT, None)

    @property
    def class_id(self) -> Optional[str]:
        return self.ref_id if self.kind == CLASS_SESSION else None

    @property
    def event_id(self) -> Optional[str]:
        return self.ref_id if self.kind == EVENT else None

    @property
    def is_none(self) -> bool:
        return self.kind == NO_CONTEXT

    @property
    def key(self) -> str:
        """Value stored in the uniqueness constraint column."""
        if self.kind == CLASS_SESSION:
            return f"class:{self.ref_id}"
        if self.kind == EVENT:
            return f"event:{self.ref_id}"
        return NO_CONTEXT

    @classmethod
    def from_ids(cls, class_id: Optional[str], event_id: Optional[str]) -> "AttendanceContext":
        if class_id:
            return cls.class_session(class_id)
        if event_id:
            return cls.event(event_id)
        return cls.none()


@dataclass(slots=True)
class ScanPayload:
    text: str
    captured_at: float


@dataclass(slots=True)
class CandidateScan:
    payload: str
    captured_at: float


@dataclass(slots=True)
class SuppressionEntry:
    payload: str
    accepted_at: float


@dataclass(slots=True)
class ScheduledSession:
    id: str
    class_id: str
    class_name: str
    subject_name: str
    subject_code: str = ""
    professor_name: str = ""


@dataclass(slots=True)
class EventOption:
    id: str
    title: str
    description: str | None = None


@dataclass(slots=True)
class ResolvedContext:
    context: AttendanceContext
    label: str
    session_id: Optional[str] = None


@dataclass(slots=True)
class AttendanceRecord:
    id: str
    person_id: str
    class_id: Optional[str]
    event_id: Optional[str]
    checked_in_at: datetime
    verification_method: VerificationMethod
    notes: str
    context_label: str
    person_name: str = ""
    verification_data: Dict[str, Any] = field(default_factory=dict)

    @property
    def context(self) -> AttendanceContext:
        return AttendanceContext.from_ids(self.class_id, self.event_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "person_id": self.person_id,
            "person_name": self.person_name,
            "class_id": self.class_id,
            "event_id": self.event_id,
            "checked_in_at": self.checked_in_at.isoformat(),
            "verification_method": self.verification_method.value,
            "notes": self.notes,
            "context_label": self.context_label,
            "verification_data": dict(self.verification_data),
        }


__all__ = [
    "AttendanceContext",
    "AttendanceRecord",
    "CandidateScan",
    "EventOption",
    "Person",
    "ResolvedContext",
    "ScanPayload",
    "ScheduledSession",
    "SuppressionEntry",
    "VerificationMethod",
    "CLASS_SESSION",
    "EVENT",
    "NO_CONTEXT",
]
