"""Determine which attendance context applies to a check-in."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Iterable, List, Optional

from .db import Database, DatabaseError
from .errors import ContextRequired, PersistenceError
from .models import AttendanceContext, EventOption, Person, ResolvedContext, ScheduledSession

logger = logging.getLogger(__name__)

MANUAL_LABEL = "Manual"


def schedule_weekday(day: date) -> int:
    """Weekday number used by class schedules (0 = Sunday)."""
    return (day.weekday() + 1) % 7


@dataclass(slots=True)
class TodayOptions:
    day: date
    sessions: List[ScheduledSession] = field(default_factory=list)
    events: List[EventOption] = field(default_factory=list)


class ContextResolver:
    """Holds the fixed or operator-selected context for one client.

    A class or event id supplied at construction is authoritative. Without one,
    the operator picks at most one of today's sessions or today's events;
    choosing one clears the other.
    """

    def __init__(
        self,
        database: Database,
        *,
        today: Callable[[], date],
        class_id: Optional[str] = None,
        event_id: Optional[str] = None,
        required_roles: Iterable[str] = ("student",),
    ) -> None:
        if class_id and event_id:
            raise ValueError("a fixed context is either a class or an event")
        self.database = database
        self._today = today
        self.fixed = AttendanceContext.from_ids(class_id, event_id)
        self.required_roles = {role.lower() for role in required_roles}
        self._options: Optional[TodayOptions] = None
        self._session: Optional[ScheduledSession] = None
        self._event: Optional[EventOption] = None

    @property
    def selected_session(self) -> Optional[ScheduledSession]:
        return self._session

    @property
    def selected_event(self) -> Optional[EventOption]:
        return self._event

    async def load_today(self, refresh: bool = False) -> TodayOptions:
        day = self._today()
        if self._options is not None and self._options.day == day and not refresh:
            return self._options
        if self._options is not None and self._options.day != day:
            # A selection made yesterday must not leak into today's records.
            self.clear_selection()

        options = TodayOptions(day=day)
        if self.fixed.is_none:
            session_rows = await self._query(self.database.get_sessions_for_weekday, schedule_weekday(day))
            options.sessions = [
                ScheduledSession(
                    id=row["id"],
                    class_id=row["class_id"],
                    class_name=row["class_name"],
                    subject_name=row["subject_name"],
                    subject_code=row["subject_code"] or "",
                    professor_name=row["professor_name"] or "",
                )
                for row in session_rows
            ]
            event_rows = await self._query(self.database.get_events_on, day)
            options.events = [
                EventOption(id=row["id"], title=row["title"], description=row["description"])
                for row in event_rows
            ]
        self._options = options
        logger.debug(
            "Loaded %s session(s) and %s event(s) for %s",
            len(options.sessions),
            len(options.events),
            day.isoformat(),
        )
        return options

    async def select_session(self, session_id: str) -> ScheduledSession:
        self._require_free()
        options = await self.load_today()
        for session in options.sessions:
            if session.id == session_id:
                self._session = session
                self._event = None
                return session
        raise KeyError(f"session {session_id} is not scheduled today")

    async def select_event(self, event_id: str) -> EventOption:
        self._require_free()
        options = await self.load_today()
        for event in options.events:
            if event.id == event_id:
                self._event = event
                self._session = None
                return event
        raise KeyError(f"event {event_id} is not running today")

    def _require_free(self) -> None:
        if not self.fixed.is_none:
            raise ValueError("context is fixed for this station")

    def clear_selection(self) -> None:
        self._session = None
        self._event = None

    async def resolve(self, person: Person) -> ResolvedContext:
        if not self.fixed.is_none:
            return ResolvedContext(self.fixed, await self._fixed_label())

        options = await self.load_today()
        if self._session is not None:
            return ResolvedContext(
                AttendanceContext.class_session(self._session.class_id),
                self._session.subject_name,
                session_id=self._session.id,
            )
        if self._event is not None:
            return ResolvedContext(AttendanceContext.event(self._event.id), self._event.title)

        if person.role.lower() in self.required_roles:
            raise ContextRequired(
                f"Select today's session before checking in {person.full_name}",
                person_name=person.full_name,
                choice="session",
            )
        if options.events:
            raise ContextRequired(
                f"Select the event before checking in {person.full_name}",
                person_name=person.full_name,
                choice="event",
            )
        return ResolvedContext(AttendanceContext.none(), MANUAL_LABEL)

    async def _fixed_label(self) -> str:
        if self.fixed.class_id:
            row = await self._query(self.database.get_class, self.fixed.class_id)
            return row["name"] if row else self.fixed.class_id
        row = await self._query(self.database.get_event, self.fixed.event_id)
        return row["title"] if row else str(self.fixed.event_id)

    async def _query(self, method: Callable[..., Any], *args: Any) -> Any:
        try:
            return await asyncio.to_thread(method, *args)
        except DatabaseError as exc:
            raise PersistenceError("context lookup", str(exc)) from exc


__all__ = ["ContextResolver", "TodayOptions", "schedule_weekday", "MANUAL_LABEL"]
