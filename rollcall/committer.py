"""Persist a single attendance record per successful check-in."""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, tzinfo
from typing import Any, Callable, Dict, Optional

from .db import Database, DatabaseError, IntegrityError, parse_timestamp
from .errors import DuplicateAttendance, PersistenceError
from .guard import local_day
from .models import AttendanceRecord, Person, ResolvedContext, VerificationMethod
from .roster import Roster
from .suppression import SuppressionCache

logger = logging.getLogger(__name__)

METHOD_NAMES = {
    VerificationMethod.MANUAL: "manual",
    VerificationMethod.SCANNED_CODE: "scanned code",
}


def describe_context(resolved: ResolvedContext) -> str:
    if resolved.context.class_id:
        return f"Session: {resolved.label}"
    if resolved.context.event_id:
        return f"Event: {resolved.label}"
    return "Manual"


class AttendanceCommitter:
    def __init__(
        self,
        database: Database,
        roster: Roster,
        suppression: SuppressionCache,
        *,
        zone: tzinfo,
        clock: Callable[[], datetime],
        station_id: Optional[str] = None,
    ) -> None:
        self.database = database
        self.roster = roster
        self.suppression = suppression
        self.zone = zone
        self._clock = clock
        self.station_id = station_id

    async def commit(
        self,
        person: Person,
        resolved: ResolvedContext,
        method: VerificationMethod,
        *,
        verification: Optional[Dict[str, Any]] = None,
        payload: Optional[str] = None,
        note: Optional[str] = None,
    ) -> AttendanceRecord:
        """Insert the record, then update the roster and suppression cache.

        A uniqueness violation from the store is reported as
        :class:`DuplicateAttendance` with the winning record's timestamp; any
        other storage failure raises :class:`PersistenceError` and leaves the
        roster untouched.
        """

        now = self._clock()
        context = resolved.context
        data: Dict[str, Any] = dict(verification or {})
        if payload is not None:
            data.setdefault("payload", payload)
        if self.station_id:
            data.setdefault("station_id", self.station_id)
        data.update(
            {
                "session_id": resolved.session_id,
                "class_id": context.class_id,
                "event_id": context.event_id,
            }
        )

        notes = f"Checked in via {METHOD_NAMES[method]} - {describe_context(resolved)}"
        if note:
            notes = f"{notes}. {note}"

        record = AttendanceRecord(
            id=str(uuid.uuid4()),
            person_id=person.id,
            class_id=context.class_id,
            event_id=context.event_id,
            checked_in_at=now,
            verification_method=method,
            notes=notes,
            context_label=resolved.label,
            person_name=person.full_name,
            verification_data=data,
        )
        day = local_day(now, self.zone).isoformat()
        row = {
            "id": record.id,
            "person_id": record.person_id,
            "class_id": record.class_id,
            "event_id": record.event_id,
            "context_key": context.key,
            "day": day,
            "checked_in_at": record.checked_in_at,
            "verification_method": method.value,
            "notes": record.notes,
            "context_label": record.context_label,
            "verification_data": data,
        }

        try:
            await asyncio.to_thread(self.database.insert_attendance, row)
        except IntegrityError as exc:
            existing = await self._existing(person, context.key, day)
            logger.info("Store rejected duplicate attendance for %s (%s)", person.id, context.key)
            raise DuplicateAttendance(
                person.id,
                parse_timestamp(existing["checked_in_at"]) if existing else None,
                person_name=person.full_name,
                record_id=existing["id"] if existing else None,
            ) from exc
        except DatabaseError as exc:
            logger.error("Attendance insert failed for %s: %s", person.id, exc)
            raise PersistenceError("insert", str(exc), person_name=person.full_name) from exc

        self.roster.prepend(record)
        if payload is not None:
            self.suppression.mark_accepted(payload)
        logger.info(
            "Attendance committed for %s (%s) via %s",
            person.full_name,
            resolved.label,
            method.value,
        )
        return record

    async def _existing(self, person: Person, context_key: str, day: str):
        try:
            return await asyncio.to_thread(
                self.database.find_attendance_by_key, person.id, context_key, day
            )
        except DatabaseError:
            logger.warning("Could not load the conflicting record for %s", person.id)
            return None


__all__ = ["AttendanceCommitter", "describe_context"]
