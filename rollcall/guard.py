"""Authoritative at-most-once check for (person, context, day)."""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, time, timedelta, tzinfo

from .db import Database, DatabaseError, parse_timestamp
from .errors import DuplicateAttendance, PersistenceError
from .models import AttendanceContext, Person
from .roster import Roster

logger = logging.getLogger(__name__)


def day_bounds(moment: datetime, zone: tzinfo) -> tuple[datetime, datetime]:
    """Start and end of ``moment``'s calendar day in ``zone``."""
    local_day = moment.astimezone(zone).date()
    start = datetime.combine(local_day, time.min, tzinfo=zone)
    end = datetime.combine(local_day + timedelta(days=1), time.min, tzinfo=zone)
    return start, end


def local_day(moment: datetime, zone: tzinfo) -> date:
    return moment.astimezone(zone).date()


class UniquenessGuard:
    """Decide whether a new record would break the one-per-day invariant.

    The persistent store is checked first since it covers other stations and
    reloads. The in-memory roster is checked second to cover this client's own
    commits that a lagging store read might not yet show. Both checks share
    one context predicate for manual and scanned check-ins.
    """

    def __init__(self, database: Database, roster: Roster, zone: tzinfo) -> None:
        self.database = database
        self.roster = roster
        self.zone = zone

    async def check(self, person: Person, context: AttendanceContext, now: datetime) -> None:
        start, end = day_bounds(now, self.zone)
        try:
            rows = await asyncio.to_thread(
                self.database.find_attendance,
                person.id,
                start,
                end,
                class_id=context.class_id,
                event_id=context.event_id,
            )
        except DatabaseError as exc:
            raise PersistenceError("duplicate check", str(exc), person_name=person.full_name) from exc

        if rows:
            existing = rows[0]
            raise DuplicateAttendance(
                person.id,
                parse_timestamp(existing["checked_in_at"]),
                person_name=person.full_name,
                record_id=existing["id"],
            )

        local = self.roster.find(person.id, context, start, end)
        if local is not None:
            logger.debug("Roster caught duplicate for %s missed by the store read", person.id)
            raise DuplicateAttendance(
                person.id,
                local.checked_in_at,
                person_name=person.full_name,
                record_id=local.id,
            )


__all__ = ["UniquenessGuard", "day_bounds", "local_day"]
