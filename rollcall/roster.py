"""Attendance records loaded for the current client session."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional

from .models import AttendanceContext, AttendanceRecord, VerificationMethod

logger = logging.getLogger(__name__)

RosterListener = Callable[[List[AttendanceRecord]], None]


def context_matches(record: AttendanceRecord, context: AttendanceContext) -> bool:
    """Same filter the store applies: no context matches every record."""
    if context.class_id:
        return record.class_id == context.class_id
    if context.event_id:
        return record.event_id == context.event_id
    return True


class Roster:
    """Newest-first list of attendance records with change listeners."""

    def __init__(self) -> None:
        self._records: List[AttendanceRecord] = []
        self._listeners: List[RosterListener] = []

    def __len__(self) -> int:
        return len(self._records)

    @property
    def records(self) -> List[AttendanceRecord]:
        return list(self._records)

    def subscribe(self, listener: RosterListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def load(self, records: List[AttendanceRecord]) -> None:
        self._records = sorted(records, key=lambda r: r.checked_in_at, reverse=True)
        self._notify()

    def prepend(self, record: AttendanceRecord) -> None:
        self._records.insert(0, record)
        self._notify()

    def prune(self, before: datetime) -> int:
        """Drop records checked in before ``before``; returns how many."""
        kept = [r for r in self._records if r.checked_in_at >= before]
        removed = len(self._records) - len(kept)
        if removed:
            self._records = kept
            self._notify()
        return removed

    def find(
        self,
        person_id: str,
        context: AttendanceContext,
        start: datetime,
        end: datetime,
    ) -> Optional[AttendanceRecord]:
        for record in self._records:
            if record.person_id != person_id:
                continue
            if not start <= record.checked_in_at < end:
                continue
            if context_matches(record, context):
                return record
        return None

    def stats(self, start: datetime, end: datetime) -> Dict[str, int]:
        today = [r for r in self._records if start <= r.checked_in_at < end]
        return {
            "today_total": len(today),
            "today_manual": sum(1 for r in today if r.verification_method is VerificationMethod.MANUAL),
            "today_scanned": sum(
                1 for r in today if r.verification_method is VerificationMethod.SCANNED_CODE
            ),
            "total": len(self._records),
        }

    def _notify(self) -> None:
        snapshot = self.records
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:  # noqa: BLE001
                logger.exception("Roster listener failed")


__all__ = ["Roster", "RosterListener", "context_matches"]
