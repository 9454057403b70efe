"""Core orchestration logic for rollcall."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from .coalescer import ScanCoalescer
from .committer import AttendanceCommitter
from .config import Settings, resolve_zone
from .context import ContextResolver
from .db import Database, DatabaseError, record_from_row
from .errors import CheckInError, PayloadMalformed, PersistenceError
from .feedback import CheckInOutcome, FeedbackNotifier
from .guard import UniquenessGuard, day_bounds
from .identity import IdentityResolver
from .models import CandidateScan, Person, ResolvedContext, VerificationMethod
from .roster import Roster
from .source import DecodeSource, QueueDecodeSource, ScanIngestor
from .suppression import SuppressionCache

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class ScannerStats:
    acknowledged: int = 0
    processed: int = 0
    last_payload: Optional[str] = None
    last_processed_at: Optional[datetime] = None
    in_flight: Dict[str, int] = field(default_factory=dict)


class CheckInService:
    """Wires the check-in pipeline for one operator station.

    Scanned codes travel source → coalescer → suppression cache → identity →
    context → uniqueness guard → committer; manual selections join at the
    context step. Every call ends with exactly one published outcome.
    """

    def __init__(
        self,
        settings: Settings,
        database: Database,
        *,
        notifier: Optional[FeedbackNotifier] = None,
        clock: Callable[[], datetime] = utc_now,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self.database = database
        self.zone = resolve_zone(settings.timezone)
        self._clock = clock
        self._monotonic = monotonic

        self.roster = Roster()
        self.suppression = SuppressionCache(settings.suppression_ttl, clock=monotonic)
        self.coalescer = ScanCoalescer(settings.scan_min_interval, settings.scan_debounce)
        self.identity = IdentityResolver(
            database,
            prefix=settings.qr_prefix,
            search_limit=settings.search_limit,
            search_min_length=settings.search_min_length,
        )
        self.context = ContextResolver(
            database,
            today=self.today,
            class_id=settings.class_id,
            event_id=settings.event_id,
            required_roles=settings.context_required_roles,
        )
        self.guard = UniquenessGuard(database, self.roster, self.zone)
        self.committer = AttendanceCommitter(
            database,
            self.roster,
            self.suppression,
            zone=self.zone,
            clock=clock,
            station_id=settings.station_id,
        )
        self.notifier = notifier or FeedbackNotifier(self.zone)
        self.stats = ScannerStats()
        self._locks: Dict[str, asyncio.Lock] = {}
        self._ingestor: Optional[ScanIngestor] = None
        self._source: Optional[QueueDecodeSource] = None
        self._roster_day: Optional[date] = None

    def now(self) -> datetime:
        return self._clock()

    def today(self) -> date:
        return self.now().astimezone(self.zone).date()

    # region Scan path
    def start_scanner(self, source: Optional[DecodeSource] = None) -> ScanIngestor:
        """Begin consuming a decode source; must be called inside a running loop."""

        if self._ingestor is not None and self._ingestor.running:
            return self._ingestor
        if source is None:
            self._source = QueueDecodeSource(clock=self._monotonic)
            source = self._source
        else:
            self._source = source if isinstance(source, QueueDecodeSource) else None
        self.coalescer.reset()
        self._ingestor = ScanIngestor(
            source,
            self.coalescer,
            self.process_candidate,
            clock=self._monotonic,
            on_ack=self._acknowledge,
        )
        self._ingestor.start()
        logger.info("Scanner started")
        return self._ingestor

    def stop_scanner(self) -> None:
        if self._ingestor is not None:
            self._ingestor.stop()
        self._source = None

    @property
    def scanner_running(self) -> bool:
        return self._ingestor is not None and self._ingestor.running

    @property
    def ingestor(self) -> Optional[ScanIngestor]:
        return self._ingestor

    def push_scan(self, text: str) -> None:
        """Feed one decoded payload into the running scanner."""

        if self._source is None or not self.scanner_running:
            raise RuntimeError("scanner is not running")
        self._source.push(text)

    def _acknowledge(self, candidate: CandidateScan) -> None:
        self.stats.acknowledged += 1

    async def process_candidate(self, candidate: CandidateScan) -> CheckInOutcome:
        """Run one candidate scan to a terminal outcome.

        Candidates carrying the same payload run one after the other, so the
        second sees the first one's commit in the guard instead of racing it.
        """

        payload = candidate.payload
        lock = self._locks.setdefault(payload, asyncio.Lock())
        self.stats.in_flight[payload] = self.stats.in_flight.get(payload, 0) + 1
        try:
            async with lock:
                return await self._process_payload(payload)
        finally:
            remaining = self.stats.in_flight[payload] - 1
            if remaining:
                self.stats.in_flight[payload] = remaining
            else:
                del self.stats.in_flight[payload]
                self._locks.pop(payload, None)

    async def _process_payload(self, payload: str) -> CheckInOutcome:
        if self.suppression.is_suppressed(payload):
            return await self.notifier.publish(self.notifier.suppressed(payload))

        self.stats.processed += 1
        self.stats.last_payload = payload
        self.stats.last_processed_at = self.now()
        try:
            person = await self.identity.resolve_payload(payload)
        except CheckInError as exc:
            return await self.notifier.publish(self.notifier.failed(exc, payload=payload))
        return await self.check_in_person(
            person,
            VerificationMethod.SCANNED_CODE,
            verification={"payload": payload},
            payload=payload,
        )

    async def resolve_scan(self, text: str) -> CheckInOutcome:
        """Run one payload the reader already debounced, bypassing the coalescer."""

        payload = text.strip()
        if not payload:
            return await self.notifier.publish(
                self.notifier.failed(PayloadMalformed(text, "empty payload"), payload=text)
            )
        return await self.process_candidate(CandidateScan(payload=payload, captured_at=self._monotonic()))

    def clear_scan_history(self) -> int:
        removed = self.suppression.clear()
        self.stats.processed = 0
        self.stats.last_payload = None
        self.stats.last_processed_at = None
        logger.info("Cleared %s suppressed code(s)", removed)
        return removed

    # endregion

    # region Manual path
    async def search_people(self, term: str) -> List[Person]:
        return await self.identity.search(term)

    async def check_in_manual(self, person_id: str, note: Optional[str] = None) -> CheckInOutcome:
        try:
            person = await self.identity.get_active_person(person_id)
        except CheckInError as exc:
            return await self.notifier.publish(self.notifier.failed(exc))
        return await self.check_in_person(person, VerificationMethod.MANUAL, note=note)

    # endregion

    async def check_in_person(
        self,
        person: Person,
        method: VerificationMethod,
        *,
        verification: Optional[Dict[str, Any]] = None,
        payload: Optional[str] = None,
        note: Optional[str] = None,
    ) -> CheckInOutcome:
        """Context resolution, uniqueness guard and commit for a known person.

        A retry after a retryable failure goes through here again, so the guard
        always runs before another insert is attempted.
        """

        self._roll_roster()
        resolved: Optional[ResolvedContext] = None
        try:
            resolved = await self.context.resolve(person)
            await self.guard.check(person, resolved.context, self.now())
            record = await self.committer.commit(
                person,
                resolved,
                method,
                verification=verification,
                payload=payload,
                note=note,
            )
        except CheckInError as exc:
            outcome = self.notifier.failed(
                exc,
                person=person,
                payload=payload,
                context_label=resolved.label if resolved else None,
            )
            return await self.notifier.publish(outcome)
        return await self.notifier.publish(self.notifier.committed(record, person, payload))

    # region Roster
    async def load_roster(self, limit: int = 500) -> None:
        fixed = self.context.fixed
        try:
            rows = await asyncio.to_thread(
                self.database.get_attendance_records,
                class_id=fixed.class_id,
                event_id=fixed.event_id,
                limit=limit,
            )
        except DatabaseError as exc:
            raise PersistenceError("roster load", str(exc)) from exc
        self.roster.load([record_from_row(row) for row in rows])
        self._roster_day = self.today()

    def roster_stats(self) -> Dict[str, int]:
        self._roll_roster()
        start, end = day_bounds(self.now(), self.zone)
        return self.roster.stats(start, end)

    def _roll_roster(self) -> None:
        """Forget records from earlier days once the reference day changes."""
        today = self.today()
        if self._roster_day == today:
            return
        if self._roster_day is not None:
            start, _ = day_bounds(self.now(), self.zone)
            removed = self.roster.prune(start)
            logger.info("Day changed to %s; dropped %s roster record(s)", today.isoformat(), removed)
        self._roster_day = today

    # endregion


__all__ = ["CheckInService", "ScannerStats", "utc_now"]
