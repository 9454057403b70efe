"""SQLite persistence layer for rollcall."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from .models import AttendanceRecord, Person, VerificationMethod

UTC = timezone.utc

Connection = sqlite3.Connection
Row = sqlite3.Row
IntegrityError = sqlite3.IntegrityError
DatabaseError = sqlite3.Error


class Database:
    """Lightweight wrapper around SQLite operations."""

    def __init__(self, path: Path, timeout: float = 5.0) -> None:
        self._path = path
        self._timeout = timeout
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize()

    @property
    def path(self) -> Path:
        return self._path

    @contextmanager
    def connect(self) -> Iterator[Connection]:
        conn = sqlite3.connect(self._path, timeout=self._timeout)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def _initialize(self) -> None:
        with self.connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS persons (
                    id TEXT PRIMARY KEY,
                    full_name TEXT NOT NULL,
                    national_id TEXT,
                    qr_code TEXT,
                    badge_number TEXT,
                    role TEXT NOT NULL DEFAULT 'member',
                    status TEXT NOT NULL DEFAULT 'active'
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS classes (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    professor_name TEXT
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS subjects (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    code TEXT
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS class_schedules (
                    id TEXT PRIMARY KEY,
                    class_id TEXT NOT NULL,
                    subject_id TEXT NOT NULL,
                    day_of_week INTEGER NOT NULL,
                    FOREIGN KEY(class_id) REFERENCES classes(id),
                    FOREIGN KEY(subject_id) REFERENCES subjects(id)
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS events (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    description TEXT,
                    start_date TEXT NOT NULL,
                    end_date TEXT
                )
                """
            )
            # context_key and day make the uniqueness key enforceable by SQLite.
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS attendance_records (
                    id TEXT PRIMARY KEY,
                    person_id TEXT NOT NULL,
                    class_id TEXT,
                    event_id TEXT,
                    context_key TEXT NOT NULL,
                    day TEXT NOT NULL,
                    checked_in_at TEXT NOT NULL,
                    verification_method TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'present',
                    attendance_type TEXT NOT NULL DEFAULT 'presence',
                    notes TEXT,
                    context_label TEXT,
                    verification_data TEXT,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE(person_id, context_key, day),
                    FOREIGN KEY(person_id) REFERENCES persons(id)
                )
                """
            )
            cursor.execute(
                """
                CREATE INDEX IF NOT EXISTS attendance_person_time
                ON attendance_records (person_id, checked_in_at)
                """
            )
            conn.commit()

    # region Persons
    def upsert_person(self, person: Dict[str, Any]) -> None:
        with self.connect() as conn:
            conn.execute(
                """
                INSERT INTO persons (id, full_name, national_id, qr_code, badge_number, role, status)
                VALUES (:id, :full_name, :national_id, :qr_code, :badge_number, :role, :status)
                ON CONFLICT(id) DO UPDATE SET
                    full_name=excluded.full_name,
                    national_id=excluded.national_id,
                    qr_code=excluded.qr_code,
                    badge_number=excluded.badge_number,
                    role=excluded.role,
                    status=excluded.status
                """,
                {
                    "national_id": "",
                    "qr_code": None,
                    "badge_number": None,
                    "role": "member",
                    "status": "active",
                    **person,
                },
            )
            conn.commit()

    def get_person(self, person_id: str) -> Optional[Row]:
        with self.connect() as conn:
            cursor = conn.execute("SELECT * FROM persons WHERE id = ?", (person_id,))
            return cursor.fetchone()

    def find_active_by_code(self, token: str) -> List[Row]:
        with self.connect() as conn:
            cursor = conn.execute(
                """
                SELECT * FROM persons
                WHERE (badge_number = :token OR qr_code = :token)
                  AND status = 'active'
                ORDER BY full_name
                LIMIT 2
                """,
                {"token": token},
            )
            return cursor.fetchall()

    def search_active_people(self, term: str, limit: int) -> List[Row]:
        pattern = f"%{term}%"
        with self.connect() as conn:
            cursor = conn.execute(
                """
                SELECT *,
                       CASE
                           WHEN lower(full_name) = lower(:term) THEN 0
                           WHEN id = :term OR national_id = :term
                                OR badge_number = :term OR qr_code = :term THEN 0
                           WHEN lower(full_name) LIKE lower(:prefix) THEN 1
                           ELSE 2
                       END AS rank
                FROM persons
                WHERE status = 'active'
                  AND (
                      full_name LIKE :pattern
                      OR national_id LIKE :pattern
                      OR badge_number LIKE :pattern
                      OR qr_code = :term
                      OR id = :term
                  )
                ORDER BY rank, full_name
                LIMIT :limit
                """,
                {"term": term, "pattern": pattern, "prefix": f"{term}%", "limit": limit},
            )
            return cursor.fetchall()

    # endregion

    # region Schedule and events
    def upsert_class(self, class_id: str, name: str, professor_name: str | None = None) -> None:
        with self.connect() as conn:
            conn.execute(
                """
                INSERT INTO classes (id, name, professor_name) VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name=excluded.name,
                    professor_name=excluded.professor_name
                """,
                (class_id, name, professor_name),
            )
            conn.commit()

    def upsert_subject(self, subject_id: str, name: str, code: str | None = None) -> None:
        with self.connect() as conn:
            conn.execute(
                """
                INSERT INTO subjects (id, name, code) VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET name=excluded.name, code=excluded.code
                """,
                (subject_id, name, code),
            )
            conn.commit()

    def add_schedule(self, schedule_id: str, class_id: str, subject_id: str, day_of_week: int) -> None:
        """Schedule a class/subject pair on a weekday (0 = Sunday)."""
        with self.connect() as conn:
            conn.execute(
                """
                INSERT INTO class_schedules (id, class_id, subject_id, day_of_week)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    class_id=excluded.class_id,
                    subject_id=excluded.subject_id,
                    day_of_week=excluded.day_of_week
                """,
                (schedule_id, class_id, subject_id, day_of_week),
            )
            conn.commit()

    def upsert_event(
        self,
        event_id: str,
        title: str,
        start_date: date,
        end_date: date | None = None,
        description: str | None = None,
    ) -> None:
        with self.connect() as conn:
            conn.execute(
                """
                INSERT INTO events (id, title, description, start_date, end_date)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    title=excluded.title,
                    description=excluded.description,
                    start_date=excluded.start_date,
                    end_date=excluded.end_date
                """,
                (
                    event_id,
                    title,
                    description,
                    start_date.isoformat(),
                    end_date.isoformat() if end_date else None,
                ),
            )
            conn.commit()

    def get_sessions_for_weekday(self, day_of_week: int) -> List[Row]:
        with self.connect() as conn:
            cursor = conn.execute(
                """
                SELECT cs.id, cs.class_id, c.name AS class_name,
                       c.professor_name, s.id AS subject_id,
                       s.name AS subject_name, s.code AS subject_code
                FROM class_schedules cs
                JOIN classes c ON c.id = cs.class_id
                JOIN subjects s ON s.id = cs.subject_id
                WHERE cs.day_of_week = ?
                ORDER BY c.name, s.name
                """,
                (day_of_week,),
            )
            return cursor.fetchall()

    def get_events_on(self, day: date) -> List[Row]:
        with self.connect() as conn:
            cursor = conn.execute(
                """
                SELECT id, title, description FROM events
                WHERE start_date <= :day AND COALESCE(end_date, start_date) >= :day
                ORDER BY start_date, title
                """,
                {"day": day.isoformat()},
            )
            return cursor.fetchall()

    def get_class(self, class_id: str) -> Optional[Row]:
        with self.connect() as conn:
            cursor = conn.execute("SELECT * FROM classes WHERE id = ?", (class_id,))
            return cursor.fetchone()

    def get_event(self, event_id: str) -> Optional[Row]:
        with self.connect() as conn:
            cursor = conn.execute("SELECT * FROM events WHERE id = ?", (event_id,))
            return cursor.fetchone()

    # endregion

    # region Attendance
    def find_attendance(
        self,
        person_id: str,
        start: datetime,
        end: datetime,
        *,
        class_id: str | None = None,
        event_id: str | None = None,
    ) -> List[Row]:
        """Records for a person in [start, end), narrowed to a class or event when given."""
        query = """
            SELECT id, checked_in_at, class_id, event_id, verification_method
            FROM attendance_records
            WHERE person_id = ? AND checked_in_at >= ? AND checked_in_at < ?
        """
        params: List[Any] = [person_id, _timestamp(start), _timestamp(end)]
        if class_id:
            query += " AND class_id = ?"
            params.append(class_id)
        if event_id:
            query += " AND event_id = ?"
            params.append(event_id)
        query += " ORDER BY checked_in_at ASC"
        with self.connect() as conn:
            cursor = conn.execute(query, params)
            return cursor.fetchall()

    def find_attendance_by_key(self, person_id: str, context_key: str, day: str) -> Optional[Row]:
        with self.connect() as conn:
            cursor = conn.execute(
                """
                SELECT id, checked_in_at FROM attendance_records
                WHERE person_id = ? AND context_key = ? AND day = ?
                """,
                (person_id, context_key, day),
            )
            return cursor.fetchone()

    def insert_attendance(self, record: Dict[str, Any]) -> None:
        """Plain insert; the UNIQUE constraint raises IntegrityError on a duplicate key."""
        with self.connect() as conn:
            conn.execute(
                """
                INSERT INTO attendance_records (
                    id, person_id, class_id, event_id, context_key, day,
                    checked_in_at, verification_method, notes, context_label,
                    verification_data
                )
                VALUES (
                    :id, :person_id, :class_id, :event_id, :context_key, :day,
                    :checked_in_at, :verification_method, :notes, :context_label,
                    :verification_data
                )
                """,
                {
                    **record,
                    "checked_in_at": _timestamp(record["checked_in_at"]),
                    "verification_data": json.dumps(record.get("verification_data") or {}),
                },
            )
            conn.commit()

    def get_attendance_records(
        self,
        *,
        class_id: str | None = None,
        event_id: str | None = None,
        limit: int = 500,
    ) -> List[Row]:
        query = """
            SELECT a.*, p.full_name AS person_name
            FROM attendance_records a
            LEFT JOIN persons p ON p.id = a.person_id
            WHERE 1 = 1
        """
        params: List[Any] = []
        if class_id:
            query += " AND a.class_id = ?"
            params.append(class_id)
        if event_id:
            query += " AND a.event_id = ?"
            params.append(event_id)
        query += " ORDER BY a.checked_in_at DESC LIMIT ?"
        params.append(limit)
        with self.connect() as conn:
            cursor = conn.execute(query, params)
            return cursor.fetchall()

    def count_attendance(self, person_id: str | None = None) -> int:
        with self.connect() as conn:
            if person_id:
                cursor = conn.execute(
                    "SELECT COUNT(*) AS total FROM attendance_records WHERE person_id = ?",
                    (person_id,),
                )
            else:
                cursor = conn.execute("SELECT COUNT(*) AS total FROM attendance_records")
            return int(cursor.fetchone()["total"])

    # endregion


def _timestamp(value: datetime) -> str:
    """UTC ISO timestamp with fixed width so text comparison orders correctly."""
    if value.tzinfo is None:
        raise ValueError("attendance timestamps must be timezone-aware")
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def parse_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value)


def person_from_row(row: Row) -> Person:
    return Person(
        id=row["id"],
        full_name=row["full_name"],
        national_id=row["national_id"] or "",
        qr_code=row["qr_code"],
        badge_number=row["badge_number"],
        role=row["role"],
        status=row["status"],
    )


def record_from_row(row: Row) -> AttendanceRecord:
    raw = row["verification_data"]
    return AttendanceRecord(
        id=row["id"],
        person_id=row["person_id"],
        class_id=row["class_id"],
        event_id=row["event_id"],
        checked_in_at=parse_timestamp(row["checked_in_at"]),
        verification_method=VerificationMethod(row["verification_method"]),
        notes=row["notes"] or "",
        context_label=row["context_label"] or "",
        person_name=row["person_name"] or "",
        verification_data=json.loads(raw) if raw else {},
    )


__all__ = [
    "Database",
    "DatabaseError",
    "IntegrityError",
    "parse_timestamp",
    "person_from_row",
    "record_from_row",
]
