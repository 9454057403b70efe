from datetime import date, datetime, timedelta, timezone

import pytest

from rollcall.config import Settings
from rollcall.db import Database
from rollcall.service import CheckInService

# Monday; class schedules use 0 = Sunday, so this is weekday 1.
TODAY = date(2026, 10, 19)
NOON = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = NOON) -> None:
        self.value = start

    def __call__(self) -> datetime:
        return self.value

    def advance(self, **kwargs) -> None:
        self.value += timedelta(**kwargs)


class FakeMonotonic:
    def __init__(self, start: float = 1000.0) -> None:
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


def seed(database: Database) -> None:
    database.upsert_person(
        {
            "id": "p-ana",
            "full_name": "Ana Souza",
            "national_id": "111.222.333-44",
            "qr_code": "QR-ANA",
            "badge_number": "B-100",
            "role": "student",
        }
    )
    database.upsert_person(
        {
            "id": "p-bruno",
            "full_name": "Bruno Lima",
            "national_id": "555.666.777-88",
            "badge_number": "B-200",
            "role": "member",
        }
    )
    database.upsert_person(
        {
            "id": "p-carla",
            "full_name": "Carla Dias",
            "badge_number": "B-300",
            "role": "member",
            "status": "inactive",
        }
    )
    database.upsert_class("c-1", "Turma A", "Prof. Marcos")
    database.upsert_subject("s-1", "Teologia Sistematica", "TS1")
    database.add_schedule("sch-1", "c-1", "s-1", 1)
    database.upsert_subject("s-2", "Homiletica", "HM1")
    database.add_schedule("sch-2", "c-1", "s-2", 3)


@pytest.fixture()
def settings(tmp_path):
    return Settings(api_key="test-key", database_path=tmp_path / "rollcall.db")


@pytest.fixture()
def database(settings):
    db = Database(settings.database_path)
    seed(db)
    return db


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def monotonic():
    return FakeMonotonic()


@pytest.fixture()
def service(settings, database, clock, monotonic):
    return CheckInService(settings, database, clock=clock, monotonic=monotonic)
