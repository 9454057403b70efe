"""Configuration helpers for rollcall."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timezone, tzinfo
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo

from dotenv import load_dotenv


@dataclass(slots=True)
class Settings:
    """Runtime configuration values loaded from environment variables."""

    api_key: str
    database_path: Path
    timezone: str = "UTC"
    qr_prefix: str = "ROLLCALL_USER_"
    scan_min_interval: float = 0.8
    scan_debounce: float = 0.5
    suppression_ttl: float = 30.0
    search_limit: int = 20
    search_min_length: int = 2
    context_required_roles: tuple[str, ...] = field(default_factory=lambda: ("student",))
    class_id: Optional[str] = None
    event_id: Optional[str] = None
    webhook_url: Optional[str] = None
    station_id: Optional[str] = None


def resolve_zone(name: str) -> tzinfo:
    """Reference zone for calendar days; plain UTC needs no tz database."""
    if name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def _milliseconds(name: str, default: int) -> float:
    return int(os.getenv(name, str(default))) / 1000.0


def _roles(value: str | None) -> tuple[str, ...]:
    if value is None:
        return ("student",)
    return tuple(item.strip().lower() for item in value.split(",") if item.strip())


def load_settings(env_file: str | None = None) -> Settings:
    """Load settings from the environment, optionally from a specific file."""

    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()

    api_key = os.getenv("ROLLCALL_API_KEY")
    if not api_key:
        raise RuntimeError("ROLLCALL_API_KEY must be configured")

    class_id = os.getenv("ROLLCALL_CLASS_ID") or None
    event_id = os.getenv("ROLLCALL_EVENT_ID") or None
    if class_id and event_id:
        raise RuntimeError("ROLLCALL_CLASS_ID and ROLLCALL_EVENT_ID are mutually exclusive")

    return Settings(
        api_key=api_key,
        database_path=Path(os.getenv("DATABASE_PATH", "rollcall.db")).expanduser(),
        timezone=os.getenv("ROLLCALL_TIMEZONE", "UTC"),
        qr_prefix=os.getenv("ROLLCALL_QR_PREFIX", "ROLLCALL_USER_"),
        scan_min_interval=_milliseconds("SCAN_MIN_INTERVAL_MS", 800),
        scan_debounce=_milliseconds("SCAN_DEBOUNCE_MS", 500),
        suppression_ttl=float(os.getenv("SUPPRESSION_TTL_SECONDS", "30")),
        search_limit=int(os.getenv("SEARCH_LIMIT", "20")),
        context_required_roles=_roles(os.getenv("CONTEXT_REQUIRED_ROLES")),
        class_id=class_id,
        event_id=event_id,
        webhook_url=os.getenv("ROLLCALL_WEBHOOK_URL") or None,
        station_id=os.getenv("ROLLCALL_STATION_ID") or None,
    )


__all__ = ["Settings", "load_settings", "resolve_zone"]
