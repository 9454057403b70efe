"""MCP server exposing rollcall check-in tools."""

from __future__ import annotations

import asyncio
from typing import Optional

from mcp.server.fastmcp import FastMCP

from .config import load_settings
from .db import Database
from .service import CheckInService

mcp = FastMCP("rollcall")

_settings = load_settings()
_database = Database(_settings.database_path)
_service = CheckInService(_settings, _database)
_load_lock = asyncio.Lock()
_roster_loaded = False


async def _ensure_loaded() -> None:
    global _roster_loaded
    async with _load_lock:
        await _service.context.load_today()
        if not _roster_loaded:
            await _service.load_roster()
            _roster_loaded = True


@mcp.tool()
async def search_people(term: str) -> dict:
    """Search active people by name, national id or badge number."""

    people = await _service.search_people(term)
    return {
        "term": term,
        "people": [
            {"id": p.id, "full_name": p.full_name, "badge_number": p.badge_number, "role": p.role}
            for p in people
        ],
    }


@mcp.tool()
async def check_in_person(person_id: str, note: Optional[str] = None) -> dict:
    """Record a manual check-in for a person in the current context."""

    await _ensure_loaded()
    outcome = await _service.check_in_manual(person_id, note=note)
    return outcome.to_dict()


@mcp.tool()
async def check_in_code(payload: str) -> dict:
    """Check in the person identified by a decoded badge or QR payload."""

    await _ensure_loaded()
    outcome = await _service.resolve_scan(payload)
    return outcome.to_dict()


@mcp.tool()
async def get_today_context() -> dict:
    """Return today's sessions and events and the current selection."""

    options = await _service.context.load_today()
    session = _service.context.selected_session
    event = _service.context.selected_event
    return {
        "date": options.day.isoformat(),
        "sessions": [
            {"id": s.id, "class_name": s.class_name, "subject_name": s.subject_name}
            for s in options.sessions
        ],
        "events": [{"id": e.id, "title": e.title} for e in options.events],
        "selected_session_id": session.id if session else None,
        "selected_event_id": event.id if event else None,
    }


@mcp.tool()
async def select_context(session_id: Optional[str] = None, event_id: Optional[str] = None) -> dict:
    """Select one of today's sessions or events for following check-ins."""

    if bool(session_id) == bool(event_id):
        raise ValueError("provide exactly one of session_id or event_id")
    if session_id:
        session = await _service.context.select_session(session_id)
        return {"kind": "class_session", "id": session.id, "label": session.subject_name}
    event = await _service.context.select_event(event_id or "")
    return {"kind": "event", "id": event.id, "label": event.title}


@mcp.tool()
async def get_roster() -> dict:
    """Return loaded attendance records and today's counts."""

    await _ensure_loaded()
    return {
        "stats": _service.roster_stats(),
        "records": [record.to_dict() for record in _service.roster.records],
    }


__all__ = [
    "mcp",
    "search_people",
    "check_in_person",
    "check_in_code",
    "get_today_context",
    "select_context",
    "get_roster",
]
