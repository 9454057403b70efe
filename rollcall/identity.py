"""Resolve scanned payloads and search terms to active people."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, List

from .codes import INVALID, STRUCTURED, is_plausible_token, parse_payload
from .db import Database, DatabaseError, person_from_row
from .errors import PayloadMalformed, PersistenceError, PersonInactive, PersonNotFound
from .models import Person

logger = logging.getLogger(__name__)


class IdentityResolver:
    def __init__(
        self,
        database: Database,
        *,
        prefix: str,
        search_limit: int = 20,
        search_min_length: int = 2,
    ) -> None:
        self.database = database
        self.prefix = prefix
        self.search_limit = search_limit
        self.search_min_length = search_min_length

    async def resolve_payload(self, payload: str) -> Person:
        """Map a decoded payload to exactly one active person."""

        parsed = parse_payload(payload, self.prefix)
        if parsed.kind == INVALID:
            raise PayloadMalformed(payload, parsed.reason)
        if parsed.kind == STRUCTURED:
            return await self.get_active_person(parsed.value)

        rows = await self._query(self.database.find_active_by_code, parsed.value)
        if len(rows) == 1:
            return person_from_row(rows[0])
        if len(rows) > 1:
            logger.warning("Code %s matches more than one active person", parsed.value)
            raise PersonNotFound(parsed.value)
        if not is_plausible_token(parsed.value):
            raise PayloadMalformed(payload, "not a known code format")
        raise PersonNotFound(parsed.value)

    async def get_active_person(self, person_id: str) -> Person:
        row = await self._query(self.database.get_person, person_id)
        if row is None:
            raise PersonNotFound(person_id)
        person = person_from_row(row)
        if not person.is_active:
            raise PersonInactive(person_id, person.full_name)
        return person

    async def search(self, term: str) -> List[Person]:
        """Up to ``search_limit`` active people matching a free-text term."""

        cleaned = term.strip()
        if len(cleaned) < self.search_min_length:
            return []
        rows = await self._query(self.database.search_active_people, cleaned, self.search_limit)
        return [person_from_row(row) for row in rows]

    async def _query(self, method: Callable[..., Any], *args: Any) -> Any:
        try:
            return await asyncio.to_thread(method, *args)
        except DatabaseError as exc:
            raise PersistenceError("identity lookup", str(exc)) from exc


__all__ = ["IdentityResolver"]
