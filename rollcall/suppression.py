"""In-memory TTL set of recently accepted scan payloads."""

from __future__ import annotations

import logging
import time
from typing import Callable, Dict, List, Optional

from .models import SuppressionEntry

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class SuppressionCache:
    """Advisory short-circuit for payloads that were committed moments ago.

    Entries are owned by a single running client; they are lost on restart and
    never cover the manual lookup path, so the uniqueness guard remains the
    authority on duplicates. Expired entries are evicted lazily the first time
    they are observed, and an explicit ``clear`` removes live ones.
    """

    def __init__(self, ttl: float = 30.0, clock: Optional[Clock] = None) -> None:
        self.ttl = ttl
        self._clock = clock or time.monotonic
        self._entries: Dict[str, SuppressionEntry] = {}

    def __len__(self) -> int:
        self.purge()
        return len(self._entries)

    def __contains__(self, payload: str) -> bool:
        return self.is_suppressed(payload)

    def is_suppressed(self, payload: str) -> bool:
        entry = self._entries.get(payload)
        if entry is None:
            return False
        if self._clock() - entry.accepted_at < self.ttl:
            return True
        self._evict(payload)
        return False

    def mark_accepted(self, payload: str) -> SuppressionEntry:
        entry = SuppressionEntry(payload=payload, accepted_at=self._clock())
        self._entries[payload] = entry
        return entry

    def clear(self, payload: Optional[str] = None) -> int:
        """Drop one payload, or every entry when no payload is given."""
        if payload is not None:
            return 1 if self._entries.pop(payload, None) is not None else 0
        removed = len(self._entries)
        self._entries.clear()
        return removed

    def purge(self) -> int:
        now = self._clock()
        expired = [p for p, e in self._entries.items() if now - e.accepted_at >= self.ttl]
        for payload in expired:
            self._evict(payload)
        return len(expired)

    def entries(self) -> List[SuppressionEntry]:
        self.purge()
        return sorted(self._entries.values(), key=lambda e: e.accepted_at)

    def _evict(self, payload: str) -> None:
        if self._entries.pop(payload, None) is not None:
            logger.debug("Suppression expired for %s", payload)


__all__ = ["SuppressionCache"]
