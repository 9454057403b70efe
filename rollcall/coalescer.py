"""Rate limiting and trailing debounce for raw decode events."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from .models import CandidateScan

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _Pending:
    candidate: CandidateScan
    due_at: float


class ScanCoalescer:
    """Turn a noisy decode stream into distinct candidate scans.

    Two gates apply, in order:

    * any decode arriving less than ``min_interval`` seconds after the last
      accepted decode is dropped, whatever its payload;
    * accepted decodes wait ``debounce`` seconds keyed by payload. Re-emitting
      the same payload inside that window replaces the pending candidate, so
      only the last occurrence is released, once.

    Time is always passed in by the caller, which keeps the component
    deterministic under test.
    """

    def __init__(self, min_interval: float = 0.8, debounce: float = 0.5) -> None:
        self.min_interval = min_interval
        self.debounce = debounce
        self.last_accepted_at: Optional[float] = None
        self._pending: Dict[str, _Pending] = {}
        self.dropped = 0

    def accept(self, payload: str, now: float) -> Optional[CandidateScan]:
        """Register a raw decode.

        Returns the pending candidate as an acknowledgment, or ``None`` when the
        decode was dropped by the rate limit. The candidate only proceeds once
        :meth:`release` reports it.
        """
        text = payload.strip()
        if not text:
            return None
        if self.last_accepted_at is not None and now - self.last_accepted_at < self.min_interval:
            self.dropped += 1
            return None

        self.last_accepted_at = now
        candidate = CandidateScan(payload=text, captured_at=now)
        # Replacing keeps only the last occurrence inside the window.
        self._pending.pop(text, None)
        self._pending[text] = _Pending(candidate=candidate, due_at=now + self.debounce)
        return candidate

    def release(self, now: float) -> List[CandidateScan]:
        """Candidates whose debounce window has elapsed, in capture order."""
        ready = [p for p in self._pending.values() if p.due_at <= now]
        ready.sort(key=lambda p: p.candidate.captured_at)
        for item in ready:
            del self._pending[item.candidate.payload]
        return [item.candidate for item in ready]

    def next_due(self) -> Optional[float]:
        if not self._pending:
            return None
        return min(p.due_at for p in self._pending.values())

    @property
    def pending(self) -> int:
        return len(self._pending)

    def reset(self) -> None:
        if self._pending:
            logger.debug("Discarding %s pending candidate(s)", len(self._pending))
        self._pending.clear()
        self.last_accepted_at = None


__all__ = ["ScanCoalescer"]
