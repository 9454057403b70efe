"""Decode sources and the loop that feeds them through the coalescer."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from typing import Any, Awaitable, Callable, Optional, Protocol, Set

from .coalescer import ScanCoalescer
from .models import CandidateScan, ScanPayload

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
CandidateHandler = Callable[[CandidateScan], Awaitable[Any]]
AckHandler = Callable[[CandidateScan], None]

_CLOSED = object()
_EXHAUSTED = object()


class DecodeSource(Protocol):
    """Ordered, possibly infinite stream of decoded payloads."""

    def __aiter__(self) -> AsyncIterator[ScanPayload]: ...

    def close(self) -> None: ...


class QueueDecodeSource:
    """Push-style source fed by a device callback or the HTTP API."""

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self._clock = clock or time.monotonic
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self.closed = False

    def push(self, text: str, captured_at: Optional[float] = None) -> None:
        if self.closed:
            raise RuntimeError("decode source is closed")
        stamp = self._clock() if captured_at is None else captured_at
        self._queue.put_nowait(ScanPayload(text=text, captured_at=stamp))

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._queue.put_nowait(_CLOSED)

    async def __aiter__(self) -> AsyncIterator[ScanPayload]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item


async def _next(iterator: AsyncIterator[ScanPayload]) -> Any:
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return _EXHAUSTED


class ScanIngestor:
    """Consume a decode source, coalesce it and dispatch candidate scans.

    Candidates are handed to ``handler`` in capture order, each in its own
    task, so a slow lookup for one code never holds back the next one.
    ``stop`` is synchronous: the coalescer is reset and the source closed
    before it returns, while handlers already running finish on their own.
    """

    def __init__(
        self,
        source: DecodeSource,
        coalescer: ScanCoalescer,
        handler: CandidateHandler,
        *,
        clock: Optional[Clock] = None,
        on_ack: Optional[AckHandler] = None,
    ) -> None:
        self.source = source
        self.coalescer = coalescer
        self.handler = handler
        self._clock = clock or time.monotonic
        self._on_ack = on_ack
        self._tasks: Set[asyncio.Task[Any]] = set()
        self._runner: Optional[asyncio.Task[None]] = None
        self.stopped = False

    @property
    def running(self) -> bool:
        return self._runner is not None and not self._runner.done() and not self.stopped

    def start(self) -> asyncio.Task[None]:
        if self._runner is None:
            self._runner = asyncio.create_task(self.run())
        return self._runner

    async def run(self) -> None:
        iterator = self.source.__aiter__()
        next_item: asyncio.Task[Any] = asyncio.create_task(_next(iterator))
        exhausted = False
        try:
            while not self.stopped:
                due = self.coalescer.next_due()
                timeout = None if due is None else max(0.0, due - self._clock())
                done, _ = await asyncio.wait({next_item}, timeout=timeout)
                if next_item in done:
                    payload = next_item.result()
                    if payload is _EXHAUSTED:
                        exhausted = True
                        break
                    self._ingest(payload)
                    next_item = asyncio.create_task(_next(iterator))
                self._dispatch(self.coalescer.release(self._clock()))
        finally:
            if not next_item.done():
                next_item.cancel()

        if exhausted and not self.stopped:
            # End of stream: nothing can supersede what is still pending.
            self._dispatch(self.coalescer.release(float("inf")))
        logger.info("Scan ingestion finished")

    def stop(self) -> None:
        if self.stopped:
            return
        self.stopped = True
        self.coalescer.reset()
        self.source.close()
        if self._runner is not None and not self._runner.done():
            self._runner.cancel()
        logger.info("Scanner stopped; %s check-in(s) still in flight", len(self._tasks))

    async def drain(self) -> None:
        """Wait for the runner and every dispatched handler to finish."""
        if self._runner is not None:
            try:
                await self._runner
            except asyncio.CancelledError:
                pass
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _ingest(self, payload: ScanPayload) -> None:
        ack = self.coalescer.accept(payload.text, payload.captured_at)
        if ack is None:
            return
        logger.debug("Acknowledged %s", ack.payload)
        if self._on_ack is not None:
            self._on_ack(ack)

    def _dispatch(self, candidates: list[CandidateScan]) -> None:
        for candidate in candidates:
            task = asyncio.create_task(self.handler(candidate))
            self._tasks.add(task)
            task.add_done_callback(self._finished)

    def _finished(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Candidate handler crashed: %s", exc)


__all__ = ["DecodeSource", "QueueDecodeSource", "ScanIngestor"]
