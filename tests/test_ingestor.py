import asyncio
import sqlite3

import pytest

from rollcall.coalescer import ScanCoalescer
from rollcall.feedback import COMMITTED, PERSISTENCE_ERROR
from rollcall.source import QueueDecodeSource, ScanIngestor


def frozen():
    return 0.0


def test_end_of_stream_releases_pending_in_capture_order():
    handled = []
    acks = []

    async def handler(candidate):
        handled.append(candidate.payload)

    async def scenario():
        source = QueueDecodeSource(clock=frozen)
        source.push("B", 0.0)
        source.push("B", 0.1)
        source.push("A", 1.0)
        source.push("B", 2.0)
        source.close()
        ingestor = ScanIngestor(
            source, ScanCoalescer(0.8, 0.5), handler, clock=frozen, on_ack=acks.append
        )
        ingestor.start()
        await ingestor.drain()

    asyncio.run(scenario())

    assert handled == ["A", "B"]
    assert len(acks) == 3


def test_debounce_window_releases_while_running():
    handled = []

    async def handler(candidate):
        handled.append(candidate.payload)

    async def scenario():
        source = QueueDecodeSource()
        ingestor = ScanIngestor(source, ScanCoalescer(0.01, 0.02), handler)
        ingestor.start()
        source.push("X")
        await asyncio.sleep(0.3)
        assert ingestor.running
        ingestor.stop()
        await ingestor.drain()

    asyncio.run(scenario())

    assert handled == ["X"]


def test_stop_discards_pending_candidates():
    handled = []

    async def handler(candidate):
        handled.append(candidate.payload)

    async def scenario():
        acked = asyncio.Event()
        source = QueueDecodeSource(clock=frozen)
        coalescer = ScanCoalescer(0.8, 0.5)
        ingestor = ScanIngestor(
            source, coalescer, handler, clock=frozen, on_ack=lambda candidate: acked.set()
        )
        ingestor.start()
        source.push("A")
        await acked.wait()
        ingestor.stop()
        await ingestor.drain()
        assert coalescer.pending == 0
        assert not ingestor.running
        with pytest.raises(RuntimeError):
            source.push("B")

    asyncio.run(scenario())

    assert handled == []


def test_handler_failure_does_not_stop_other_candidates():
    handled = []

    async def handler(candidate):
        if candidate.payload == "bad":
            raise ValueError("lookup exploded")
        handled.append(candidate.payload)

    async def scenario():
        source = QueueDecodeSource(clock=frozen)
        source.push("bad", 0.0)
        source.push("good", 1.0)
        source.close()
        ingestor = ScanIngestor(source, ScanCoalescer(0.8, 0.5), handler, clock=frozen)
        ingestor.start()
        await ingestor.drain()

    asyncio.run(scenario())

    assert handled == ["good"]


def test_service_scanner_commits_bursts_once(service, database, monotonic):
    async def scenario():
        source = QueueDecodeSource(clock=monotonic)
        source.push("B-200", 1000.0)
        source.push("B-200", 1000.1)
        source.push("B-200", 1001.0)
        source.close()
        service.start_scanner(source)
        await service.ingestor.drain()

    asyncio.run(scenario())

    assert service.stats.acknowledged == 2
    assert service.stats.processed == 1
    assert [o.kind for o in service.notifier.history] == [COMMITTED]
    assert database.count_attendance() == 1


def test_push_scan_requires_running_scanner(service):
    with pytest.raises(RuntimeError):
        service.push_scan("B-200")


def test_push_scan_feeds_the_running_scanner(service, database):
    async def scenario():
        service.start_scanner()
        assert service.scanner_running
        service.push_scan("B-200")
        while service.stats.acknowledged == 0:
            await asyncio.sleep(0.01)
        service.stop_scanner()
        await service.ingestor.drain()
        assert not service.scanner_running

    asyncio.run(scenario())

    # The frozen clock never lets the debounce elapse, so stopping drops the scan.
    assert database.count_attendance() == 0


def test_scanner_publishes_lookup_failures(service, database, monotonic, monkeypatch):
    def broken(*args, **kwargs):
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(database, "find_active_by_code", broken)

    async def scenario():
        source = QueueDecodeSource(clock=monotonic)
        source.push("B-200", 1000.0)
        source.close()
        service.start_scanner(source)
        await service.ingestor.drain()

    asyncio.run(scenario())

    assert [o.kind for o in service.notifier.history] == [PERSISTENCE_ERROR]
    assert service.notifier.history[0].retryable
