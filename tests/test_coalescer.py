from rollcall.coalescer import ScanCoalescer


def test_rate_limit_drops_any_payload_inside_interval():
    coalescer = ScanCoalescer(min_interval=0.8, debounce=0.5)

    assert coalescer.accept("A", 0.0) is not None
    assert coalescer.accept("B", 0.3) is None
    assert coalescer.accept("A", 0.79) is None
    assert coalescer.dropped == 2
    assert coalescer.accept("B", 0.8) is not None


def test_dropped_decode_does_not_move_the_gate():
    coalescer = ScanCoalescer(min_interval=0.8, debounce=0.5)

    coalescer.accept("A", 0.0)
    coalescer.accept("A", 0.5)

    assert coalescer.last_accepted_at == 0.0
    assert coalescer.accept("A", 0.8) is not None


def test_release_waits_for_debounce_window():
    coalescer = ScanCoalescer(min_interval=0.8, debounce=0.5)
    coalescer.accept("A", 0.0)

    assert coalescer.release(0.49) == []
    released = coalescer.release(0.5)

    assert [c.payload for c in released] == ["A"]
    assert coalescer.release(10.0) == []


def test_same_payload_inside_window_is_released_once():
    coalescer = ScanCoalescer(min_interval=0.1, debounce=0.5)
    coalescer.accept("A", 0.0)
    coalescer.accept("A", 0.2)
    coalescer.accept("A", 0.4)

    assert coalescer.pending == 1
    assert coalescer.release(0.5) == []
    released = coalescer.release(0.9)

    assert len(released) == 1
    assert released[0].captured_at == 0.4


def test_release_is_in_capture_order():
    coalescer = ScanCoalescer(min_interval=0.1, debounce=0.5)
    coalescer.accept("B", 0.0)
    coalescer.accept("A", 0.2)
    coalescer.accept("C", 0.4)

    assert coalescer.next_due() == 0.5
    assert [c.payload for c in coalescer.release(5.0)] == ["B", "A", "C"]


def test_blank_payload_is_ignored():
    coalescer = ScanCoalescer()

    assert coalescer.accept("   ", 0.0) is None
    assert coalescer.last_accepted_at is None


def test_reset_discards_pending_and_gate():
    coalescer = ScanCoalescer()
    coalescer.accept("A", 0.0)

    coalescer.reset()

    assert coalescer.pending == 0
    assert coalescer.next_due() is None
    assert coalescer.accept("B", 0.1) is not None
