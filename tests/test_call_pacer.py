import threading
import time

import pytest

from stride_analyzer.clients.call_pacer import CallPacer, CancellationToken
from stride_analyzer.clients.errors import PipelineCancelled


class FakeClock:
    def __init__(self, now=100.0):
        self.now = now
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def _pacer(clock, rng=0.5):
    return CallPacer(1.0, 2.0, sleep=clock.sleep, clock=clock, rng=lambda: rng)


def test_first_call_is_not_delayed() -> None:
    clock = FakeClock()
    pacer = _pacer(clock)
    with pacer.slot() as waited:
        assert waited == 0.0
    assert clock.sleeps == []


def test_back_to_back_calls_are_spaced() -> None:
    clock = FakeClock()
    pacer = _pacer(clock)
    with pacer.slot():
        pass
    with pacer.slot() as waited:
        assert waited == pytest.approx(1.5)
    assert clock.sleeps == [pytest.approx(1.5)]


def test_delay_stays_within_bounds() -> None:
    for rng in (0.0, 0.999):
        clock = FakeClock()
        pacer = _pacer(clock, rng=rng)
        with pacer.slot():
            pass
        assert 1.0 <= pacer.pending_wait() <= 2.0


def test_elapsed_time_counts_toward_delay() -> None:
    clock = FakeClock()
    pacer = _pacer(clock)
    with pacer.slot():
        clock.now += 0.5
    clock.now += 1.0
    with pacer.slot() as waited:
        assert waited == pytest.approx(0.5)


def test_reset_clears_pending_wait() -> None:
    clock = FakeClock()
    pacer = _pacer(clock)
    with pacer.slot():
        pass
    pacer.reset()
    assert pacer.pending_wait() == 0.0


def test_cancelled_token_stops_before_the_call() -> None:
    clock = FakeClock()
    pacer = _pacer(clock)
    token = CancellationToken()
    token.cancel()
    entered = []
    with pytest.raises(PipelineCancelled):
        with pacer.slot(token):
            entered.append(True)
    assert entered == []
    assert token.cancelled


def test_cancel_during_wait_interrupts_it() -> None:
    pacer = CallPacer(5.0, 5.0)
    token = CancellationToken()
    with pacer.slot(token):
        pass
    timer = threading.Timer(0.05, token.cancel)
    timer.start()
    started = time.monotonic()
    with pytest.raises(PipelineCancelled):
        with pacer.slot(token):
            pass
    assert time.monotonic() - started < 4.0
    timer.join()


def test_invalid_bounds_rejected() -> None:
    with pytest.raises(ValueError):
        CallPacer(2.0, 1.0)


def test_concurrent_callers_share_one_budget() -> None:
    pacer = CallPacer(0.05, 0.05)
    starts = []
    lock = threading.Lock()

    def worker():
        with pacer.slot():
            with lock:
                starts.append(time.monotonic())

    threads = [threading.Thread(target=worker) for _ in range(3)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    starts.sort()
    gaps = [b - a for a, b in zip(starts, starts[1:])]
    assert len(gaps) == 2
    assert all(gap >= 0.045 for gap in gaps)
