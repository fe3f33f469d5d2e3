from __future__ import annotations

import random
import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from stride_analyzer.clients.errors import PipelineCancelled


class CancellationToken:
    """Cooperative abort flag checked before every remote call and pacing wait."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise PipelineCancelled("analysis cancelled before next remote call")

    def wait(self, seconds: float) -> bool:
        return self._event.wait(seconds)


class CallPacer:
    """Token bucket of size one shared by every caller of the remote service.

    A slot is held for the duration of one remote call. When it is released
    the bucket refills after a uniformly random delay in
    ``[min_delay_sec, max_delay_sec]``, so back-to-back callers are spaced out
    while a lone final call incurs no trailing wait.
    """

    def __init__(
        self,
        min_delay_sec: float = 1.0,
        max_delay_sec: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: Callable[[], float] = random.random,
    ) -> None:
        if not 0 <= min_delay_sec <= max_delay_sec:
            raise ValueError("delay bounds must satisfy 0 <= min_delay_sec <= max_delay_sec")
        self.min_delay_sec = min_delay_sec
        self.max_delay_sec = max_delay_sec
        self._sleep = sleep
        self._clock = clock
        self._rng = rng
        self._lock = threading.Lock()
        self._next_allowed: Optional[float] = None

    def _interval(self) -> float:
        return self.min_delay_sec + self._rng() * (self.max_delay_sec - self.min_delay_sec)

    def _pause(self, seconds: float, cancel_token: Optional[CancellationToken]) -> None:
        if seconds <= 0:
            return
        if cancel_token is not None:
            if cancel_token.wait(seconds):
                cancel_token.raise_if_cancelled()
            return
        self._sleep(seconds)

    def pending_wait(self) -> float:
        if self._next_allowed is None:
            return 0.0
        return max(0.0, self._next_allowed - self._clock())

    @contextmanager
    def slot(self, cancel_token: Optional[CancellationToken] = None) -> Iterator[float]:
        with self._lock:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            waited = self.pending_wait()
            self._pause(waited, cancel_token)
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            try:
                yield waited
            finally:
                self._next_allowed = self._clock() + self._interval()

    def reset(self) -> None:
        with self._lock:
            self._next_allowed = None
