"""
apigate.clock

Time sources used by the pipeline.

Responsibilities:
- Provide a wall clock (token expiry) and a monotonic clock (rate windows, cache TTLs).
- Provide a manually advanced clock so tests can control time deterministically.
"""

from __future__ import annotations

import threading
import time
from typing import Protocol


class Clock(Protocol):
    def now(self) -> float: ...


class SystemClock:
    """
    Wall clock in epoch seconds. Token `exp` claims are compared against this.
    """

    def now(self) -> float:
        return time.time()


class MonotonicClock:
    """
    Monotonic seconds; immune to wall-clock jumps, so windows and TTLs never run backwards.
    """

    def now(self) -> float:
        return time.monotonic()


class ManualClock:
    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self._lock = threading.Lock()

    def now(self) -> float:
        with self._lock:
            return self._now

    def advance(self, seconds: float) -> float:
        with self._lock:
            self._now += seconds
            return self._now

    def set(self, value: float) -> None:
        with self._lock:
            self._now = value


# --- Module Notes -----------------------------------------------------------
# Stages never call `time` directly; clocks are injected through `pipeline.chain.build_chain`.
