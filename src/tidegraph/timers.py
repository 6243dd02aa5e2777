"""Timer queue for schedule_after() and re-armed reactions.

Timers never fire on their own. The host calls Runtime.run_timers() (or
Runtime.advance() with a ManualClock) at its event-loop boundaries, which keeps
the graph single-threaded.
"""

from __future__ import annotations

import heapq
import itertools
import time
from typing import Callable


class MonotonicClock:
    """Wall-clock milliseconds from time.monotonic()."""

    def now(self) -> float:
        return time.monotonic() * 1000.0


class ManualClock:
    """A clock that only moves when told to. For tests and simulations."""

    def __init__(self, start: float = 0.0) -> None:
        self._now = float(start)

    def now(self) -> float:
        return self._now

    def advance(self, ms: float) -> None:
        if ms < 0:
            raise ValueError(f"cannot move a clock backwards ({ms} ms)")
        self._now += ms


class TimerHandle:
    """A scheduled callback. cancel() is safe to call at any time."""

    __slots__ = ("due", "seq", "fn", "cancelled", "fired")

    def __init__(self, due: float, seq: int, fn: Callable[[], None]) -> None:
        self.due = due
        self.seq = seq
        self.fn = fn
        self.cancelled = False
        self.fired = False

    @property
    def active(self) -> bool:
        return not (self.cancelled or self.fired)

    def cancel(self) -> None:
        self.cancelled = True

    def __lt__(self, other: TimerHandle) -> bool:
        return (self.due, self.seq) < (other.due, other.seq)

    def __repr__(self) -> str:
        state = "active" if self.active else ("fired" if self.fired else "cancelled")
        return f"TimerHandle(due={self.due}, {state})"


class TimerQueue:
    """Min-heap of timers ordered by due time, then by scheduling order."""

    def __init__(self, clock) -> None:
        self.clock = clock
        self._heap: list[TimerHandle] = []
        self._seq = itertools.count()

    def schedule(self, delay_ms: float, fn: Callable[[], None]) -> TimerHandle:
        if delay_ms < 0:
            raise ValueError(f"delay must be non-negative, got {delay_ms}")
        handle = TimerHandle(self.clock.now() + delay_ms, next(self._seq), fn)
        heapq.heappush(self._heap, handle)
        return handle

    def pop_due(self) -> list[TimerHandle]:
        """Remove and return every live timer that is due now.

        The batch is taken before anything fires, so a zero-delay timer
        scheduled by a firing one waits for the next pass.
        """
        now = self.clock.now()
        due: list[TimerHandle] = []
        while self._heap and self._heap[0].due <= now:
            handle = heapq.heappop(self._heap)
            if not handle.cancelled:
                due.append(handle)
        return due

    def requeue(self, handles: list[TimerHandle]) -> None:
        """Put back timers that were popped but never fired."""
        for handle in handles:
            heapq.heappush(self._heap, handle)

    def next_due(self) -> float | None:
        while self._heap and self._heap[0].cancelled:
            heapq.heappop(self._heap)
        return self._heap[0].due if self._heap else None

    def __len__(self) -> int:
        return sum(1 for handle in self._heap if handle.active)
