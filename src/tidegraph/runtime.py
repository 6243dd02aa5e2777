"""Runtime — one independent reactive graph per host-process instance.

A Runtime bundles the arena, tracker, scheduler, and timer queue. Nodes bind
to the runtime that is active when they are created. Independent runtimes
share no mutable state, so separate user sessions can each own one.

Thread safety: a runtime is single-threaded. Call set_scheduler() once from
the owner thread; after that any Cell.set() from another thread is handed to
the scheduler instead of touching the graph directly.
"""

from __future__ import annotations

import contextvars
import logging
import threading
from contextlib import contextmanager
from typing import Callable, Iterator, TypeVar

from tidegraph._anchor import Arena
from tidegraph._tracking import Tracker
from tidegraph.errors import ReactiveError
from tidegraph.scheduler import Scheduler
from tidegraph.timers import MonotonicClock, TimerHandle, TimerQueue

R = TypeVar("R")

logger = logging.getLogger("tidegraph.runtime")


class Runtime:
    """Arena + tracker + scheduler + timers for one host instance.

    Args:
        auto_flush: Drain pending reactions whenever control returns to the
            top level outside a batch. With False, only flush() drains.
        max_waves: Ceiling on waves per flush. Exceeding it reports and raises
            CycleExhaustion. None means no ceiling.
        error_sink: Receives ReactionFailure and CycleExhaustion. Defaults to
            logging them on the ``tidegraph.scheduler`` logger.
        clock: Anything with ``now() -> float`` in milliseconds.
    """

    def __init__(
        self,
        *,
        auto_flush: bool = True,
        max_waves: int | None = None,
        error_sink: Callable[[ReactiveError], None] | None = None,
        clock=None,
        name: str = "runtime",
    ) -> None:
        self.name = name
        self.arena = Arena()
        self.tracker = Tracker(self.arena)
        self.scheduler = Scheduler(
            self.arena,
            self.tracker,
            auto_flush=auto_flush,
            max_waves=max_waves,
            error_sink=error_sink,
        )
        self.tracker.on_settle = self.scheduler.settle
        self.clock = clock if clock is not None else MonotonicClock()
        self.timers = TimerQueue(self.clock)
        # Bumped on every write to any source in this runtime.
        self.revision = 0
        self._thread_scheduler: Callable[[Callable[[], None]], object] | None = None
        self._owner_thread: threading.Thread | None = None

    @contextmanager
    def activate(self) -> Iterator[Runtime]:
        """Make this the runtime new nodes bind to, for the duration of the block."""
        token = current_runtime.set(self)
        try:
            yield self
        finally:
            current_runtime.reset(token)

    def flush(self) -> int:
        return self.scheduler.flush()

    def batch(self):
        return self.scheduler.batch()

    def isolate(self, fn: Callable[..., R], *args, **kwargs) -> R:
        return self.tracker.isolate(fn, *args, **kwargs)

    # ─── Timers ──────────────────────────────────────────────────────────

    def schedule_after(self, delay_ms: float, fn: Callable[[], None]) -> TimerHandle:
        """Run fn as its own external event once delay_ms has elapsed."""
        return self.timers.schedule(delay_ms, fn)

    def run_timers(self) -> int:
        """Fire every due timer in (due, scheduling) order. Returns the count."""
        fired = 0
        due = self.timers.pop_due()
        for index, handle in enumerate(due):
            # An earlier timer in this pass may have cancelled a later one.
            if handle.cancelled:
                continue
            handle.fired = True
            fired += 1
            logger.debug("%s: firing timer due at %s", self.name, handle.due)
            try:
                with self.scheduler.batch():
                    handle.fn()
            except BaseException:
                self.timers.requeue(due[index + 1:])
                raise
        return fired

    def advance(self, ms: float) -> int:
        """Move a ManualClock forward and fire what became due."""
        advance = getattr(self.clock, "advance", None)
        if advance is None:
            raise TypeError(f"{type(self.clock).__name__} cannot be advanced manually")
        advance(ms)
        return self.run_timers()

    # ─── Thread marshaling ───────────────────────────────────────────────

    def set_scheduler(self, scheduler: Callable[[Callable[[], None]], object]) -> None:
        """Install a cross-thread marshal, e.g. ``loop.call_soon_threadsafe``.

        The calling thread becomes the owner thread.
        """
        self._thread_scheduler = scheduler
        self._owner_thread = threading.current_thread()

    def marshal(self, fn: Callable[[], None]) -> bool:
        """Hand fn to the thread scheduler if called off the owner thread."""
        if self._thread_scheduler is None or threading.current_thread() is self._owner_thread:
            return False
        self._thread_scheduler(fn)
        return True

    # ─── Inspection ──────────────────────────────────────────────────────

    def edges(self) -> list[tuple[object, object]]:
        """Every (reader, source) dependency edge, as handles."""
        nodes = self.arena.nodes
        return [(nodes[r], nodes[s]) for r, s in self.arena.edges()]

    def __repr__(self) -> str:
        return f"Runtime({self.name!r}, {self.scheduler.state})"


current_runtime: contextvars.ContextVar[Runtime | None] = contextvars.ContextVar(
    "current_runtime", default=None
)

_default_runtime: Runtime | None = None


def get_runtime() -> Runtime:
    """The active runtime, falling back to a lazily created process default."""
    global _default_runtime
    runtime = current_runtime.get()
    if runtime is not None:
        return runtime
    if _default_runtime is None:
        _default_runtime = Runtime(name="default")
    return _default_runtime


def set_scheduler(scheduler: Callable[[Callable[[], None]], object]) -> None:
    """Set the cross-thread scheduler of the active runtime.

    Call once from the main thread:
        tidegraph.set_scheduler(loop.call_soon_threadsafe)
    """
    get_runtime().set_scheduler(scheduler)


def flush() -> int:
    """Drain pending waves of the active runtime."""
    return get_runtime().flush()


def isolate(fn: Callable[..., R], *args, **kwargs) -> R:
    """Call fn without subscribing the current reader to anything it reads.

    Usage:
        n = create_cell(0)

        @create_reaction
        def bump():
            n.set(isolate(n.read) + 1)  # no edge back to n, so no loop
    """
    return get_runtime().isolate(fn, *args, **kwargs)


def schedule_after(delay_ms: float, fn: Callable[[], None]) -> TimerHandle:
    return get_runtime().schedule_after(delay_ms, fn)


def invalidate_later(delay_ms: float) -> TimerHandle:
    """Re-arm the currently running reaction or computation after delay_ms.

    Usage:
        @create_reaction
        def poll():
            invalidate_later(250)
            status.set(fetch_status())
    """
    runtime = get_runtime()
    reader_id = runtime.tracker.current_reader()
    if reader_id is None:
        raise ReactiveError("invalidate_later() needs a running reaction or computation")
    return runtime.arena.nodes[reader_id].rearm_after(delay_ms)
