"""Computations — derived state with automatic dependency tracking.

A Computation wraps a function. When evaluated, it records which cells and
computations the function reads and caches the result. When any dependency
changes, the cached value is invalidated. On next read, it re-evaluates.

Computations are lazy: invalidation never runs the function, only get() does.
A failure is cached like a value and re-raised to every reader until an
upstream change invalidates the node, so it poisons its dependents too.

All state lives in the runtime's arena; instances are thin handles.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Generic, TypeVar

from tidegraph.errors import ComputationFailure, CyclicComputationError, ReactiveError
from tidegraph.runtime import Runtime, current_runtime, get_runtime

if TYPE_CHECKING:
    from tidegraph.scheduler import Scheduler
    from tidegraph.timers import TimerHandle

T = TypeVar("T")

_UNSET = object()


class Computation(Generic[T]):
    """A derived value that auto-tracks dependencies and caches the result."""

    __slots__ = ("_id", "_rt", "_name")

    def __init__(self, fn: Callable[[], T], *, runtime: Runtime | None = None) -> None:
        self._rt = runtime if runtime is not None else get_runtime()
        self._name = getattr(fn, "__name__", "fn")
        arena = self._rt.arena
        self._id = arena.register(self)
        arena.derivation_fns[self._id] = fn
        arena.cached_values[self._id] = _UNSET
        arena.errors[self._id] = None
        arena.valid[self._id] = False
        arena.stamps[self._id] = -1
        arena.running[self._id] = False
        arena.disposed[self._id] = False
        arena.run_counts[self._id] = 0
        arena.dependencies[self._id] = set()

    @property
    def _fn(self) -> Callable[[], T]:
        return self._rt.arena.derivation_fns[self._id]

    @property
    def disposed(self) -> bool:
        return self._rt.arena.disposed.get(self._id, True)

    @property
    def valid(self) -> bool:
        return self._rt.arena.valid.get(self._id, False)

    @property
    def stamp(self) -> int:
        """Runtime revision at the last recompute, or -1 if never computed."""
        return self._rt.arena.stamps.get(self._id, -1)

    @property
    def run_count(self) -> int:
        return self._rt.arena.run_counts.get(self._id, 0)

    @property
    def dependencies(self) -> frozenset:
        nodes = self._rt.arena.nodes
        ids = self._rt.arena.dependencies.get(self._id, ())
        return frozenset(nodes[i] for i in ids if i in nodes)

    @property
    def dependents(self) -> frozenset:
        nodes = self._rt.arena.nodes
        return frozenset(nodes[i] for i in self._rt.arena.observers.get(self._id, ()))

    def get(self) -> T:
        """Read the computed value. Recomputes if invalid."""
        arena = self._rt.arena
        if self.disposed:
            raise ReactiveError(f"{self!r} was disposed")
        if arena.running[self._id]:
            raise CyclicComputationError(f"{self!r} read itself while recomputing")
        self._rt.tracker.record(self._id)

        if not arena.valid[self._id]:
            self._recompute()
            # Writes made by the function drain once we are back at top level.
            self._rt.scheduler.settle()
            if self.disposed:
                raise ReactiveError(f"{self!r} was disposed while recomputing")

        error = arena.errors[self._id]
        if error is not None:
            # Fresh traceback per read; the original stays on error.__cause__.
            raise error.with_traceback(None)
        return arena.cached_values[self._id]

    def _recompute(self) -> None:
        """Re-evaluate the function, tracking dependencies."""
        arena = self._rt.arena
        # Valid from the start, so an invalidation during the run sticks.
        arena.valid[self._id] = True
        arena.running[self._id] = True
        token = current_runtime.set(self._rt)
        try:
            value = self._rt.tracker.with_reader(self._id, self._fn)
        except ComputationFailure as exc:
            arena.errors[self._id] = exc
            arena.cached_values[self._id] = _UNSET
        except Exception as exc:
            failure = ComputationFailure(self, exc)
            failure.__cause__ = exc
            arena.errors[self._id] = failure
            arena.cached_values[self._id] = _UNSET
        except BaseException:
            arena.valid[self._id] = False
            raise
        else:
            arena.errors[self._id] = None
            arena.cached_values[self._id] = value
        finally:
            current_runtime.reset(token)
            arena.running[self._id] = False
            arena.stamps[self._id] = self._rt.revision
            arena.run_counts[self._id] += 1
            if arena.disposed[self._id]:
                # dispose() was called from inside the function.
                arena.forget(self._id)

    def _mark_stale(self, scheduler: Scheduler) -> set[int]:
        """Called by the scheduler when a dependency changed.

        We flip to invalid and hand back our own observers for the scheduler
        to walk. We don't recompute eagerly; that happens on next .get().
        """
        arena = self._rt.arena
        if not arena.valid.get(self._id, False):
            return set()
        arena.valid[self._id] = False
        return arena.observers[self._id]

    def invalidate(self) -> None:
        """Force the next get() to recompute, invalidating dependents too."""
        self._rt.scheduler.invalidate([self._id])
        self._rt.scheduler.settle()

    def rearm_after(self, delay_ms: float) -> TimerHandle:
        """Invalidate this computation once delay_ms has elapsed."""
        arena = self._rt.arena
        previous = arena.timers.get(self._id)
        if previous is not None:
            previous.cancel()
        handle = self._rt.schedule_after(delay_ms, self.invalidate)
        arena.timers[self._id] = handle
        return handle

    def dispose(self) -> None:
        """Destroy the node. Its arena entries are released; get() then raises."""
        arena = self._rt.arena
        if self._id not in arena.nodes:
            return
        timer = arena.timers.get(self._id)
        if timer is not None:
            timer.cancel()
        arena.disposed[self._id] = True
        if not arena.running[self._id]:
            arena.forget(self._id)

    def __repr__(self) -> str:
        arena = self._rt.arena
        if self._id not in arena.nodes:
            state = "disposed"
        elif not arena.valid[self._id]:
            state = "invalid"
        elif arena.errors[self._id] is not None:
            state = "failed"
        else:
            state = f"cached={arena.cached_values[self._id]!r}"
        return f"Computation({self._name}, {state})"


def create_computation(fn: Callable[[], T], *, runtime: Runtime | None = None) -> Computation[T]:
    return Computation(fn, runtime=runtime)


def computed(fn: Callable[[], T]) -> Computation[T]:
    """Decorator/factory to create a Computation from a function.

    Usage:
        counter = create_cell(0)

        @computed
        def doubled():
            return counter.read() * 2

        doubled.get()  # 0
        counter.set(5)
        doubled.get()  # 10
    """
    return Computation(fn)
