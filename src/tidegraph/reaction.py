"""Reactions — side effects triggered by state changes.

Unlike a Computation (lazy, evaluated on read), a Reaction eagerly re-runs
its side effect at the end of every wave in which a tracked dependency
changed. It runs at most once per wave however many dependencies changed.

Two flavors:
- create_reaction(fn): runs fn, re-runs when anything it read changes.
- reaction(data_fn, effect_fn): tracks data_fn, calls effect_fn with the new
  value only when data_fn's result changes.

A reaction that raises is disposed and its ReactionFailure goes to on_error,
or to the runtime's error sink. The rest of the wave still runs.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, TypeVar

from tidegraph.errors import ReactionFailure
from tidegraph.runtime import Runtime, current_runtime, get_runtime

if TYPE_CHECKING:
    from tidegraph.scheduler import Scheduler
    from tidegraph.timers import TimerHandle

T = TypeVar("T")

ErrorHandler = Callable[[ReactionFailure], None]


class Reaction:
    """A reactive side effect that re-runs when its dependencies change."""

    __slots__ = ("_id", "_rt", "_on_error", "_name")

    def __init__(
        self,
        fn: Callable[[], None],
        *,
        on_error: ErrorHandler | None = None,
        runtime: Runtime | None = None,
    ) -> None:
        self._rt = runtime if runtime is not None else get_runtime()
        self._on_error = on_error
        self._name = getattr(fn, "__name__", "fn")
        arena = self._rt.arena
        self._id = arena.register(self)
        arena.derivation_fns[self._id] = fn
        arena.dependencies[self._id] = set()
        arena.disposed[self._id] = False
        arena.running[self._id] = False
        arena.run_counts[self._id] = 0

    @property
    def _fn(self) -> Callable[[], None]:
        return self._rt.arena.derivation_fns[self._id]

    @property
    def disposed(self) -> bool:
        return self._rt.arena.disposed.get(self._id, True)

    @property
    def run_count(self) -> int:
        return self._rt.arena.run_counts.get(self._id, 0)

    @property
    def dependencies(self) -> frozenset:
        nodes = self._rt.arena.nodes
        ids = self._rt.arena.dependencies.get(self._id, ())
        return frozenset(nodes[i] for i in ids if i in nodes)

    def schedule(self) -> None:
        """Queue a run for the next wave."""
        if self.disposed:
            return
        self._rt.scheduler.enqueue(self._id)
        self._rt.scheduler.settle()

    def _mark_stale(self, scheduler: Scheduler) -> tuple:
        if not self.disposed:
            scheduler.enqueue(self._id)
        return ()

    def _run(self) -> None:
        """Re-run the body, re-tracking dependencies."""
        arena = self._rt.arena
        if self.disposed:
            return

        arena.running[self._id] = True
        failure = None
        token = current_runtime.set(self._rt)
        try:
            self._rt.tracker.with_reader(self._id, self._fn)
        except Exception as exc:
            failure = ReactionFailure(self, exc)
            failure.__cause__ = exc
        finally:
            current_runtime.reset(token)
            arena.running[self._id] = False
        arena.run_counts[self._id] += 1

        if failure is not None:
            arena.disposed[self._id] = True
            self._teardown()
            self._rt.scheduler.report(failure, self._on_error)
        elif arena.disposed[self._id]:
            # dispose() was called from inside the body.
            self._teardown()

    def rearm_after(self, delay_ms: float) -> TimerHandle:
        """Run again after delay_ms, whether or not anything changed.

        Only the latest re-arm is kept; calling this again replaces it.
        """
        arena = self._rt.arena
        previous = arena.timers.get(self._id)
        if previous is not None:
            previous.cancel()
        handle = self._rt.schedule_after(delay_ms, self.schedule)
        arena.timers[self._id] = handle
        return handle

    def dispose(self) -> None:
        """Stop this reaction and release its arena entries.

        While the reaction is running, teardown waits until the run returns.
        """
        arena = self._rt.arena
        if self._id not in arena.nodes:
            return
        arena.disposed[self._id] = True
        if not arena.running[self._id]:
            self._teardown()

    def _teardown(self) -> None:
        arena = self._rt.arena
        self._rt.scheduler.discard(self._id)
        timer = arena.timers.get(self._id)
        if timer is not None:
            timer.cancel()
        arena.forget(self._id)

    def __repr__(self) -> str:
        state = "disposed" if self.disposed else "active"
        return f"Reaction({self._name}, {state})"


def create_reaction(
    fn: Callable[[], None],
    *,
    on_error: ErrorHandler | None = None,
    runtime: Runtime | None = None,
) -> Reaction:
    """Run fn in the next wave, then re-run whenever anything it reads changes.

    With auto-flush on and no batch open, that first run happens before this
    returns. Returns the Reaction (call .dispose() to stop).

    Usage:
        counter = create_cell(0)
        log = []

        r = create_reaction(lambda: log.append(counter.read()))
        # log == [0]

        counter.set(1)
        # log == [0, 1]

        r.dispose()
        counter.set(2)
        # log == [0, 1]
    """
    r = Reaction(fn, on_error=on_error, runtime=runtime)
    r.schedule()
    return r


_UNSET = object()


def reaction(
    data_fn: Callable[[], T],
    effect_fn: Callable[[T], None],
    *,
    fire_immediately: bool = False,
    on_error: ErrorHandler | None = None,
    runtime: Runtime | None = None,
) -> Reaction:
    """Track data_fn's reads; call effect_fn when its result changes.

    effect_fn runs isolated, so whatever it reads does not become a
    dependency. Returns the Reaction (call .dispose() to stop).

    Usage:
        first = create_cell("Alice")
        last = create_cell("Smith")

        effects = []
        r = reaction(
            lambda: f"{first.read()} {last.read()}",
            lambda name: effects.append(name),
        )
        # effects == []: data_fn ran to establish deps, effect didn't fire

        first.set("Bob")
        # effects == ["Bob Smith"]
    """
    rt = runtime if runtime is not None else get_runtime()
    last: object = _UNSET
    primed = fire_immediately

    def _track_and_compare() -> None:
        nonlocal last, primed
        value = data_fn()
        if not primed:
            primed = True
            last = value
            return
        if last is _UNSET or value != last:
            last = value
            rt.isolate(effect_fn, value)

    _track_and_compare.__name__ = getattr(data_fn, "__name__", "data_fn")
    return create_reaction(_track_and_compare, on_error=on_error, runtime=rt)
