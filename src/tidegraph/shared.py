"""State shared across runtimes.

Runtimes share nothing by default. A host that wants one value or one cache
visible to every session opts in here. Every cross-runtime write happens
under a lock; each bound Cell.set() still marshals onto its own runtime's
thread when that runtime has a thread scheduler installed.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from typing import Callable, Generic, Hashable, TypeVar

from tidegraph.cell import Cell, same_value
from tidegraph.computed import Computation
from tidegraph.runtime import Runtime, get_runtime

T = TypeVar("T")

logger = logging.getLogger("tidegraph.shared")


class SharedCell(Generic[T]):
    """One value mirrored into a Cell in every runtime that binds it.

    Write through SharedCell.set(); a write to a bound mirror stays local
    to its runtime.

    The lock only orders SharedCell writes among themselves. A runtime
    without a thread scheduler is flushed on the writer's thread, so when
    writers and runtimes live on different threads, call set_scheduler() on
    every bound runtime first.
    """

    def __init__(self, value: T, *, equals: Callable[[T, T], bool] | None = same_value) -> None:
        self._lock = threading.RLock()
        self._value = value
        self._equals = equals
        self._bindings: list[Cell[T]] = []

    def bind(self, runtime: Runtime | None = None) -> Cell[T]:
        """Create the mirror Cell for a runtime."""
        rt = runtime if runtime is not None else get_runtime()
        with self._lock:
            mirror = Cell(self._value, runtime=rt)
            self._bindings.append(mirror)
        return mirror

    def unbind(self, mirror: Cell[T]) -> None:
        with self._lock:
            self._bindings.remove(mirror)

    def peek(self) -> T:
        with self._lock:
            return self._value

    def set(self, value: T) -> None:
        with self._lock:
            if self._equals is not None and self._equals(self._value, value):
                return
            self._value = value
            for mirror in list(self._bindings):
                mirror.set(value)

    def __len__(self) -> int:
        return len(self._bindings)

    def __repr__(self) -> str:
        return f"SharedCell({self._value!r}, bindings={len(self._bindings)})"


class SharedCache:
    """In-process LRU memo shared by every runtime in the process.

    Args:
        max_entries: Oldest entries are evicted past this size.
    """

    def __init__(self, max_entries: int = 1000) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self._entries: OrderedDict[Hashable, object] = OrderedDict()
        self._lock = threading.RLock()
        self.hits = 0
        self.misses = 0

    def get_or_compute(self, key: Hashable, fn: Callable[[], T]) -> T:
        """Return the cached value for key, computing it once on a miss.

        The lock is held while fn runs, so concurrent misses on one key
        compute it once. A failing fn caches nothing.
        """
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
                self.hits += 1
                return self._entries[key]
            self.misses += 1
            value = fn()
            self._entries[key] = value
            if len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Evicted cache entry %r", evicted)
            return value

    def invalidate(self, key: Hashable | None = None) -> None:
        """Drop one key, or everything when key is None."""
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def bind(
        self,
        key_fn: Callable[[], Hashable],
        fn: Callable[[], T],
        *,
        runtime: Runtime | None = None,
    ) -> Computation[T]:
        """A Computation that depends on key_fn and fetches fn's result by key.

        On a hit fn does not run, so only key_fn's reads are tracked.
        """

        def _cached() -> T:
            return self.get_or_compute(key_fn(), fn)

        _cached.__name__ = getattr(fn, "__name__", "cached")
        return Computation(_cached, runtime=runtime)

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
