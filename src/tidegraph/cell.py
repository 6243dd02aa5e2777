"""Cells — mutable state that tracks its readers.

When a Cell is read inside a Computation or Reaction, the dependency is
registered automatically. When the Cell is written, every dependent is
invalidated and the scheduler decides when reactions run.

All state lives in the runtime's arena; instances are thin handles holding an
_id and the runtime they were created in.
"""

from __future__ import annotations

from concurrent.futures import Future
from typing import Callable, Generic, Iterator, TypeVar

from tidegraph.errors import ReactiveError
from tidegraph.runtime import Runtime, get_runtime

T = TypeVar("T")
R = TypeVar("R")
KT = TypeVar("KT")
VT = TypeVar("VT")


def same_value(old: object, new: object) -> bool:
    """Equality policy that skips writes of an identical or equal value."""
    return old is new or old == new


class _Source:
    """Shared read/notify plumbing for everything a reader can depend on."""

    __slots__ = ()

    def _value(self):
        try:
            return self._rt.arena.values[self._id]
        except KeyError:
            raise ReactiveError(f"{type(self).__name__} #{self._id} was disposed") from None

    def _track(self) -> None:
        if self._id not in self._rt.arena.nodes:
            raise ReactiveError(f"{type(self).__name__} #{self._id} was disposed")
        self._rt.tracker.record(self._id)

    def _changed(self) -> None:
        runtime = self._rt
        arena = runtime.arena
        arena.revisions[self._id] += 1
        runtime.revision += 1
        runtime.scheduler.invalidate(list(arena.observers[self._id]))
        runtime.scheduler.settle()

    def _write(self, mutate: Callable[[], R], *, wait: bool = False) -> R | None:
        """Apply mutate and notify, on the owner thread.

        Off the owner thread the write is marshaled like Cell.set(). With
        wait=True the caller blocks until it ran and gets its result back.
        """

        def apply() -> R:
            result = mutate()
            self._changed()
            return result

        if not wait:
            if not self._rt.marshal(apply):
                return apply()
            return None

        future: Future = Future()

        def apply_into_future() -> None:
            try:
                future.set_result(apply())
            except Exception as exc:
                future.set_exception(exc)

        if not self._rt.marshal(apply_into_future):
            return apply()
        return future.result()

    @property
    def revision(self) -> int:
        """Number of changes since creation."""
        return self._rt.arena.revisions[self._id]

    @property
    def dependents(self) -> frozenset:
        """Readers that read this source on their latest run."""
        nodes = self._rt.arena.nodes
        return frozenset(nodes[i] for i in self._rt.arena.observers.get(self._id, ()))


class Cell(_Source, Generic[T]):
    """A single tracked value.

    Every set() counts as a change unless an ``equals`` policy says the new
    value is the same as the old one.
    """

    __slots__ = ("_id", "_rt", "_equals")

    def __init__(
        self,
        value: T,
        *,
        equals: Callable[[T, T], bool] | None = None,
        runtime: Runtime | None = None,
    ) -> None:
        self._rt = runtime if runtime is not None else get_runtime()
        self._id = self._rt.arena.register(self)
        self._equals = equals
        self._rt.arena.values[self._id] = value
        self._rt.arena.revisions[self._id] = 0

    def read(self) -> T:
        """Read the value. If inside a reader, registers the dependency."""
        self._track()
        return self._value()

    def peek(self) -> T:
        """Read the value without registering a dependency."""
        return self._value()

    def set(self, value: T) -> None:
        """Write a new value. Auto-marshals from foreign threads."""
        if not self._rt.marshal(lambda v=value: self._set_direct(v)):
            self._set_direct(value)

    def update(self, fn: Callable[[T], T]) -> None:
        """Set to fn(current value), reading the current value untracked."""
        self.set(fn(self.peek()))

    def _set_direct(self, value: T) -> None:
        old = self._value()
        if self._equals is not None and self._equals(old, value):
            return
        self._rt.arena.values[self._id] = value
        self._changed()

    def __repr__(self) -> str:
        return f"Cell({self._rt.arena.values.get(self._id)!r})"


def create_cell(
    value: T,
    *,
    equals: Callable[[T, T], bool] | None = None,
    runtime: Runtime | None = None,
) -> Cell[T]:
    return Cell(value, equals=equals, runtime=runtime)


class CellList(_Source, Generic[T]):
    """A tracked list.

    Any read operation (iteration, indexing, len) registers a dependency.
    Any mutation (append, extend, __setitem__, etc.) counts as a change.
    """

    __slots__ = ("_id", "_rt")

    def __init__(self, items: list[T] | None = None, *, runtime: Runtime | None = None) -> None:
        self._rt = runtime if runtime is not None else get_runtime()
        self._id = self._rt.arena.register(self)
        self._rt.arena.values[self._id] = list(items) if items else []
        self._rt.arena.revisions[self._id] = 0

    @property
    def _items(self) -> list[T]:
        return self._value()

    def peek(self) -> list[T]:
        """Copy of the items, without registering a dependency."""
        return list(self._items)

    # --- Read operations (track) ---

    def __getitem__(self, index: int) -> T:
        self._track()
        return self._items[index]

    def __len__(self) -> int:
        self._track()
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        self._track()
        return iter(list(self._items))

    def __contains__(self, item: T) -> bool:
        self._track()
        return item in self._items

    def __bool__(self) -> bool:
        self._track()
        return bool(self._items)

    # --- Write operations (change, marshaled off the owner thread) ---

    def append(self, item: T) -> None:
        self._write(lambda: self._items.append(item))

    def extend(self, items) -> None:
        items = list(items)
        self._write(lambda: self._items.extend(items))

    def insert(self, index: int, item: T) -> None:
        self._write(lambda: self._items.insert(index, item))

    def pop(self, index: int = -1) -> T:
        return self._write(lambda: self._items.pop(index), wait=True)

    def remove(self, item: T) -> None:
        self._write(lambda: self._items.remove(item))

    def clear(self) -> None:
        self._write(self._items.clear)

    def __setitem__(self, index: int, value: T) -> None:
        def assign():
            self._items[index] = value

        self._write(assign)

    def __delitem__(self, index: int) -> None:
        def delete():
            del self._items[index]

        self._write(delete)

    def __repr__(self) -> str:
        return f"CellList({self._items!r})"


class CellDict(_Source, Generic[KT, VT]):
    """A tracked dict."""

    __slots__ = ("_id", "_rt")

    def __init__(self, data: dict[KT, VT] | None = None, *, runtime: Runtime | None = None) -> None:
        self._rt = runtime if runtime is not None else get_runtime()
        self._id = self._rt.arena.register(self)
        self._rt.arena.values[self._id] = dict(data) if data else {}
        self._rt.arena.revisions[self._id] = 0

    @property
    def _data(self) -> dict[KT, VT]:
        return self._value()

    def peek(self) -> dict[KT, VT]:
        return dict(self._data)

    # --- Read operations (track) ---

    def __getitem__(self, key: KT) -> VT:
        self._track()
        return self._data[key]

    def get(self, key: KT, default: VT | None = None) -> VT | None:
        self._track()
        return self._data.get(key, default)

    def __contains__(self, key: KT) -> bool:
        self._track()
        return key in self._data

    def __len__(self) -> int:
        self._track()
        return len(self._data)

    def __iter__(self) -> Iterator[KT]:
        self._track()
        return iter(list(self._data))

    def keys(self):
        self._track()
        return self._data.keys()

    def values(self):
        self._track()
        return self._data.values()

    def items(self):
        self._track()
        return self._data.items()

    def __bool__(self) -> bool:
        self._track()
        return bool(self._data)

    # --- Write operations (change, marshaled off the owner thread) ---

    def __setitem__(self, key: KT, value: VT) -> None:
        def assign():
            self._data[key] = value

        self._write(assign)

    def __delitem__(self, key: KT) -> None:
        def delete():
            del self._data[key]

        self._write(delete)

    def pop(self, key: KT, *args) -> VT:
        return self._write(lambda: self._data.pop(key, *args), wait=True)

    def update(self, other=None, **kwargs) -> None:
        def merge():
            if other:
                self._data.update(other)
            if kwargs:
                self._data.update(kwargs)

        self._write(merge)

    def clear(self) -> None:
        self._write(self._data.clear)

    def setdefault(self, key: KT, default: VT | None = None) -> VT:
        data = self._data
        if key in data:
            return data[key]
        return self._write(lambda: data.setdefault(key, default), wait=True)

    def __repr__(self) -> str:
        return f"CellDict({self._data!r})"
