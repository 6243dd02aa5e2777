"""Dependency tracking engine — the heart of tidegraph.

The Tracker keeps a stack of frames, one per running reader (Computation or
Reaction). Any source read while a frame is on top registers itself as a
dependency of that frame's reader. Isolation pushes a frame with no reader,
so reads inside it register nothing.

When a reader finishes, its dependency set is replaced wholesale by what it
read on this run. Conditional reads therefore widen and narrow over time.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import TYPE_CHECKING, Callable, Iterator, TypeVar

if TYPE_CHECKING:
    from tidegraph._anchor import Arena

R = TypeVar("R")


class _Frame:
    __slots__ = ("reader", "reads")

    def __init__(self, reader: int | None) -> None:
        self.reader = reader
        self.reads: set[int] = set()


class Tracker:
    """Stack of currently running readers for one runtime.

    on_settle is called when an isolation block leaves the stack empty.
    Readers settle through their own node once their state is stored.
    """

    def __init__(self, arena: Arena, on_settle: Callable[[], None] | None = None) -> None:
        self._arena = arena
        self._stack: list[_Frame] = []
        self.on_settle = on_settle

    @property
    def depth(self) -> int:
        return len(self._stack)

    def current_reader(self) -> int | None:
        """Id of the reader on top of the stack, or None (also when isolated)."""
        if not self._stack:
            return None
        return self._stack[-1].reader

    def record(self, source_id: int) -> None:
        """Register a read of source_id by the current reader, if any."""
        if not self._stack:
            return
        frame = self._stack[-1]
        if frame.reader is None:
            return
        frame.reads.add(source_id)
        # Linked immediately so a write later in the same run still sees it.
        self._arena.link(frame.reader, source_id)

    def with_reader(self, reader_id: int, body: Callable[[], R]) -> R:
        """Run body with reader_id on top of the stack."""
        frame = _Frame(reader_id)
        self._stack.append(frame)
        try:
            return body()
        finally:
            self._stack.pop()
            self._arena.retain(reader_id, frame.reads)

    @contextmanager
    def isolated(self) -> Iterator[None]:
        """Suspend dependency recording for the duration of the block."""
        self._stack.append(_Frame(None))
        try:
            yield
        finally:
            self._stack.pop()
            self._settle()

    def isolate(self, body: Callable[..., R], *args, **kwargs) -> R:
        with self.isolated():
            return body(*args, **kwargs)

    def _settle(self) -> None:
        if not self._stack and self.on_settle is not None:
            self.on_settle()
