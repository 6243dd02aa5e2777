"""Scope — owner of a group of nodes with a shared lifetime.

A host typically opens one Scope per session or per view. Keyed cells give
a small store (get/set/batched update); the factories register computations
and reactions so dispose() tears all of them down together.
"""

from __future__ import annotations

from typing import Callable, TypeVar

from tidegraph.cell import Cell
from tidegraph.computed import Computation
from tidegraph.reaction import ErrorHandler, Reaction, create_reaction
from tidegraph.runtime import Runtime, get_runtime

T = TypeVar("T")


class Scope:
    """Keyed cells plus the computations and reactions that depend on them."""

    def __init__(
        self,
        schema: dict[str, object] | None = None,
        initial: dict | None = None,
        *,
        runtime: Runtime | None = None,
    ) -> None:
        self._rt = runtime if runtime is not None else get_runtime()
        self._cells: dict[str, Cell] = {}
        self._owned: list[Computation | Reaction] = []
        self._loose: list[Cell] = []
        self._disposed = False
        for key, default in (schema or {}).items():
            value = initial.get(key, default) if initial else default
            self._cells[key] = Cell(value, runtime=self._rt)

    @property
    def runtime(self) -> Runtime:
        return self._rt

    @property
    def disposed(self) -> bool:
        return self._disposed

    def cell(self, value: T, *, key: str | None = None, equals=None) -> Cell[T]:
        """Create a cell in this scope, optionally addressable by key."""
        c = Cell(value, equals=equals, runtime=self._rt)
        if key is not None:
            self._cells[key] = c
        else:
            self._loose.append(c)
        return c

    def computation(self, fn: Callable[[], T]) -> Computation[T]:
        c = Computation(fn, runtime=self._rt)
        self._owned.append(c)
        return c

    def reaction(self, fn: Callable[[], None], *, on_error: ErrorHandler | None = None) -> Reaction:
        r = create_reaction(fn, on_error=on_error, runtime=self._rt)
        self._owned.append(r)
        return r

    def get(self, key: str) -> object:
        c = self._cells.get(key)
        return c.read() if c is not None else None

    def set(self, key: str, value: object) -> None:
        c = self._cells.get(key)
        if c is not None:
            c.set(value)

    def update(self, values: dict) -> None:
        """Set several keys as one external event."""
        with self._rt.batch():
            for key, value in values.items():
                self.set(key, value)

    def dispose(self) -> None:
        """Dispose every node created through this scope, cells included.

        A cell created here raises ReactiveError on any later read or write.
        """
        for node in self._owned:
            node.dispose()
        self._owned.clear()
        arena = self._rt.arena
        for c in self._cells.values():
            arena.forget(c._id)
        for c in self._loose:
            arena.forget(c._id)
        self._cells.clear()
        self._loose.clear()
        self._disposed = True

    def __enter__(self) -> Scope:
        return self

    def __exit__(self, *exc_info) -> None:
        self.dispose()
