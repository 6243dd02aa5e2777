"""Data anchor — plain Python structures that hold all reactive state.

One Arena per Runtime. Cells, Computations, and Reactions are thin handles
holding an integer id into it. Edges are adjacency sets of ids in both
directions, so a reader can be detached without scanning every source.
"""

from __future__ import annotations

import itertools


class Arena:
    """Per-runtime storage for node state and dependency edges."""

    def __init__(self) -> None:
        self.nodes: dict[int, object] = {}  # id -> handle

        # Source state (Cell, CellList, CellDict)
        self.values: dict[int, object] = {}
        self.revisions: dict[int, int] = {}

        # Edges
        self.observers: dict[int, set[int]] = {}  # source id -> reader ids
        self.dependencies: dict[int, set[int]] = {}  # reader id -> source ids

        # Derivation state (Computation + Reaction)
        self.derivation_fns: dict[int, object] = {}
        self.cached_values: dict[int, object] = {}
        self.errors: dict[int, BaseException | None] = {}
        self.valid: dict[int, bool] = {}
        self.stamps: dict[int, int] = {}
        self.running: dict[int, bool] = {}
        self.disposed: dict[int, bool] = {}
        self.run_counts: dict[int, int] = {}
        self.timers: dict[int, object] = {}  # id -> live re-arm TimerHandle

        self._id_counter = itertools.count(1)

    def register(self, node) -> int:
        """Allocate an id for a new handle. Ids increase in creation order."""
        node_id = next(self._id_counter)
        self.nodes[node_id] = node
        self.observers[node_id] = set()
        return node_id

    def link(self, reader_id: int, source_id: int) -> None:
        self.observers[source_id].add(reader_id)

    def retain(self, reader_id: int, reads: set[int]) -> None:
        """Replace a reader's dependency set, unlinking sources it no longer read."""
        old = self.dependencies.get(reader_id, set())
        for source_id in old - reads:
            observers = self.observers.get(source_id)
            if observers is not None:
                observers.discard(reader_id)
        self.dependencies[reader_id] = reads

    def detach(self, reader_id: int) -> None:
        self.retain(reader_id, set())

    def forget(self, node_id: int) -> None:
        """Drop every trace of a node. Its handle reads as disposed afterwards."""
        self.detach(node_id)
        for table in (
            self.nodes,
            self.values,
            self.revisions,
            self.observers,
            self.dependencies,
            self.derivation_fns,
            self.cached_values,
            self.errors,
            self.valid,
            self.stamps,
            self.running,
            self.disposed,
            self.run_counts,
            self.timers,
        ):
            table.pop(node_id, None)

    def __len__(self) -> int:
        return len(self.nodes)

    def edges(self) -> list[tuple[int, int]]:
        # Readers keep ids of forgotten sources until their next run.
        return [
            (reader_id, source_id)
            for reader_id, sources in self.dependencies.items()
            for source_id in sources
            if source_id in self.nodes
        ]
