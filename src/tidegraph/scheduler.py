"""Invalidation scheduler — turns writes into waves of reaction runs.

A write marks Computations invalid and Reactions pending (collecting). Once
control is back at the top level and no batch is open, pending reactions run
(flushing). A reaction that writes during a flush does not re-enter the
current wave; its invalidations queue the next one. Waves run strictly in the
order they were created.

Nothing here detects cycles. A reaction that keeps rewriting a cell it reads
produces waves forever unless the host sets max_waves.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING, Callable, Iterable, Iterator

from tidegraph.errors import CycleExhaustion, ReactiveError

if TYPE_CHECKING:
    from tidegraph._anchor import Arena
    from tidegraph._tracking import Tracker

logger = logging.getLogger("tidegraph.scheduler")

IDLE = "idle"
COLLECTING = "collecting"
FLUSHING = "flushing"


class Scheduler:
    """Batches invalidations and runs pending reactions once per wave."""

    def __init__(
        self,
        arena: Arena,
        tracker: Tracker,
        *,
        auto_flush: bool = True,
        max_waves: int | None = None,
        error_sink: Callable[[ReactiveError], None] | None = None,
    ) -> None:
        self._arena = arena
        self._tracker = tracker
        self.auto_flush = auto_flush
        self.max_waves = max_waves
        self.error_sink = error_sink
        self._pending: set[int] = set()
        self._batch_depth = 0
        self._flushing = False
        self.waves_flushed = 0

    @property
    def state(self) -> str:
        if self._flushing:
            return FLUSHING
        if self._pending or self._batch_depth > 0:
            return COLLECTING
        return IDLE

    @property
    def pending_count(self) -> int:
        """Number of reactions waiting to run. Useful for testing."""
        return len(self._pending)

    # ─── Batching ────────────────────────────────────────────────────────

    def begin_batch(self) -> None:
        """Enter a batching scope. Nested batches are supported."""
        self._batch_depth += 1

    def end_batch(self) -> None:
        """Exit a batching scope. The outermost exit drains pending reactions."""
        self._batch_depth -= 1
        if self._batch_depth == 0:
            self.settle()

    @contextmanager
    def batch(self) -> Iterator[None]:
        self.begin_batch()
        try:
            yield
        finally:
            self.end_batch()

    # ─── Collecting ──────────────────────────────────────────────────────

    def enqueue(self, reaction_id: int) -> None:
        self._pending.add(reaction_id)

    def discard(self, reaction_id: int) -> None:
        self._pending.discard(reaction_id)

    def invalidate(self, node_ids: Iterable[int]) -> None:
        """Walk the graph from node_ids, marking each reachable node once."""
        nodes = self._arena.nodes
        visited: set[int] = set()
        stack = list(node_ids)
        while stack:
            node_id = stack.pop()
            if node_id in visited:
                continue
            visited.add(node_id)
            node = nodes.get(node_id)
            if node is not None:
                stack.extend(node._mark_stale(self))

    # ─── Flushing ────────────────────────────────────────────────────────

    def settle(self) -> None:
        """Drain if control is at the top level and auto-flush is on."""
        if (
            self.auto_flush
            and self._pending
            and self._batch_depth == 0
            and not self._flushing
            and self._tracker.depth == 0
        ):
            self.flush()

    def flush(self) -> int:
        """Run pending reactions until none remain. Returns the number of waves.

        Calling flush() from inside a running wave is a no-op; the outer loop
        already picks up whatever was queued.
        """
        if self._flushing:
            return 0
        self._flushing = True
        waves = 0
        try:
            while self._pending:
                if self.max_waves is not None and waves >= self.max_waves:
                    nodes = self._arena.nodes
                    stuck = [nodes[i] for i in sorted(self._pending) if i in nodes]
                    self._pending.clear()
                    failure = CycleExhaustion(waves, stuck)
                    self.report(failure)
                    raise failure
                waves += 1
                # Snapshot and clear; writes during this wave queue the next one.
                batch = sorted(self._pending)
                self._pending.clear()
                logger.debug("Flushing wave %d: %d reaction(s)", waves, len(batch))
                for node_id in batch:
                    node = self._arena.nodes.get(node_id)
                    if node is not None:
                        node._run()
        finally:
            self._flushing = False
            self.waves_flushed += waves
        return waves

    def report(
        self,
        failure: ReactiveError,
        handler: Callable[[ReactiveError], None] | None = None,
    ) -> None:
        """Hand a failure to handler (or the host's error sink), or log it.

        A sink that raises is logged and swallowed so the wave keeps going.
        """
        sink = handler if handler is not None else self.error_sink
        if sink is None:
            logger.error("Unhandled reactive failure: %s", failure, exc_info=failure)
            return
        try:
            sink(failure)
        except Exception:
            logger.exception("Error handler raised while reporting %s", failure)
