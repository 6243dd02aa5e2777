"""Exception hierarchy for the reactive engine.

ComputationFailure travels the normal return path to value consumers.
ReactionFailure and CycleExhaustion have no caller to raise into, so they are
handed to an error sink instead.
"""

from __future__ import annotations


class ReactiveError(Exception):
    """Base class for every error raised by tidegraph."""


class ComputationFailure(ReactiveError):
    """A Computation's function raised. Cached until the node is invalidated."""

    def __init__(self, node, error: BaseException) -> None:
        super().__init__(f"computation {node!r} failed: {error!r}")
        self.node = node
        self.error = error


class ReactionFailure(ReactiveError):
    """A Reaction raised while flushing. The reaction has been disposed."""

    def __init__(self, reaction, error: BaseException) -> None:
        super().__init__(f"reaction {reaction!r} failed: {error!r}")
        self.reaction = reaction
        self.error = error


class CycleExhaustion(ReactiveError):
    """One flush produced more waves than the runtime's max_waves ceiling."""

    def __init__(self, waves: int, pending: list) -> None:
        super().__init__(
            f"gave up after {waves} waves; {len(pending)} reaction(s) still pending"
        )
        self.waves = waves
        self.pending = pending


class CyclicComputationError(ReactiveError):
    """A Computation read itself while recomputing."""
