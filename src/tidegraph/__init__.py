"""tidegraph: a reactive dataflow engine with lazy computations and eager reactions."""

from importlib.metadata import version as _version

__version__ = _version("tidegraph")

from tidegraph.errors import (
    ComputationFailure,
    CycleExhaustion,
    CyclicComputationError,
    ReactionFailure,
    ReactiveError,
)
from tidegraph.runtime import (
    Runtime,
    flush,
    get_runtime,
    invalidate_later,
    isolate,
    schedule_after,
    set_scheduler,
)
from tidegraph.timers import ManualClock, MonotonicClock, TimerHandle
from tidegraph.cell import Cell, CellList, CellDict, create_cell, same_value
from tidegraph.computed import Computation, computed, create_computation
from tidegraph.reaction import Reaction, create_reaction, reaction
from tidegraph.action import action, transaction
from tidegraph.scope import Scope
from tidegraph.shared import SharedCache, SharedCell

__all__ = [
    "Cell",
    "CellList",
    "CellDict",
    "create_cell",
    "same_value",
    "Computation",
    "computed",
    "create_computation",
    "Reaction",
    "create_reaction",
    "reaction",
    "action",
    "transaction",
    "Runtime",
    "get_runtime",
    "flush",
    "isolate",
    "schedule_after",
    "invalidate_later",
    "set_scheduler",
    "ManualClock",
    "MonotonicClock",
    "TimerHandle",
    "Scope",
    "SharedCell",
    "SharedCache",
    "ReactiveError",
    "ComputationFailure",
    "ReactionFailure",
    "CycleExhaustion",
    "CyclicComputationError",
]
