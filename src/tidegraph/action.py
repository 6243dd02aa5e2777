"""Actions and transactions — writes grouped into one external event.

Wrapping writes in an @action or `with transaction()` defers running any
reaction until the outermost scope exits. Reactions then see every write at
once instead of glitchy intermediate states.
"""

from __future__ import annotations

import functools
from contextlib import contextmanager
from typing import Callable, ParamSpec, TypeVar

from tidegraph.runtime import Runtime, get_runtime

P = ParamSpec("P")
R = TypeVar("R")


def action(fn: Callable[P, R]) -> Callable[P, R]:
    """Decorator: batch every write inside fn on the active runtime.

    Usage:
        counter_a = create_cell(0)
        counter_b = create_cell(0)

        @action
        def swap():
            a, b = counter_a.peek(), counter_b.peek()
            counter_a.set(b)
            counter_b.set(a)
            # reactions see both changes at once, not one at a time
    """

    @functools.wraps(fn)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        with get_runtime().batch():
            return fn(*args, **kwargs)

    return wrapper


@contextmanager
def transaction(runtime: Runtime | None = None):
    """Context manager for batching writes.

    Usage:
        with transaction():
            counter_a.set(1)
            counter_b.set(2)
            # reactions run here, after both are set
    """
    rt = runtime if runtime is not None else get_runtime()
    with rt.batch():
        yield rt
