"""Tests for Computation values."""

import traceback

import pytest

from tidegraph import (
    ComputationFailure,
    Computation,
    CyclicComputationError,
    ReactiveError,
    computed,
    create_cell,
    create_computation,
    create_reaction,
    same_value,
    transaction,
)


def counting(fn):
    """Wrap fn so the test can see how often it ran."""

    def wrapper():
        wrapper.calls += 1
        return fn()

    wrapper.calls = 0
    return wrapper


class TestComputation:
    def test_lazy_eval(self):
        o = create_cell(5)
        fn = counting(lambda: o.read() * 2)
        c = Computation(fn)
        assert fn.calls == 0  # not yet evaluated
        assert c.get() == 10
        assert fn.calls == 1

    def test_caches_until_invalid(self):
        o = create_cell(5)
        fn = counting(lambda: o.read() * 2)
        c = Computation(fn)
        c.get()
        c.get()
        assert fn.calls == 1

    def test_invalidation(self):
        o = create_cell(5)
        c = Computation(lambda: o.read() * 2)
        assert c.get() == 10
        o.set(10)
        assert not c.valid
        assert c.get() == 20

    def test_invalidation_does_not_recompute(self):
        o = create_cell(1)
        fn = counting(lambda: o.read())
        c = Computation(fn)
        c.get()
        o.set(2)
        o.set(3)
        assert fn.calls == 1
        assert c.get() == 3
        assert fn.calls == 2

    def test_equal_write_keeps_cache(self):
        o = create_cell(4, equals=same_value)
        fn = counting(lambda: o.read() + 1)
        c = Computation(fn)
        assert c.get() == 5
        o.set(4)
        assert c.get() == 5
        assert fn.calls == 1

    def test_unequal_write_recomputes(self):
        o = create_cell(4, equals=same_value)
        fn = counting(lambda: o.read() + 1)
        c = Computation(fn)
        c.get()
        o.set(6)
        assert c.get() == 7
        assert fn.calls == 2

    def test_dependency_narrowing(self):
        """A branch not taken on the latest run is no longer a dependency."""
        flag = create_cell(True)
        a = create_cell(1)
        b = create_cell(2)
        fn = counting(lambda: a.read() if flag.read() else b.read())
        c = Computation(fn)
        assert c.get() == 1
        assert c.dependencies == frozenset({flag, a})

        flag.set(False)
        assert c.get() == 2
        assert c.dependencies == frozenset({flag, b})
        assert a.dependents == frozenset()

        a.set(100)
        assert c.valid
        assert c.get() == 2
        assert fn.calls == 2

    def test_chained(self):
        o = create_cell(3)
        doubled = Computation(lambda: o.read() * 2)
        quadrupled = Computation(lambda: doubled.get() * 2)
        assert quadrupled.get() == 12
        o.set(5)
        assert not quadrupled.valid
        assert quadrupled.get() == 20

    def test_diamond_recomputes_once(self):
        a = create_cell(1)
        left = Computation(lambda: a.read() + 1)
        right = Computation(lambda: a.read() * 2)
        bottom_fn = counting(lambda: left.get() + right.get())
        bottom = Computation(bottom_fn)
        log = []
        create_reaction(lambda: log.append(bottom.get()))
        assert log == [4]
        a.set(2)
        assert log == [4, 7]
        assert bottom_fn.calls == 2

    def test_stamp_tracks_runtime_revision(self, runtime):
        o = create_cell(0)
        c = Computation(lambda: o.read())
        assert c.stamp == -1
        c.get()
        assert c.stamp == runtime.revision
        o.set(1)
        c.get()
        assert c.stamp == runtime.revision == 1

    def test_dispose(self, runtime):
        o = create_cell(5)
        c = Computation(lambda: o.read() * 2)
        c.get()
        c.dispose()
        assert c.disposed
        assert o.dependents == frozenset()
        assert c not in runtime.arena.nodes.values()
        with pytest.raises(ReactiveError):
            c.get()
        c.dispose()

    def test_dispose_while_recomputing(self, runtime):
        holder = []

        def body():
            holder[0].dispose()
            return 1

        c = Computation(body)
        holder.append(c)
        with pytest.raises(ReactiveError):
            c.get()
        assert c.disposed
        assert c.run_count == 0
        assert len(runtime.arena) == 0

    def test_explicit_invalidate(self):
        fn = counting(lambda: 1)
        c = Computation(fn)
        c.get()
        c.invalidate()
        c.get()
        assert fn.calls == 2

    def test_propagates_to_reactions(self):
        o = create_cell(5)
        c = Computation(lambda: o.read() * 2)
        log = []
        create_reaction(lambda: log.append(c.get()))
        assert log == [10]
        o.set(10)
        assert log == [10, 20]

    def test_sum_of_two_writes_in_one_event(self):
        a = create_cell(0)
        b = create_cell(0)
        fn = counting(lambda: a.read() + b.read())
        total = create_computation(fn)
        total.get()
        with transaction():
            a.set(2)
            b.set(3)
        assert total.get() == 5
        assert fn.calls == 2

    def test_self_read_is_a_cycle(self):
        holder = {}
        c = Computation(lambda: holder["c"].get() + 1)
        holder["c"] = c
        with pytest.raises(ComputationFailure) as info:
            c.get()
        assert isinstance(info.value.error, CyclicComputationError)


class TestComputationFailure:
    def test_failure_is_cached_until_invalidated(self):
        failing = create_cell(True)

        def body():
            if failing.read():
                raise ValueError("boom")
            return "ok"

        fn = counting(body)
        c = Computation(fn)
        with pytest.raises(ComputationFailure) as first:
            c.get()
        with pytest.raises(ComputationFailure) as second:
            c.get()
        assert first.value is second.value
        assert isinstance(first.value.error, ValueError)
        assert first.value.__cause__ is first.value.error
        assert fn.calls == 1

        failing.set(False)
        assert c.get() == "ok"
        assert fn.calls == 2

    def test_fails_again_after_invalidation(self):
        n = create_cell(1)

        def body():
            raise RuntimeError(f"bad {n.read()}")

        c = Computation(body)
        with pytest.raises(ComputationFailure, match="bad 1"):
            c.get()
        n.set(2)
        with pytest.raises(ComputationFailure, match="bad 2"):
            c.get()

    def test_failure_poisons_dependents(self):
        failing = create_cell(True)

        def root_fn():
            if failing.read():
                raise KeyError("missing")
            return 1

        root = Computation(root_fn)
        child = Computation(lambda: root.get() + 1)
        with pytest.raises(ComputationFailure) as info:
            child.get()
        assert info.value.node is root

        failing.set(False)
        assert child.get() == 2

    def test_failure_does_not_touch_unrelated_nodes(self):
        bad = Computation(lambda: 1 / 0)
        good = Computation(lambda: 1)
        with pytest.raises(ComputationFailure):
            bad.get()
        assert good.get() == 1

    def test_repeated_reads_do_not_grow_the_traceback(self):
        bad = Computation(lambda: 1 / 0)
        depths = []
        for _ in range(200):
            with pytest.raises(ComputationFailure) as info:
                bad.get()
            depths.append(len(list(traceback.walk_tb(info.value.__traceback__))))
        assert max(depths) < 10
        assert depths[-1] == depths[1]
        # The original failure keeps its own traceback.
        assert info.value.__cause__.__traceback__ is not None


class TestComputedDecorator:
    def test_decorator_factory(self):
        o = create_cell(7)

        @computed
        def doubled():
            return o.read() * 2

        assert doubled.get() == 14
        o.set(3)
        assert doubled.get() == 6
        assert "doubled" in repr(doubled)
