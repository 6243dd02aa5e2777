"""Tests for Reaction, create_reaction, and reaction."""

import logging

from tidegraph import (
    ComputationFailure,
    Computation,
    ReactionFailure,
    Runtime,
    create_cell,
    create_reaction,
    reaction,
    transaction,
)


class TestCreateReaction:
    def test_runs_immediately(self):
        o = create_cell(10)
        log = []
        create_reaction(lambda: log.append(o.read()))
        assert log == [10]

    def test_reruns_on_change(self):
        o = create_cell(10)
        log = []
        create_reaction(lambda: log.append(o.read()))
        o.set(20)
        assert log == [10, 20]

    def test_dispose_stops(self):
        o = create_cell(10)
        log = []
        r = create_reaction(lambda: log.append(o.read()))
        r.dispose()
        o.set(20)
        assert log == [10]
        assert r.disposed
        assert o.dependents == frozenset()

    def test_dispose_releases_arena_entries(self, runtime):
        o = create_cell(10)
        r = create_reaction(lambda: o.read())
        r.dispose()
        assert len(runtime.arena) == 1
        assert runtime.arena.derivation_fns == {}
        assert r.run_count == 0
        assert repr(r).endswith("disposed)")
        r.dispose()
        r.schedule()
        assert runtime.scheduler.pending_count == 0

    def test_runs_once_for_two_writes_in_one_event(self):
        a = create_cell(0)
        b = create_cell(0)
        log = []
        r = create_reaction(lambda: log.append((a.read(), b.read())))
        with transaction():
            a.set(1)
            b.set(2)
        assert log == [(0, 0), (1, 2)]
        assert r.run_count == 2

    def test_dependency_narrowing(self):
        running = create_cell(True)
        n = create_cell(0)
        log = []
        r = create_reaction(lambda: log.append(n.read() if running.read() else None))
        running.set(False)
        assert r.dependencies == frozenset({running})
        n.set(5)
        assert log == [0, None]

        running.set(True)
        assert log == [0, None, 5]
        assert r.dependencies == frozenset({running, n})

    def test_dispose_mid_run_waits_for_quiescence(self):
        a = create_cell(0)
        holder = {}
        log = []

        def body():
            value = a.read()
            log.append(value)
            if value == 1:
                holder["r"].dispose()
                log.append(holder["r"].disposed)
                log.append(len(holder["r"].dependencies))

        holder["r"] = create_reaction(body)
        a.set(1)
        # Edges were still in place while the body was running.
        assert log == [0, 1, True, 1]
        assert holder["r"].dependencies == frozenset()
        a.set(2)
        assert log == [0, 1, True, 1]

    def test_reads_computation(self):
        a = create_cell(2)
        sq = Computation(lambda: a.read() ** 2)
        log = []
        create_reaction(lambda: log.append(sq.get()))
        a.set(3)
        assert log == [4, 9]


class TestReactionFailure:
    def test_failure_disposes_and_reports(self):
        failures = []
        rt = Runtime(error_sink=failures.append)
        with rt.activate():
            a = create_cell(0)
            log = []

            def fragile():
                if a.read() > 0:
                    raise RuntimeError("nope")

            bad = create_reaction(fragile)
            create_reaction(lambda: log.append(a.read()))

            a.set(1)
            assert len(failures) == 1
            assert isinstance(failures[0], ReactionFailure)
            assert failures[0].reaction is bad
            assert isinstance(failures[0].error, RuntimeError)
            assert bad.disposed
            # The rest of the wave still ran.
            assert log == [0, 1]

            a.set(2)
            assert log == [0, 1, 2]
            assert len(failures) == 1

    def test_on_error_takes_precedence(self):
        sink = []
        handled = []
        rt = Runtime(error_sink=sink.append)
        with rt.activate():
            a = create_cell(0)

            def fragile():
                if a.read():
                    raise ValueError("bad value")

            create_reaction(fragile, on_error=handled.append)
            a.set(1)
        assert sink == []
        assert len(handled) == 1
        assert isinstance(handled[0].error, ValueError)

    def test_raising_handler_does_not_abort_the_wave(self, caplog):
        a = create_cell(0)
        log = []

        def fragile():
            if a.read():
                raise RuntimeError("nope")

        def broken_handler(failure):
            raise LookupError("handler broke")

        create_reaction(fragile, on_error=broken_handler)
        create_reaction(lambda: log.append(a.read()))
        with caplog.at_level(logging.ERROR, logger="tidegraph.scheduler"):
            a.set(1)
        assert log == [0, 1]
        assert "Error handler raised" in caplog.text
        assert "handler broke" in caplog.text

    def test_raising_error_sink_does_not_abort_the_wave(self):
        def sink(failure):
            raise LookupError("sink broke")

        rt = Runtime(error_sink=sink)
        with rt.activate():
            a = create_cell(0)
            log = []

            def fragile():
                if a.read():
                    raise RuntimeError("nope")

            create_reaction(fragile)
            create_reaction(lambda: log.append(a.read()))
            a.set(1)
        assert log == [0, 1]

    def test_default_sink_logs(self, caplog):
        a = create_cell(0)

        def fragile():
            if a.read():
                raise RuntimeError("exploded")

        create_reaction(fragile)
        with caplog.at_level(logging.ERROR, logger="tidegraph.scheduler"):
            a.set(1)
        assert "Unhandled reactive failure" in caplog.text
        assert "exploded" in caplog.text

    def test_computation_failure_reaches_reaction(self):
        failures = []
        rt = Runtime(error_sink=failures.append)
        with rt.activate():
            divisor = create_cell(1)
            ratio = Computation(lambda: 10 / divisor.read())
            log = []
            r = create_reaction(lambda: log.append(ratio.get()))
            divisor.set(0)
        assert log == [10.0]
        assert r.disposed
        assert isinstance(failures[0].error, ComputationFailure)


class TestDataReaction:
    def test_no_initial_effect(self):
        """Without fire_immediately, effect doesn't run on setup."""
        o = create_cell("a")
        effects = []
        reaction(lambda: o.read(), lambda v: effects.append(v))
        assert effects == []

    def test_fires_on_change(self):
        o = create_cell("a")
        effects = []
        reaction(lambda: o.read(), lambda v: effects.append(v))
        o.set("b")
        assert effects == ["b"]

    def test_fire_immediately(self):
        o = create_cell("a")
        effects = []
        reaction(lambda: o.read(), lambda v: effects.append(v), fire_immediately=True)
        assert effects == ["a"]

    def test_dedup_effect(self):
        """Effect only fires when data_fn's result actually changes."""
        o = create_cell(1)
        effects = []
        reaction(
            lambda: "even" if o.read() % 2 == 0 else "odd",
            lambda v: effects.append(v),
        )
        o.set(3)
        assert effects == []
        o.set(4)
        assert effects == ["even"]

    def test_effect_reads_are_not_tracked(self):
        trigger = create_cell(0)
        other = create_cell("x")
        effects = []
        r = reaction(
            lambda: trigger.read(),
            lambda v: effects.append((v, other.read())),
        )
        trigger.set(1)
        other.set("y")
        assert effects == [(1, "x")]
        assert r.dependencies == frozenset({trigger})

    def test_dispose(self):
        o = create_cell(1)
        effects = []
        r = reaction(lambda: o.read(), lambda v: effects.append(v))
        o.set(2)
        r.dispose()
        o.set(3)
        assert effects == [2]
