"""Tests for tapflow.scheduler — run context, presentation policy, ordering."""

from __future__ import annotations

import asyncio

import pytest

from tapflow.assertions import AssertionContext
from tapflow.errors import BailoutError, UnhandledBodyFailure
from tapflow.events import Event, EventKind, PlanRange
from tapflow.reporters import CollectingReporter, TapReporter
from tapflow.scheduler import Presentation, Run, RunResult


def _after_title(events: list[Event], title: str) -> list[Event]:
    index = next(
        i for i, e in enumerate(events) if e.kind is EventKind.TITLE and e.payload == title
    )
    return events[index:]


async def _child(t: AssertionContext) -> None:
    t.ok(True, "child 1")
    t.ok(True, "child 2")


async def _parent(t: AssertionContext) -> None:
    t.ok(True, "top")
    await t.test("nested", _child)


# ── Run context ──────────────────────────────────────────────────────────────


class TestRun:
    def test_requires_running_loop(self) -> None:
        with pytest.raises(RuntimeError):
            Run()

    async def test_defaults_to_flattened(self) -> None:
        run = Run()
        assert run.presentation is Presentation.FLATTENED
        run.test("a", lambda t: None)
        assert run.presentation is Presentation.FLATTENED
        await run.start(CollectingReporter())

    async def test_nested_switches_to_hierarchical(self) -> None:
        run = Run()
        run.nested("a", lambda t: None)
        assert run.presentation is Presentation.HIERARCHICAL
        await run.start(CollectingReporter())

    async def test_registration_returns_completion(self) -> None:
        run = Run()
        future = run.test("a", lambda t: t.ok(True))
        summary = await future
        assert summary.description == "a"
        assert summary.passed is True
        await run.start(CollectingReporter())

    async def test_start_only_once(self, reporter: CollectingReporter) -> None:
        run = Run()
        await run.start(reporter)
        with pytest.raises(RuntimeError, match="already started"):
            await run.start(reporter)

    async def test_nested_registration_after_await(
        self, reporter: CollectingReporter, wait
    ) -> None:
        run = Run()
        await wait(10)
        run.nested("late", lambda t: t.ok(True))
        await run.start(reporter)
        assert [e.payload for e in reporter.of_kind(EventKind.TITLE)] == ["late"]

    async def test_registration_closed_after_start(self, reporter: CollectingReporter) -> None:
        run = Run()
        await run.start(reporter)
        with pytest.raises(RuntimeError, match="already started"):
            run.test("too late", lambda t: None)

    async def test_torn_down_after_start(self, reporter: CollectingReporter) -> None:
        run = Run()
        run.test("a", lambda t: None)
        await run.start(reporter)
        assert run.units == []


# ── Stream assembly ──────────────────────────────────────────────────────────


class TestReportFrame:
    async def test_empty_run(self, reporter: CollectingReporter) -> None:
        result = await Run().start(reporter)
        assert [e.kind for e in reporter.events] == [
            EventKind.VERSION,
            EventKind.PLAN,
            EventKind.COMMENT,
        ]
        assert reporter.events[1].payload == PlanRange(1, 0)
        assert reporter.events[2].payload == "ok"
        assert result == RunResult(total=0, passed=0, failed=0)

    async def test_root_title_is_never_reported(self, reporter: CollectingReporter) -> None:
        run = Run()
        run.test("a", lambda t: t.ok(True))
        await run.start(reporter)
        titles = [e.payload for e in reporter.of_kind(EventKind.TITLE)]
        assert titles == ["a"]

    async def test_tap_version_is_first(self, reporter: CollectingReporter) -> None:
        await Run(tap_version=14).start(reporter)
        assert reporter.events[0] == Event.version(14)

    async def test_renumbers_across_units(self, reporter: CollectingReporter) -> None:
        def two(t: AssertionContext) -> None:
            t.ok(True)
            t.ok(True)

        run = Run()
        run.test("a", two)
        run.test("b", two)
        await run.start(reporter)
        assert [a.id for a in reporter.assertions] == [1, 2, 3, 4]
        assert reporter.events[-2].payload == PlanRange(1, 4)

    async def test_failure_summary_comment(self, reporter: CollectingReporter) -> None:
        def mixed(t: AssertionContext) -> None:
            t.ok(True)
            t.equal(1, 2)
            t.fail()

        run = Run()
        run.test("mixed", mixed)
        result = await run.start(reporter)
        assert reporter.events[-1].payload == "failed 2 of 3 tests"
        assert result.total == 3
        assert result.passed == 1
        assert result.failed == 2
        assert result.ok is False


# ── Presentation policy ──────────────────────────────────────────────────────


class TestFlattened:
    async def test_nested_assertions_flattened(self, reporter: CollectingReporter) -> None:
        run = Run()
        run.test("parent", _parent)
        await run.start(reporter)

        asserts = reporter.of_kind(EventKind.ASSERT)
        assert len(asserts) == 3
        assert all(e.depth == 0 for e in reporter.events)
        assert reporter.of_kind(EventKind.TEST_ASSERT) == []
        assert [a.payload.description for a in asserts] == ["top", "child 1", "child 2"]
        assert [a.payload.id for a in asserts] == [1, 2, 3]

    async def test_unit_plans_are_suppressed(self, reporter: CollectingReporter) -> None:
        run = Run()
        run.test("parent", _parent)
        await run.start(reporter)
        assert reporter.of_kind(EventKind.PLAN) == [Event.plan(1, 3)]
        assert reporter.of_kind(EventKind.TIME) == []

    async def test_nested_body_failure_is_counted(self, reporter: CollectingReporter) -> None:
        async def broken(t: AssertionContext) -> None:
            raise ValueError("nested boom")

        async def parent(t: AssertionContext) -> None:
            await t.test("broken", broken)

        run = Run()
        run.test("parent", parent)
        result = await run.start(reporter)

        asserts = reporter.of_kind(EventKind.ASSERT)
        assert len(asserts) == 1
        assert asserts[0].payload.passed is False
        assert reporter.of_kind(EventKind.BAILOUT) == []
        assert reporter.events[-1].payload == "failed 1 of 1 tests"
        assert result.failed == 1


class TestHierarchical:
    async def test_depth_zero_and_nested_shapes(self, reporter: CollectingReporter) -> None:
        run = Run()
        run.nested("switch", lambda t: None)
        run.test("parent", _parent)
        await run.start(reporter)

        tail = _after_title(reporter.events, "parent")[:-2]
        top = [
            (e.kind, e.payload if e.kind is EventKind.TITLE else None)
            for e in tail
            if e.depth == 0
        ]
        assert top == [
            (EventKind.TITLE, "parent"),
            (EventKind.ASSERT, None),
            (EventKind.TEST_ASSERT, None),
        ]
        nested = [e.kind for e in tail if e.depth > 0]
        assert nested == [
            EventKind.TITLE,
            EventKind.ASSERT,
            EventKind.ASSERT,
            EventKind.PLAN,
            EventKind.TIME,
        ]

    async def test_nested_ids_stay_local(self, reporter: CollectingReporter) -> None:
        run = Run()
        run.nested("switch", lambda t: None)
        run.test("parent", _parent)
        await run.start(reporter)

        deep = [e.payload.id for e in reporter.events if e.depth > 0 and e.kind is EventKind.ASSERT]
        assert deep == [1, 2]
        shallow = [e.payload.id for e in reporter.events if e.depth == 0 and e.is_assertion]
        assert shallow == [1, 2, 3]

    async def test_nested_registrations_summarized_at_top(
        self, reporter: CollectingReporter
    ) -> None:
        run = Run()
        run.nested("passes", lambda t: t.ok(True))
        run.nested("fails", lambda t: t.ok(False))
        result = await run.start(reporter)

        top = [e for e in reporter.events if e.depth == 0 and e.is_assertion]
        assert [e.kind for e in top] == [EventKind.TEST_ASSERT, EventKind.TEST_ASSERT]
        assert [(e.payload.id, e.payload.passed) for e in top] == [(1, True), (2, False)]
        titles = [(e.payload, e.depth) for e in reporter.of_kind(EventKind.TITLE)]
        assert titles == [("passes", 1), ("fails", 1)]
        assert reporter.events[-1].payload == "failed 1 of 2 tests"
        assert result.total == 2

    async def test_unit_plans_at_depth_zero_suppressed(
        self, reporter: CollectingReporter
    ) -> None:
        run = Run()
        run.nested("switch", lambda t: None)
        run.test("parent", _parent)
        await run.start(reporter)
        plans = [e for e in reporter.of_kind(EventKind.PLAN) if e.depth == 0]
        assert plans == [Event.plan(1, 3)]


# ── Ordering ─────────────────────────────────────────────────────────────────


class TestOrdering:
    async def test_declaration_order_beats_completion_order(
        self, reporter: CollectingReporter, wait
    ) -> None:
        settled: list[str] = []

        async def test_1(t: AssertionContext) -> None:
            t.ok(True, "assert1")
            await wait(50)
            t.ok(True, "assert2")
            settled.append("test 1")

        async def test_2(t: AssertionContext) -> None:
            t.ok(True, "assert3")
            await wait(30)
            t.ok(True, "assert4")
            settled.append("test 2")

        run = Run()
        run.test("test 1", test_1)
        run.test("test 2", test_2)
        await run.start(reporter)

        assert settled == ["test 2", "test 1"]
        assert [a.description for a in reporter.assertions] == [
            "assert1",
            "assert2",
            "assert3",
            "assert4",
        ]
        assert [a.id for a in reporter.assertions] == [1, 2, 3, 4]

    async def test_bodies_run_concurrently(self, wait) -> None:
        async def slow(t: AssertionContext) -> None:
            await wait(60)
            t.ok(True)

        async def quick(t: AssertionContext) -> None:
            await wait(20)
            t.ok(True)

        run = Run()
        first = run.test("a", slow)
        second = run.test("b", quick)
        await first
        assert second.done()
        await run.start(CollectingReporter())


# ── Bail out ─────────────────────────────────────────────────────────────────


class TestBailout:
    async def test_top_level_failure_is_counted(self, reporter: CollectingReporter) -> None:
        def broken(t: AssertionContext) -> None:
            raise ValueError("boom")

        run = Run()
        run.test("broken", broken)
        result = await run.start(reporter)

        assert reporter.of_kind(EventKind.BAILOUT) == []
        asserts = reporter.of_kind(EventKind.ASSERT)
        assert len(asserts) == 1
        assert asserts[0].payload.passed is False
        assert reporter.of_kind(EventKind.PLAN) == [Event.plan(1, 1)]
        assert reporter.events[-1] == Event.comment("failed 1 of 1 tests")
        assert result.ok is False

    async def test_top_level_failure_does_not_stop_run(
        self, reporter: CollectingReporter
    ) -> None:
        def broken(t: AssertionContext) -> None:
            raise ValueError("boom")

        run = Run()
        run.test("broken", broken)
        run.test("still reported", lambda t: t.ok(True))
        result = await run.start(reporter)

        titles = [e.payload for e in reporter.of_kind(EventKind.TITLE)]
        assert titles == ["broken", "still reported"]
        assert "Unhandled exception" in [e.payload for e in reporter.of_kind(EventKind.COMMENT)]
        assert reporter.events[-1].payload == "failed 1 of 2 tests"
        assert (result.total, result.failed) == (2, 1)

    async def test_cancelled_error_does_not_hang_run(self, reporter: CollectingReporter) -> None:
        async def cancelled(t: AssertionContext) -> None:
            raise asyncio.CancelledError()

        run = Run()
        run.test("cancelled", cancelled)
        run.test("after", lambda t: t.ok(True))
        result = await asyncio.wait_for(run.start(reporter), 1.0)
        assert reporter.events[-1].payload == "failed 1 of 2 tests"
        assert result.failed == 1

    async def test_nested_registration_failure_is_fatal(
        self, reporter: CollectingReporter
    ) -> None:
        def broken(t: AssertionContext) -> None:
            raise ValueError("boom")

        run = Run()
        run.nested("broken", broken)

        with pytest.raises(BailoutError) as exc_info:
            await run.start(reporter)
        assert isinstance(exc_info.value.reason, UnhandledBodyFailure)
        assert reporter.events[-1].kind is EventKind.BAILOUT
        assert reporter.events[-1].depth == 1


# ── TAP output ───────────────────────────────────────────────────────────────


class TestTapOutput:
    async def test_flattened_report(
        self, tap_reporter: TapReporter, tap_lines: list[str]
    ) -> None:
        run = Run()
        run.test("adds", lambda t: t.equal(1 + 1, 2, "sum"))
        await run.start(tap_reporter)
        assert tap_lines == ["TAP version 13", "# adds", "ok 1 - sum", "1..1", "# ok"]

    async def test_hierarchical_report(
        self, tap_reporter: TapReporter, tap_lines: list[str]
    ) -> None:
        run = Run()
        run.nested("group", lambda t: t.ok(True, "inner"))
        await run.start(tap_reporter)
        assert tap_lines[:4] == [
            "TAP version 13",
            "    # Subtest: group",
            "    ok 1 - inner",
            "    1..1",
        ]
        assert tap_lines[4].startswith("    # time=")
        assert tap_lines[5].startswith("ok 1 - group")
        assert tap_lines[6:] == ["1..1", "# ok"]
