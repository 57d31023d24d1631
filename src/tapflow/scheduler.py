"""Run context and the scheduler that merges unit streams into one report."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from tapflow.errors import BailoutError
from tapflow.events import Event, EventKind
from tapflow.streams import Stream, concat
from tapflow.unit import TestUnit

if TYPE_CHECKING:
    from collections.abc import Callable

    from tapflow.assertions import AssertionContext
    from tapflow.events import TestSummary
    from tapflow.unit import Body

    Reporter = Callable[[Event], object]

logger = logging.getLogger("tapflow.scheduler")

# Kinds a depth-0 event may have and still reach the reporter.
TOP_LEVEL_KINDS = frozenset(
    {
        EventKind.TITLE,
        EventKind.ASSERT,
        EventKind.TEST_ASSERT,
        EventKind.COMMENT,
    }
)


class Presentation(Enum):
    """How nested results are shown in the report."""

    FLATTENED = "flattened"
    HIERARCHICAL = "hierarchical"


@dataclass
class RunResult:
    """Run-wide counters over renumbered top-level assertions."""

    total: int = 0
    passed: int = 0
    failed: int = 0

    @property
    def ok(self) -> bool:
        return self.failed == 0

    @property
    def closing_comment(self) -> str:
        if self.failed > 0:
            return f"failed {self.failed} of {self.total} tests"
        return "ok"


class Run:
    """State of one test run: its top-level units and its presentation mode.

    Must be created and used inside a running event loop; every registration
    starts its body immediately.
    """

    def __init__(self, tap_version: int = 13) -> None:
        self.tap_version = tap_version
        self.presentation = Presentation.FLATTENED
        self.units: list[TestUnit] = []
        self._started = False
        self._registration_closed = asyncio.Event()
        self._root = TestUnit("Root", self._root_body, self.units.append, isolate_failures=False)

    async def _root_body(self, t: AssertionContext) -> None:
        # The root has no assertions; it stays open for nested registrations until start().
        await self._registration_closed.wait()

    def test(self, description: str, body: Body) -> asyncio.Future[TestSummary]:
        """Register a top-level test."""
        self._check_open()
        unit = TestUnit(description, body, self.units.append)
        return unit.completion

    def nested(self, description: str, body: Body) -> asyncio.Future[TestSummary]:
        """Register a test under the implicit root; the report becomes hierarchical."""
        self._check_open()
        if self.presentation is not Presentation.HIERARCHICAL:
            logger.debug("Switching run to hierarchical presentation")
            self.presentation = Presentation.HIERARCHICAL
        return self._root.spawn(description, body)

    def _check_open(self) -> None:
        if self._started:
            raise RuntimeError("Run already started; register tests before start()")

    async def start(self, reporter: Reporter) -> RunResult:
        """Drive every registered unit to completion and report the merged stream.

        Raises ``BailoutError`` after reporting a bail out.
        """
        if self._started:
            raise RuntimeError("Run already started")
        self._started = True
        self._registration_closed.set()
        try:
            return await Scheduler(self, reporter).run()
        finally:
            self.units.clear()


class Scheduler:
    """Single pull loop from the merged stream to the reporter."""

    def __init__(self, run: Run, reporter: Reporter) -> None:
        self._run = run
        self._reporter = reporter
        self.result = RunResult()

    def _build_stream(self, units: list[TestUnit]) -> Stream:
        merged = concat(*units)
        if self._run.presentation is Presentation.FLATTENED:
            merged = merged.filter(lambda e: e.kind is not EventKind.TEST_ASSERT).map(
                lambda e: e.with_depth(0)
            )
        return merged.filter(lambda e: e.depth > 0 or e.kind in TOP_LEVEL_KINDS).map(
            self._renumber
        )

    def _renumber(self, event: Event) -> Event:
        if event.depth > 0 or not event.is_assertion:
            return event
        self.result.total += 1
        if event.payload.passed:
            self.result.passed += 1
        else:
            self.result.failed += 1
        return event.with_id(self.result.total)

    async def run(self) -> RunResult:
        root, *top_level = self._run.units
        logger.debug(
            "Starting run: %d top-level test(s), %s presentation",
            len(top_level),
            self._run.presentation.value,
        )
        self._reporter(Event.version(self._run.tap_version))

        # The root's own title is never reported.
        await root.pull()

        stream = self._build_stream([root, *top_level])
        async for event in stream:
            self._reporter(event)
            if event.kind is EventKind.BAILOUT:
                logger.error("Bail out: %s", event.payload)
                raise BailoutError(event.payload)

        self._reporter(Event.plan(1, self.result.total))
        self._reporter(Event.comment(self.result.closing_comment))
        logger.info(
            "Run complete: %d passed, %d failed", self.result.passed, self.result.failed
        )
        return self.result
