"""Test units: one test's execution plus the lazily pulled stream of its events."""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections import deque
from enum import Enum
from typing import TYPE_CHECKING, Any

from tapflow.assertions import AssertionContext
from tapflow.errors import UnhandledBodyFailure
from tapflow.events import AssertionResult, Event, EventKind, TestSummary
from tapflow.streams import Step, Stream

if TYPE_CHECKING:
    from collections.abc import Callable

    Body = Callable[[AssertionContext], Any]

logger = logging.getLogger("tapflow.unit")


class HandleState(Enum):
    """Lifecycle of a buffer slot that stands for a nested unit."""

    PENDING = "pending"
    RESOLVED = "resolved"


class ChildHandle:
    """Buffer slot occupied by a nested unit for its whole lifetime.

    While ``PENDING`` the parent delegates pulls to :attr:`child`. Once the
    child's stream ends the slot is resolved, exactly once, to the synthesized
    summary event that the parent then emits in the child's place.
    """

    def __init__(self, child: TestUnit) -> None:
        self.child = child
        self.state = HandleState.PENDING
        self.event: Event | None = None

    def resolve(self, event: Event) -> None:
        if self.state is not HandleState.PENDING:
            raise RuntimeError(f"Sub test {self.child.description!r} already resolved")
        self.state = HandleState.RESOLVED
        self.event = event

    def __repr__(self) -> str:
        return f"ChildHandle({self.child.description!r}, {self.state.value})"


def _elapsed_ms(since: float) -> int:
    return int((time.monotonic() - since) * 1000)


class TestUnit(Stream):
    """Owns one test body, its output buffer, and its pull sequence.

    The body is scheduled on the running loop as soon as the unit is built,
    whether or not anything ever pulls from it. ``collect`` is called with the
    new unit first so it takes its slot in the registering parent before any
    of its own events exist.

    Parameters
    ----------
    description:
        Title of the test.
    body:
        Plain or coroutine function receiving an :class:`AssertionContext`.
    collect:
        Registration callback appending this unit to its parent.
    depth:
        Nesting level, presentation only.
    isolate_failures:
        When true a nested unit's ``Bailout`` stops at this unit and only its
        failing summary travels upward. The implicit run root disables this so
        that failures of its children stay fatal.
    """

    __test__ = False  # Prevent pytest collection

    def __init__(
        self,
        description: str,
        body: Body,
        collect: Callable[[TestUnit], None],
        depth: int = 0,
        isolate_failures: bool = True,
    ) -> None:
        loop = asyncio.get_running_loop()
        self.description = description
        self.body = body
        self.depth = depth
        self.id = 0  # position in the parent, assigned on collection
        self.assertion_count = 0
        self.aggregate_pass = True
        self.execution_time = 0
        self.finished = False
        self.summary: TestSummary | None = None
        self.completion: asyncio.Future[TestSummary] = loop.create_future()
        self._isolate_failures = isolate_failures
        self._buffer: deque[Event | ChildHandle] = deque([Event.title(description, depth)])
        self._children: list[TestUnit] = []
        self._changed = asyncio.Event()

        collect(self)
        logger.debug("Created test %r at depth %d", description, depth)
        self.started_at = time.monotonic()
        self._task = loop.create_task(self._run(), name=f"tapflow:{description}")

    # -- collection (producer side) -----------------------------------------

    def _push(self, item: Event | ChildHandle) -> None:
        if self.finished:
            raise RuntimeError(f"Test {self.description!r} already finished")
        self._buffer.append(item)
        self._changed.set()

    def collect_assertion(self, result: AssertionResult) -> AssertionResult:
        """Number *result* and append it to the buffer."""
        result = result.with_id(self.assertion_count + 1)
        self._push(Event.assertion(result, self.depth))
        self.assertion_count += 1
        self.aggregate_pass = self.aggregate_pass and result.passed
        return result

    def collect_child(self, child: TestUnit) -> None:
        self._push(ChildHandle(child))
        self.assertion_count += 1
        child.id = self.assertion_count
        self._children.append(child)

    def spawn(self, description: str, body: Body) -> asyncio.Future[TestSummary]:
        """Start a nested unit one level deeper and return its completion future."""
        child = TestUnit(description, body, self.collect_child, depth=self.depth + 1)
        return child.completion

    # -- execution ----------------------------------------------------------

    async def _run(self) -> None:
        context = AssertionContext(self.collect_assertion, self.spawn)
        failure: UnhandledBodyFailure | None = None
        try:
            try:
                outcome = self.body(context)
                if inspect.isawaitable(outcome):
                    await outcome
            except asyncio.CancelledError as exc:
                # Only a cancellation raised by the body itself is a test failure.
                task = asyncio.current_task()
                if task is not None and task.cancelling():
                    raise
                logger.error("Test %r raised CancelledError", self.description)
                failure = UnhandledBodyFailure(self.description, exc)
            except Exception as exc:
                logger.exception("Unhandled exception in test %r", self.description)
                failure = UnhandledBodyFailure(self.description, exc)
            self.execution_time = _elapsed_ms(self.started_at)

            if failure is not None:
                self.collect_assertion(
                    AssertionResult(
                        passed=False,
                        description=self.description,
                        operator="fail",
                        actual=str(failure.cause),
                    )
                )
                self._push(Event.comment("Unhandled exception", self.depth))
                self._push(Event.bailout(failure, self.depth))

            await self._wait_for_children()

            if failure is None:
                self._push(Event.plan(1, self.assertion_count, self.depth))
                self._push(Event.time(self.execution_time, self.depth))
        finally:
            self._finish()

    async def _wait_for_children(self) -> None:
        # Detached children may still register siblings while we wait.
        index = 0
        while index < len(self._children):
            summary = await self._children[index].completion
            self.aggregate_pass = self.aggregate_pass and summary.passed
            index += 1

    def _finish(self) -> None:
        if self.finished:
            return
        self.summary = TestSummary(
            description=self.description,
            passed=self.aggregate_pass,
            execution_time=self.execution_time,
        )
        self.finished = True
        self._changed.set()
        self.completion.set_result(self.summary)
        logger.debug(
            "Finished test %r: %s in %dms",
            self.description,
            "pass" if self.aggregate_pass else "fail",
            self.execution_time,
        )

    # -- pull (consumer side) -----------------------------------------------

    async def pull(self) -> Step:
        while True:
            if self._buffer:
                head = self._buffer[0]
                if isinstance(head, Event):
                    return Step.item(self._buffer.popleft())
                if head.state is HandleState.RESOLVED:
                    self._buffer.popleft()
                    return Step.item(head.event)

                step = await head.child.pull()
                if not step.done:
                    return Step.item(self._contain(step.value))
                head.resolve(self._summarize(head.child, step.value))
                continue

            if self.finished:
                return Step.end(self.summary)

            self._changed.clear()
            await self._changed.wait()

    def _contain(self, event: Event) -> Event:
        if event.kind is EventKind.BAILOUT and self._isolate_failures:
            return Event.comment(str(event.payload), event.depth)
        return event

    def _summarize(self, child: TestUnit, summary: TestSummary) -> Event:
        result = AssertionResult(
            passed=summary.passed,
            description=summary.description,
            id=child.id,
            execution_time=summary.execution_time,
        )
        return Event.test_assertion(result, self.depth)

    def __repr__(self) -> str:
        state = "finished" if self.finished else "running"
        return f"TestUnit({self.description!r}, depth={self.depth}, {state})"
