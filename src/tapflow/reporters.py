"""Reporters consuming the final event stream.

A reporter is any callable taking an :class:`~tapflow.events.Event`. Kinds a
reporter does not know are ignored.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from tapflow.events import MISSING, AssertionResult, Event, EventKind, PlanRange

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger("tapflow.reporters")


def _render_value(value: Any) -> str:
    if value is MISSING:
        value = ""
    elif isinstance(value, type):
        value = value.__name__
    try:
        return json.dumps(value, default=repr)
    except ValueError:
        # Circular reference
        return json.dumps(repr(value))


class TapReporter:
    """Renders events as TAP (Test Anything Protocol) lines.

    Nesting is shown by indenting ``indent`` spaces per depth level; failure
    diagnostics sit half a level deeper than their assertion line.
    """

    def __init__(self, print_fn: Callable[[str], Any] = print, indent: int = 4) -> None:
        self._print_fn = print_fn
        self._indent = indent
        self._handlers: dict[EventKind, Callable[[Any, int], None]] = {
            EventKind.VERSION: self.version,
            EventKind.TITLE: self.title,
            EventKind.ASSERT: self.assertion,
            EventKind.TEST_ASSERT: self.assertion,
            EventKind.PLAN: self.plan,
            EventKind.TIME: self.time,
            EventKind.COMMENT: self.comment,
            EventKind.BAILOUT: self.bailout,
        }

    def __call__(self, event: Event) -> None:
        handler = self._handlers.get(event.kind)
        if handler is None:
            logger.debug("Ignoring unknown event kind %r", event.kind)
            return
        handler(event.payload, event.depth)

    def _print(self, message: str, depth: float = 0) -> None:
        self._print_fn(" " * int(depth * self._indent) + message)

    def version(self, version: int = 13, depth: int = 0) -> None:
        self._print(f"TAP version {version}")

    def title(self, text: str, depth: int = 0) -> None:
        self.comment(f"Subtest: {text}" if depth > 0 else text, depth)

    def assertion(self, result: AssertionResult, depth: int = 0) -> None:
        label = "ok" if result.passed else "not ok"
        timing = f" # time={result.execution_time}ms" if result.execution_time else ""
        self._print(f"{label} {result.id} - {result.description}{timing}", depth)
        if not result.passed and result.operator:
            self._print("---", depth + 0.5)
            diagnostic = {
                "expected": result.expected,
                "actual": result.actual,
                "at": result.at or "",
                "operator": result.operator,
            }
            for prop, value in diagnostic.items():
                self._print(f"{prop}: {_render_value(value)}", depth + 0.5)
            self._print("...", depth + 0.5)

    def plan(self, value: PlanRange, depth: int = 0) -> None:
        self._print(f"{value.start}..{value.end}", depth)

    def time(self, ms: int, depth: int = 0) -> None:
        self.comment(f"time={ms}ms", depth)

    def comment(self, text: str, depth: int = 0) -> None:
        self._print(f"# {text}", depth)

    def bailout(self, reason: object = "Unhandled exception", depth: int = 0) -> None:
        # Always at column 0, whatever the depth.
        self._print(f"Bail out! {reason}")


class CollectingReporter:
    """Keeps every event it receives, in order."""

    def __init__(self) -> None:
        self.events: list[Event] = []

    def __call__(self, event: Event) -> None:
        self.events.append(event)

    def of_kind(self, *kinds: EventKind) -> list[Event]:
        return [e for e in self.events if e.kind in kinds]

    @property
    def assertions(self) -> list[AssertionResult]:
        """Payloads of every reported assertion, plain or synthesized."""
        return [e.payload for e in self.events if e.is_assertion]
