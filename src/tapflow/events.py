"""Data models for the result stream — event kinds, assertion records, summaries."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

# ---------------------------------------------------------------------------
# Sentinels
# ---------------------------------------------------------------------------


class _Missing:
    """Marks an ``expected``/``actual`` slot that was never filled."""

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class EventKind(Enum):
    """What a single stream item describes."""

    VERSION = "version"
    TITLE = "title"
    ASSERT = "assert"
    TEST_ASSERT = "testAssert"
    PLAN = "plan"
    TIME = "time"
    COMMENT = "comment"
    BAILOUT = "bailout"


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AssertionResult:
    """Outcome of one assertion call (or the synthesized summary of a sub test)."""

    passed: bool
    description: str
    operator: str | None = None
    expected: Any = MISSING
    actual: Any = MISSING
    id: int = 0
    execution_time: int | None = None
    at: str | None = None

    def with_id(self, new_id: int) -> AssertionResult:
        return replace(self, id=new_id)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "pass": self.passed,
            "id": self.id,
            "description": self.description,
        }
        if self.expected is not MISSING:
            d["expected"] = self.expected
        if self.actual is not MISSING:
            d["actual"] = self.actual
        if self.operator is not None:
            d["operator"] = self.operator
        if self.at is not None:
            d["at"] = self.at
        if self.execution_time is not None:
            d["executionTime"] = self.execution_time
        return d


@dataclass(frozen=True)
class PlanRange:
    """Inclusive range of assertion ids announced by a plan line."""

    start: int
    end: int


@dataclass(frozen=True)
class TestSummary:
    """Terminal value of a unit's sequence and the payload of its completion future."""

    __test__ = False  # Prevent pytest collection

    description: str
    passed: bool
    execution_time: int


@dataclass(frozen=True)
class Event:
    """A single item of a unit's result stream.

    ``depth`` is the nesting level of the unit that produced the event. It is
    used for presentation only and never influences aggregation.
    """

    kind: EventKind
    depth: int = 0
    payload: Any = None

    # -- constructors -------------------------------------------------------

    @classmethod
    def version(cls, version: int = 13) -> Event:
        return cls(EventKind.VERSION, 0, version)

    @classmethod
    def title(cls, text: str, depth: int = 0) -> Event:
        return cls(EventKind.TITLE, depth, text)

    @classmethod
    def assertion(cls, result: AssertionResult, depth: int = 0) -> Event:
        return cls(EventKind.ASSERT, depth, result)

    @classmethod
    def test_assertion(cls, result: AssertionResult, depth: int = 0) -> Event:
        return cls(EventKind.TEST_ASSERT, depth, result)

    @classmethod
    def plan(cls, start: int, end: int, depth: int = 0) -> Event:
        return cls(EventKind.PLAN, depth, PlanRange(start, end))

    @classmethod
    def time(cls, ms: int, depth: int = 0) -> Event:
        return cls(EventKind.TIME, depth, ms)

    @classmethod
    def comment(cls, text: str, depth: int = 0) -> Event:
        return cls(EventKind.COMMENT, depth, text)

    @classmethod
    def bailout(cls, error: BaseException | str, depth: int = 0) -> Event:
        return cls(EventKind.BAILOUT, depth, error)

    # -- helpers ------------------------------------------------------------

    @property
    def is_assertion(self) -> bool:
        """True for both plain and synthesized (sub test) assertions."""
        return self.kind in (EventKind.ASSERT, EventKind.TEST_ASSERT)

    def with_depth(self, depth: int) -> Event:
        return replace(self, depth=depth)

    def with_id(self, new_id: int) -> Event:
        """Copy of an assertion event carrying a new id."""
        if not self.is_assertion:
            raise ValueError(f"Cannot renumber a {self.kind.value} event")
        return replace(self, payload=self.payload.with_id(new_id))

    def to_dict(self) -> dict[str, Any]:
        """Shape delivered across the reporter boundary: ``{kind, depth, payload}``."""
        if isinstance(self.payload, AssertionResult):
            payload: Any = self.payload.to_dict()
        elif isinstance(self.payload, PlanRange):
            payload = {"start": self.payload.start, "end": self.payload.end}
        else:
            payload = self.payload
        return {"kind": self.kind.value, "depth": self.depth, "payload": payload}
