"""tapflow — asynchronous test harness streaming results as TAP."""

from tapflow.assertions import AssertionContext
from tapflow.errors import BailoutError, UnhandledBodyFailure
from tapflow.events import AssertionResult, Event, EventKind, TestSummary
from tapflow.reporters import CollectingReporter, TapReporter
from tapflow.scheduler import Presentation, Run, RunResult
from tapflow.unit import TestUnit

__all__ = [
    "AssertionContext",
    "AssertionResult",
    "BailoutError",
    "CollectingReporter",
    "Event",
    "EventKind",
    "Presentation",
    "Run",
    "RunResult",
    "TapReporter",
    "TestSummary",
    "TestUnit",
    "UnhandledBodyFailure",
]
