"""Assertion capability handed to every test body."""

from __future__ import annotations

import functools
import logging
import numbers
import os
import re
import traceback
from collections.abc import Mapping, Sequence, Set
from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING, Any

from tapflow.events import MISSING, AssertionResult

if TYPE_CHECKING:
    import asyncio
    from collections.abc import Callable

    from tapflow.events import TestSummary

    Collector = Callable[[AssertionResult], AssertionResult]
    Spawner = Callable[[str, Callable[..., Any]], asyncio.Future[TestSummary]]

logger = logging.getLogger("tapflow.assertions")

_PACKAGE_DIR = str(Path(__file__).resolve().parent) + os.sep


# ---------------------------------------------------------------------------
# Comparison helpers
# ---------------------------------------------------------------------------


def strict_equal(actual: Any, expected: Any) -> bool:
    """Scalars compare by type and value, everything else by identity."""
    if actual is expected:
        return True
    if isinstance(actual, bool) or isinstance(expected, bool):
        return type(actual) is type(expected) and actual == expected
    if isinstance(actual, numbers.Number) and isinstance(expected, numbers.Number):
        return actual == expected
    if isinstance(actual, (str, bytes)) and isinstance(expected, (str, bytes)):
        return type(actual) is type(expected) and actual == expected
    return False


def _is_sequence(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray))


def deep_equal(actual: Any, expected: Any) -> bool:
    """Structural comparison of nested containers and plain objects.

    Self-referencing structures compare equal when their shapes match.
    """
    return _deep_equal(actual, expected, set())


def _deep_equal(actual: Any, expected: Any, seen: set[tuple[int, int]]) -> bool:
    if actual is expected:
        return True
    pair = (id(actual), id(expected))
    if pair in seen:
        return True
    if isinstance(actual, Mapping) and isinstance(expected, Mapping):
        if actual.keys() != expected.keys():
            return False
        seen.add(pair)
        return all(_deep_equal(actual[k], expected[k], seen) for k in actual)
    if _is_sequence(actual) and _is_sequence(expected):
        if type(actual) is not type(expected) or len(actual) != len(expected):
            return False
        seen.add(pair)
        return all(_deep_equal(a, e, seen) for a, e in zip(actual, expected, strict=True))
    if isinstance(actual, Set) and isinstance(expected, Set):
        return actual == expected
    if (
        type(actual) is type(expected)
        and type(actual).__eq__ is object.__eq__
        and hasattr(actual, "__dict__")
    ):
        seen.add(pair)
        return _deep_equal(vars(actual), vars(expected), seen)
    try:
        return bool(actual == expected)
    except Exception:
        logger.debug("Equality check raised for %r and %r", actual, expected, exc_info=True)
        return False


def call_site() -> str | None:
    """Location of the innermost frame outside this package, best effort."""
    for frame in reversed(traceback.extract_stack()):
        filename = str(Path(frame.filename).resolve())
        if not filename.startswith(_PACKAGE_DIR):
            return f"{frame.filename}:{frame.lineno} in {frame.name}"
    return None


def _recorded(build: Callable[..., AssertionResult]) -> Callable[..., AssertionResult]:
    """Collect the result of an assertion method, locating the caller on failure."""

    @functools.wraps(build)
    def wrapper(self: AssertionContext, *args: Any, **kwargs: Any) -> AssertionResult:
        result = build(self, *args, **kwargs)
        if not result.passed:
            result = replace(result, at=call_site())
        return self._collect(result)

    return wrapper


def _call_and_catch(fn: Callable[[], Any]) -> Exception | None:
    try:
        fn()
    except Exception as exc:
        return exc
    return None


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------


class AssertionContext:
    """What a test body receives as ``t``.

    Every assertion method records exactly one :class:`AssertionResult` in
    the owning unit at call time and returns it (with its id assigned).
    """

    def __init__(self, collect: Collector, spawn: Spawner) -> None:
        self._collect = collect
        self._spawn = spawn

    def test(self, description: str, body: Callable[..., Any]) -> asyncio.Future[TestSummary]:
        """Register a nested test. Await the returned future or let it run detached."""
        return self._spawn(description, body)

    @_recorded
    def ok(self, value: Any, description: str = "should be truthy") -> AssertionResult:
        return AssertionResult(
            passed=bool(value),
            description=description,
            operator="ok",
            expected=True,
            actual=value,
        )

    @_recorded
    def not_ok(self, value: Any, description: str = "should not be truthy") -> AssertionResult:
        return AssertionResult(
            passed=not value,
            description=description,
            operator="notOk",
            expected=False,
            actual=value,
        )

    @_recorded
    def equal(
        self, actual: Any, expected: Any, description: str = "should be equal"
    ) -> AssertionResult:
        return AssertionResult(
            passed=strict_equal(actual, expected),
            description=description,
            operator="equal",
            expected=expected,
            actual=actual,
        )

    @_recorded
    def not_equal(
        self, actual: Any, expected: Any, description: str = "should not be equal"
    ) -> AssertionResult:
        return AssertionResult(
            passed=not strict_equal(actual, expected),
            description=description,
            operator="notEqual",
            expected=expected,
            actual=actual,
        )

    @_recorded
    def deep_equal(
        self, actual: Any, expected: Any, description: str = "should be equivalent"
    ) -> AssertionResult:
        return AssertionResult(
            passed=deep_equal(actual, expected),
            description=description,
            operator="deepEqual",
            expected=expected,
            actual=actual,
        )

    @_recorded
    def not_deep_equal(
        self, actual: Any, expected: Any, description: str = "should not be equivalent"
    ) -> AssertionResult:
        return AssertionResult(
            passed=not deep_equal(actual, expected),
            description=description,
            operator="notDeepEqual",
            expected=expected,
            actual=actual,
        )

    @_recorded
    def throws(
        self,
        fn: Callable[[], Any],
        matcher: Any = None,
        description: str | None = None,
    ) -> AssertionResult:
        """Pass iff *fn* raises and the exception satisfies *matcher*, if given.

        *matcher* may be an exception class, a compiled regex searched in the
        message, or an exact value. A string in its place is the description.
        """
        if isinstance(matcher, str):
            matcher, description = description, matcher
        caught = _call_and_catch(fn)
        passed = caught is not None
        actual: Any = caught
        expected: Any = MISSING if matcher is None else matcher

        if isinstance(matcher, re.Pattern):
            passed = caught is not None and matcher.search(str(caught)) is not None
            expected = matcher.pattern
        elif isinstance(matcher, type) and issubclass(matcher, BaseException):
            if caught is not None:
                passed = isinstance(caught, matcher)
                actual = type(caught)
        elif matcher is not None:
            passed = caught is not None and caught == matcher

        return AssertionResult(
            passed=passed,
            description=description or "should throw",
            operator="throws",
            expected=expected,
            actual=actual,
        )

    @_recorded
    def does_not_throw(
        self, fn: Callable[[], Any], description: str | None = None
    ) -> AssertionResult:
        caught = _call_and_catch(fn)
        return AssertionResult(
            passed=caught is None,
            description=description or "should not throw",
            operator="doesNotThrow",
            expected="no thrown error",
            actual=caught if caught is not None else MISSING,
        )

    @_recorded
    def fail(self, description: str = "fail called") -> AssertionResult:
        return AssertionResult(
            passed=False,
            description=description,
            operator="fail",
            expected="fail not called",
            actual="fail called",
        )
