"""Shared test fixtures for tapflow."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest

from tapflow.reporters import CollectingReporter, TapReporter

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from tapflow.events import Event, TestSummary
    from tapflow.streams import Stream


@pytest.fixture
def reporter() -> CollectingReporter:
    """Reporter that keeps every event for inspection."""
    return CollectingReporter()


@pytest.fixture
def tap_lines() -> list[str]:
    """Sink for lines printed by a TapReporter."""
    return []


@pytest.fixture
def tap_reporter(tap_lines: list[str]) -> TapReporter:
    """TapReporter writing into ``tap_lines`` instead of stdout."""
    return TapReporter(print_fn=tap_lines.append)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove every TAPFLOW_* variable so defaults apply."""
    for name in ("TAPFLOW_LOG_LEVEL", "TAPFLOW_INDENT", "TAPFLOW_TAP_VERSION"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def drain() -> Callable[[Stream], Awaitable[tuple[list[Event], TestSummary | None]]]:
    """Pull a stream to its end, returning its items and terminal value."""

    async def _drain(stream: Stream) -> tuple[list[Event], TestSummary | None]:
        items = []
        while True:
            step = await stream.pull()
            if step.done:
                return items, step.value
            items.append(step.value)

    return _drain


@pytest.fixture
def wait() -> Callable[[float], Awaitable[None]]:
    """Sleep for *ms* milliseconds."""

    async def _wait(ms: float) -> None:
        await asyncio.sleep(ms / 1000)

    return _wait
