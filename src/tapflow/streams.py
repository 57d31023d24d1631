"""Lazy pull-based sequences and the combinators used to merge unit streams."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, NamedTuple

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable


class Step(NamedTuple):
    """Result of one pull: either an item, or the end carrying a terminal value."""

    value: Any
    done: bool

    @classmethod
    def item(cls, value: Any) -> Step:
        return cls(value, False)

    @classmethod
    def end(cls, result: Any = None) -> Step:
        return cls(result, True)


class Stream:
    """Single-pass, forward-only sequence.

    Subclasses implement :meth:`pull`. Iterating with ``async for`` drops the
    terminal value; call :meth:`pull` directly when it matters.
    """

    async def pull(self) -> Step:
        raise NotImplementedError

    def __aiter__(self) -> Stream:
        return self

    async def __anext__(self) -> Any:
        step = await self.pull()
        if step.done:
            raise StopAsyncIteration
        return step.value

    def map(self, fn: Callable[[Any], Any]) -> Stream:
        return map_stream(fn, self)

    def filter(self, predicate: Callable[[Any], bool]) -> Stream:
        return filter_stream(predicate, self)


class _Mapped(Stream):
    def __init__(self, fn: Callable[[Any], Any], source: Stream) -> None:
        self._fn = fn
        self._source = source

    async def pull(self) -> Step:
        step = await self._source.pull()
        if step.done:
            return step
        return Step.item(self._fn(step.value))


class _Filtered(Stream):
    def __init__(self, predicate: Callable[[Any], bool], source: Stream) -> None:
        self._predicate = predicate
        self._source = source

    async def pull(self) -> Step:
        while True:
            step = await self._source.pull()
            if step.done or self._predicate(step.value):
                return step


class _Concatenated(Stream):
    def __init__(self, sources: Iterable[Stream]) -> None:
        self._pending = list(sources)

    async def pull(self) -> Step:
        while self._pending:
            step = await self._pending[0].pull()
            if not step.done:
                return step
            self._pending.pop(0)
        return Step.end()


def map_stream(fn: Callable[[Any], Any], source: Stream) -> Stream:
    """Transform each item of *source* lazily; the end passes through untouched."""
    return _Mapped(fn, source)


def filter_stream(predicate: Callable[[Any], bool], source: Stream) -> Stream:
    """Keep only items of *source* matching *predicate*."""
    return _Filtered(predicate, source)


def concat(*sources: Stream) -> Stream:
    """Drain each source in turn. Order is declaration order, never completion order."""
    return _Concatenated(sources)
