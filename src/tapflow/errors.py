"""Exceptions raised by the test engine."""

from __future__ import annotations


class UnhandledBodyFailure(Exception):
    """An exception escaped a test body.

    Carried as the payload of that unit's ``Bailout`` event.
    """

    def __init__(self, description: str, cause: BaseException) -> None:
        self.description = description
        self.cause = cause
        super().__init__(f"{description}: {type(cause).__name__}: {cause}")


class BailoutError(Exception):
    """A ``Bailout`` event reached the scheduler; the whole run is aborted."""

    def __init__(self, reason: object) -> None:
        self.reason = reason
        super().__init__(str(reason))
