"""Command-line entry point: load test files and run them as one TAP report.

Usage:
    python -m tapflow tests/sample_test.py
    python -m tapflow tests/a.py tests/b.py

Each file must define ``register(run)`` and declare its tests on *run*::

    def register(run):
        run.test("adds", lambda t: t.equal(1 + 1, 2))

Exit status is 0 when every test passed, 1 when some failed and 2 on bail out.
"""

from __future__ import annotations

import argparse
import asyncio
import importlib.util
import logging
import sys
from pathlib import Path
from types import ModuleType
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from tapflow.config import RunnerConfig
from tapflow.errors import BailoutError
from tapflow.reporters import TapReporter
from tapflow.scheduler import Run

if TYPE_CHECKING:
    from tapflow.scheduler import Reporter, RunResult

logger = logging.getLogger("tapflow.cli")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_BAILOUT = 2


class TestFileError(Exception):
    """A test file could not be loaded or declares no ``register`` hook."""

    __test__ = False  # Prevent pytest collection


def load_test_file(path: Path) -> ModuleType:
    """Import *path* as a standalone module."""
    if not path.is_file():
        raise TestFileError(f"Test file not found: {path}")
    spec = importlib.util.spec_from_file_location(f"tapflow_test_{path.stem}", path)
    if spec is None or spec.loader is None:
        raise TestFileError(f"Cannot import {path}")
    module = importlib.util.module_from_spec(spec)
    try:
        spec.loader.exec_module(module)
    except Exception as exc:
        raise TestFileError(f"Cannot import {path}: {exc}") from exc
    if not callable(getattr(module, "register", None)):
        raise TestFileError(f"{path} does not define register(run)")
    return module


async def run_files(
    modules: list[ModuleType], reporter: Reporter, tap_version: int = 13
) -> RunResult:
    """Register every module's tests on a fresh run and start it once."""
    run = Run(tap_version=tap_version)
    for module in modules:
        try:
            module.register(run)
        except Exception as exc:
            raise TestFileError(f"{module.__name__}.register failed: {exc}") from exc
    return await run.start(reporter)


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="tapflow",
        description="Run tapflow test files and report results as TAP",
    )
    parser.add_argument("files", nargs="+", help="Test files defining register(run)")
    parser.add_argument(
        "--indent",
        type=int,
        default=None,
        help="Spaces per nesting level (default: TAPFLOW_INDENT or 4)",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """Entry point for the tapflow CLI."""
    load_dotenv()
    config = RunnerConfig.from_env()
    logging.basicConfig(level=config.log_level, stream=sys.stderr)

    parser = build_parser()
    args = parser.parse_args(argv)
    indent = config.indent if args.indent is None else args.indent

    try:
        modules = [load_test_file(Path(f)) for f in args.files]
    except TestFileError as exc:
        print(exc, file=sys.stderr)
        sys.exit(EXIT_FAILED)

    reporter = TapReporter(indent=indent)
    try:
        result = asyncio.run(run_files(modules, reporter, config.tap_version))
    except BailoutError as exc:
        logger.error("Run aborted: %s", exc)
        sys.exit(EXIT_BAILOUT)
    except TestFileError as exc:
        print(exc, file=sys.stderr)
        sys.exit(EXIT_FAILED)

    sys.exit(EXIT_OK if result.ok else EXIT_FAILED)


if __name__ == "__main__":
    main()
