"""Runner configuration loaded from environment variables."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger("tapflow.config")

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class RunnerConfig:
    """Immutable runner configuration. Construct via ``from_env()`` or directly for tests."""

    log_level: str = "WARNING"
    indent: int = 4
    tap_version: int = 13

    @classmethod
    def from_env(cls) -> RunnerConfig:
        """Build config from ``os.environ``. Raises ``ValueError`` on malformed values."""
        log_level = os.environ.get("TAPFLOW_LOG_LEVEL", "").strip().upper() or "WARNING"
        if log_level not in _LOG_LEVELS:
            raise ValueError(
                f"TAPFLOW_LOG_LEVEL must be one of {', '.join(_LOG_LEVELS)}, got {log_level!r}"
            )

        indent = _read_int("TAPFLOW_INDENT", 4)
        if indent < 0:
            raise ValueError(f"TAPFLOW_INDENT must not be negative, got {indent}")

        tap_version = _read_int("TAPFLOW_TAP_VERSION", 13)

        config = cls(log_level=log_level, indent=indent, tap_version=tap_version)
        logger.debug("Config loaded — log_level=%s, indent=%d", log_level, indent)
        return config


def _read_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
