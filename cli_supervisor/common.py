"""
Common utilities shared across cli_supervisor modules.
"""

from __future__ import annotations

import os
import sys
import time
from typing import Mapping

# Environment overrides applied to every spawned process so the wrapped
# Python tool produces UTF-8 text without colour codes on every platform.
PROCESS_ENV_OVERRIDES = {
    "PYTHONIOENCODING": "utf-8",
    "PYTHONUTF8": "1",
    "PYTHONUNBUFFERED": "1",
    "TERM": "dumb",
}


class Clock:
    """Wall clock used for TTL decisions. Tests substitute a fake."""

    def now(self) -> float:
        """Return current time in seconds since the epoch."""
        return time.time()


class FixedClock(Clock):
    """
    Manually advanced clock.

    Used by tests and by callers that need deterministic TTL behaviour.
    """

    def __init__(self, start: float = 0.0):
        self._now = start

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now += seconds


def is_macos() -> bool:
    return sys.platform == "darwin"


def is_windows() -> bool:
    return sys.platform.startswith("win")


def process_env(extra: Mapping[str, str] | None = None) -> dict[str, str]:
    """
    Build the environment for a child process.

    Args:
        extra: Additional variables (take precedence over the defaults)

    Returns:
        Copy of os.environ with PROCESS_ENV_OVERRIDES and extra applied
    """
    env = {**os.environ, **PROCESS_ENV_OVERRIDES}
    if extra:
        env.update(extra)
    return env


def vlog(msg: str, verbose: bool = False) -> None:
    """
    Log verbose message using structured logging.

    Args:
        msg: Message to log
        verbose: Whether verbose mode is enabled
    """
    if verbose or os.environ.get("CLI_SUPERVISOR_DEBUG", "0") == "1":
        from .logging_config import get_logger
        get_logger().info(msg)
