"""
Execution request and typed execution outcomes.

Every call to the wrapped CLI produces exactly one outcome:
- Success: exit code 0
- Failure: non-zero exit (stdout kept, some subcommands emit diagnostics there)
- Timeout: killed after exceeding its deadline
- NotFound: the CLI could not be located or installed
- Unavailable: replay of an earlier fatal installation error
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Union

from .errors import (
    ExecutionFailedError,
    ExecutionTimeoutError,
    ToolNotFoundError,
    ToolUnavailableError,
)

DEFAULT_TIMEOUT_SECONDS = 120.0


@dataclass(frozen=True)
class ExecutionRequest:
    """
    A single invocation of the wrapped CLI.

    Attributes:
        args: Call arguments (placed after the RunSpec prefix)
        stdin: Payload written to the child's stdin (str is sent as UTF-8)
        timeout: Deadline in seconds
        cwd: Working directory for the child
    """
    args: tuple[str, ...] = ()
    stdin: str | bytes | None = None
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    cwd: str | None = None

    def __post_init__(self):
        object.__setattr__(self, "args", tuple(self.args))
        if self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")

    def with_timeout(self, timeout: float) -> ExecutionRequest:
        return replace(self, timeout=timeout)


@dataclass(frozen=True)
class Success:
    stdout: str
    stderr: str = ""

    ok = True

    def unwrap(self) -> Success:
        return self


@dataclass(frozen=True)
class Failure:
    exit_code: int
    stderr: str
    stdout: str = ""
    command: str = ""

    ok = False

    def unwrap(self) -> Success:
        raise ExecutionFailedError(self.exit_code, self.stderr, self.stdout, self.command)


@dataclass(frozen=True)
class Timeout:
    elapsed: float
    timeout: float = 0.0

    ok = False

    def unwrap(self) -> Success:
        raise ExecutionTimeoutError(
            f"CLI timed out after {self.elapsed:.1f}s (limit {self.timeout:g}s)",
            timeout=self.timeout,
        )


@dataclass(frozen=True)
class NotFound:
    message: str
    silent: bool = False

    ok = False

    def unwrap(self) -> Success:
        raise ToolNotFoundError(self.message, silent=self.silent)


@dataclass(frozen=True)
class Unavailable:
    message: str

    ok = False

    def unwrap(self) -> Success:
        raise ToolUnavailableError(self.message)


ExecutionOutcome = Union[Success, Failure, Timeout, NotFound, Unavailable]
