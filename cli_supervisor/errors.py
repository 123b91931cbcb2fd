"""
Exception taxonomy for CLI resolution, installation and execution.

Resolution/installation errors are raised by the resolver and installer.
Execution errors are only raised when a caller unwraps an ExecutionOutcome.
"""

from __future__ import annotations


class CliSupervisorError(Exception):
    """Base exception for all cli_supervisor errors."""


class ToolNotFoundError(CliSupervisorError):
    """
    The wrapped tool could not be located or installed.

    Attributes:
        message: Human-readable error message
        silent: True when this is a replay of an already reported fatal error
            and should not trigger another user-facing notification
        remediation: Suggested fix for the error
    """
    def __init__(
        self,
        message: str,
        silent: bool = False,
        remediation: str | None = None,
    ):
        self.message = message
        self.silent = silent
        self.remediation = remediation
        super().__init__(message)


class ToolUnavailableError(CliSupervisorError):
    """A prior fatal installation error is being replayed."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ExecutionFailedError(CliSupervisorError):
    """
    The tool ran and exited with a non-zero code.

    The message is formatted from command, exit code and stderr so that it
    reads well in logs. stdout is kept because some subcommands emit
    machine-readable diagnostics there before failing.
    """
    def __init__(
        self,
        exit_code: int,
        stderr: str,
        stdout: str = "",
        command: str = "",
    ):
        self.exit_code = exit_code
        self.stderr = stderr
        self.stdout = stdout
        self.command = command
        super().__init__(self._format_message(exit_code, stderr, command))

    @staticmethod
    def _format_message(exit_code: int, stderr: str, command: str) -> str:
        parts = []
        if command:
            parts.append(f"Command: {command}")
        parts.append(f"Exit code: {exit_code}")
        trimmed = stderr.strip()
        if trimmed:
            parts.append(trimmed)
        return "\n".join(parts)


class ExecutionTimeoutError(CliSupervisorError):
    """The tool exceeded its deadline and was killed."""

    def __init__(self, message: str, timeout: float = 0.0):
        self.timeout = timeout
        super().__init__(message)


class PackageManagerError(CliSupervisorError):
    """A package manager subprocess (install/uninstall) failed."""

    def __init__(self, message: str, exit_code: int = -1, stderr: str = ""):
        self.message = message
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(message)


class ParseFailure(CliSupervisorError):
    """Malformed registry or version data. Always recovered locally."""
