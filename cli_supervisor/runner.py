"""
Process runner for the wrapped CLI.

Turns a resolved RunSpec plus an ExecutionRequest into a typed outcome:
spawns the child with UTF-8 environment overrides, feeds stdin while
draining stdout/stderr, kills the child (whole process group on POSIX) on
timeout or cancellation and classifies the result.
"""

from __future__ import annotations

import asyncio
import os
import signal
import subprocess
import threading
import time
from typing import Any, Sequence

from .common import is_windows, process_env
from .errors import ToolNotFoundError
from .logging_config import get_logger
from .outcomes import (
    DEFAULT_TIMEOUT_SECONDS,
    ExecutionOutcome,
    ExecutionRequest,
    Failure,
    NotFound,
    Success,
    Timeout,
    Unavailable,
)
from .resolver import Resolver

logger = get_logger(__name__)

# Argument value telling the CLI to read that argument's payload from stdin
STDIN_SENTINEL = "-"

# Upper bound on draining output after a kill
REAP_TIMEOUT_SECONDS = 5.0

# Reported for a cancelled call whose child still exited cleanly
CANCELLED_EXIT_CODE = -9


def with_stdin_payload(
    args: Sequence[str],
    flag: str,
    payload: str | bytes,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    cwd: str | None = None,
) -> ExecutionRequest:
    """
    Build a request passing a large payload through stdin.

    Example:
        with_stdin_payload(["render", "sec:all"], "--task", text)
        -> args ("render", "sec:all", "--task", "-"), stdin=text
    """
    return ExecutionRequest(
        args=(*args, flag, STDIN_SENTINEL),
        stdin=payload,
        timeout=timeout,
        cwd=cwd,
    )


def _session_kwargs() -> dict[str, Any]:
    # Own session/process group so a kill reaches grandchildren too
    if is_windows():
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


def _kill(process: subprocess.Popen) -> None:
    if is_windows():
        if process.poll() is None:
            process.kill()
        return
    # Signal the whole session even if the leader already exited: a
    # grandchild may still hold the output pipes open
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        logger.debug(f"Process group {process.pid} already gone")


def _reap(process: subprocess.Popen) -> tuple[bytes, bytes]:
    """Collect remaining output after a kill without blocking forever."""
    try:
        return process.communicate(timeout=REAP_TIMEOUT_SECONDS)
    except subprocess.TimeoutExpired:
        # Something outside the process group still holds the pipes
        logger.warning(f"Output pipes of process {process.pid} still open after kill, closing them")
        for pipe in (process.stdin, process.stdout, process.stderr):
            if pipe is not None:
                pipe.close()
        process.wait(timeout=REAP_TIMEOUT_SECONDS)
        return b"", b""


def _decode(data: bytes | None) -> str:
    if not data:
        return ""
    return data.decode("utf-8", errors="replace")


def _encode_stdin(stdin: str | bytes | None) -> bytes | None:
    if stdin is None:
        return None
    if isinstance(stdin, str):
        return stdin.encode("utf-8")
    return stdin


class _Invocation:
    """Tracks one in-flight child so it can be cancelled from another thread."""

    def __init__(self):
        self._lock = threading.Lock()
        self.process: subprocess.Popen | None = None
        self.cancelled = False

    def attach(self, process: subprocess.Popen) -> None:
        with self._lock:
            self.process = process
            if self.cancelled:
                _kill(process)

    def cancel(self) -> None:
        with self._lock:
            self.cancelled = True
            if self.process is not None:
                _kill(self.process)


class ProcessRunner:
    """
    Executes the wrapped CLI.

    Args:
        resolver: Resolver providing the RunSpec
        env: Extra environment variables for every child
    """

    def __init__(self, resolver: Resolver, env: dict[str, str] | None = None):
        self.resolver = resolver
        self.env = dict(env or {})
        self._invocations: set[_Invocation] = set()
        self._invocations_lock = threading.Lock()

    def execute(self, request: ExecutionRequest) -> ExecutionOutcome:
        """
        Run the CLI and classify the result.

        Args:
            request: Arguments, stdin payload, timeout and working directory

        Returns:
            Success, Failure, Timeout, NotFound or Unavailable
        """
        return self._execute(request, _Invocation())

    async def execute_async(self, request: ExecutionRequest) -> ExecutionOutcome:
        """
        Run execute() on the default executor.

        Cancelling the awaiting task kills the child process.
        """
        invocation = _Invocation()
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self._execute, request, invocation)
        except asyncio.CancelledError:
            logger.debug("CLI call cancelled, killing child process")
            invocation.cancel()
            raise

    def cancel(self) -> int:
        """
        Kill every in-flight child process.

        Returns:
            Number of invocations cancelled
        """
        with self._invocations_lock:
            invocations = list(self._invocations)
        for invocation in invocations:
            invocation.cancel()
        if invocations:
            logger.info(f"Cancelled {len(invocations)} running CLI call(s)")
        return len(invocations)

    def _execute(self, request: ExecutionRequest, invocation: _Invocation) -> ExecutionOutcome:
        try:
            spec = self.resolver.resolve()
        except ToolNotFoundError as e:
            if e.silent:
                logger.debug(f"CLI unavailable: {e.message}")
                return Unavailable(e.message)
            logger.warning(f"CLI not found: {e.message}")
            return NotFound(e.message, silent=False)

        argv = spec.argv(request.args)
        command_line = " ".join(argv)
        input_data = _encode_stdin(request.stdin)
        logger.debug(f"Running: {command_line} (timeout {request.timeout}s, cwd {request.cwd or '.'})")

        start_time = time.monotonic()
        try:
            process = subprocess.Popen(
                argv,
                stdin=subprocess.PIPE if input_data is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=request.cwd,
                env=process_env(self.env),
                **_session_kwargs(),
            )
        except OSError as e:
            # Binary vanished or became unrunnable since it was resolved
            logger.warning(f"Failed to start {argv[0]}: {e}")
            self.resolver.invalidate_cache()
            return NotFound(f"Failed to start {argv[0]}: {e}", silent=False)

        with self._invocations_lock:
            self._invocations.add(invocation)
        invocation.attach(process)

        try:
            # communicate() writes stdin while draining both output pipes
            stdout, stderr = process.communicate(input=input_data, timeout=request.timeout)
        except subprocess.TimeoutExpired:
            _kill(process)
            _reap(process)
            elapsed = time.monotonic() - start_time
            logger.warning(f"CLI timed out after {elapsed:.1f}s: {command_line}")
            return Timeout(elapsed=elapsed, timeout=request.timeout)
        except KeyboardInterrupt:
            _kill(process)
            _reap(process)
            raise
        finally:
            with self._invocations_lock:
                self._invocations.discard(invocation)

        elapsed = time.monotonic() - start_time
        exit_code = process.returncode
        stdout_text = _decode(stdout)
        stderr_text = _decode(stderr)

        if invocation.cancelled:
            logger.info(f"CLI call cancelled after {elapsed:.1f}s: {command_line}")
            if exit_code == 0:
                exit_code = CANCELLED_EXIT_CODE
        if exit_code == 0 and not invocation.cancelled:
            logger.debug(f"CLI finished in {elapsed:.2f}s")
            return Success(stdout=stdout_text, stderr=stderr_text)

        logger.debug(f"CLI exited with code {exit_code} in {elapsed:.2f}s")
        return Failure(
            exit_code=exit_code,
            stderr=stderr_text,
            stdout=stdout_text,
            command=command_line,
        )
