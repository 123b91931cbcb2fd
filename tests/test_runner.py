"""
Tests for the process runner (cli_supervisor/runner.py).

Child processes are real Python interpreters (sys.executable -c ...) so
stdin piping, timeouts and kills are exercised end to end.
"""

import asyncio
import os
import signal
import subprocess
import sys
import threading
import time
from unittest.mock import MagicMock, patch

import pytest

from cli_supervisor.errors import ToolNotFoundError
from cli_supervisor.outcomes import (
    ExecutionRequest,
    Failure,
    NotFound,
    Success,
    Timeout,
    Unavailable,
)
from cli_supervisor.resolver import RunSpec
from cli_supervisor.runner import (
    CANCELLED_EXIT_CODE,
    STDIN_SENTINEL,
    ProcessRunner,
    _Invocation,
    _kill,
    with_stdin_payload,
)

ECHO_STDIN = "import sys; sys.stdout.write(sys.stdin.read())"
SLEEP = "import time; time.sleep(5)"
# Exits at once, leaving a sleeping grandchild holding the output pipes
ORPHAN_SLEEPER = (
    "import subprocess, sys; "
    "subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(5)'])"
)


def python_runner(script):
    """Runner whose resolved CLI is `python -c script`."""
    resolver = MagicMock()
    resolver.resolve.return_value = RunSpec(sys.executable, ("-c", script))
    return ProcessRunner(resolver)


@pytest.fixture
def spawned():
    """Record every Popen created by the runner."""
    processes = []
    real_popen = subprocess.Popen

    def spy(*args, **kwargs):
        process = real_popen(*args, **kwargs)
        processes.append(process)
        return process

    with patch("cli_supervisor.runner.subprocess.Popen", side_effect=spy):
        yield processes


class TestExecute:
    """Tests for outcome classification."""

    def test_echo_stdin(self):
        """Test stdin payload reaches the child and stdout comes back."""
        runner = python_runner(ECHO_STDIN)
        outcome = runner.execute(ExecutionRequest(args=("echo-stdin",), stdin="hello", timeout=30))
        assert outcome == Success("hello", "")
        assert outcome.ok

    def test_bytes_stdin(self):
        """Test bytes payload is passed through."""
        runner = python_runner(ECHO_STDIN)
        outcome = runner.execute(ExecutionRequest(stdin=b"raw bytes", timeout=30))
        assert outcome == Success("raw bytes", "")

    def test_large_stdin_does_not_deadlock(self):
        """Test payload larger than pipe buffers is echoed back completely."""
        payload = "x" * (4 * 1024 * 1024)
        runner = python_runner(ECHO_STDIN)
        outcome = runner.execute(ExecutionRequest(stdin=payload, timeout=60))
        assert isinstance(outcome, Success)
        assert len(outcome.stdout) == len(payload)

    def test_no_stdin_gets_devnull(self):
        """Test child without payload sees an empty stdin."""
        runner = python_runner("import sys; print(repr(sys.stdin.read()))")
        outcome = runner.execute(ExecutionRequest(timeout=30))
        assert outcome.stdout.strip() == "''"

    def test_args_follow_prefix(self):
        """Test call arguments are appended after the RunSpec prefix."""
        runner = python_runner("import sys; print(' '.join(sys.argv[1:]))")
        outcome = runner.execute(ExecutionRequest(args=("render", "sec:all"), timeout=30))
        assert outcome.stdout.strip() == "render sec:all"

    def test_failure_keeps_stdout(self):
        """Test non-zero exit keeps both output streams."""
        script = "import sys; print('{\"diag\": 1}'); sys.stderr.write('bad input'); sys.exit(3)"
        runner = python_runner(script)
        outcome = runner.execute(ExecutionRequest(args=("x",), timeout=30))

        assert isinstance(outcome, Failure)
        assert outcome.exit_code == 3
        assert outcome.stderr == "bad input"
        assert outcome.stdout.strip() == '{"diag": 1}'
        assert outcome.command.endswith(" x")
        assert not outcome.ok

    def test_utf8_output(self):
        """Test output is decoded as UTF-8 regardless of locale."""
        runner = python_runner("print('h\\u00e9llo \\u2713')")
        outcome = runner.execute(ExecutionRequest(timeout=30))
        assert outcome.stdout.strip() == "héllo ✓"

    def test_environment_overrides(self):
        """Test deterministic encoding environment for the child."""
        script = "import os; print(os.environ['PYTHONIOENCODING'], os.environ['PYTHONUTF8'], os.environ['TERM'])"
        runner = python_runner(script)
        outcome = runner.execute(ExecutionRequest(timeout=30))
        assert outcome.stdout.split() == ["utf-8", "1", "dumb"]

    def test_extra_environment(self):
        """Test runner-level environment additions."""
        resolver = MagicMock()
        resolver.resolve.return_value = RunSpec(sys.executable, ("-c", "import os; print(os.environ['LG_MODE'])"))
        runner = ProcessRunner(resolver, env={"LG_MODE": "ide"})
        outcome = runner.execute(ExecutionRequest(timeout=30))
        assert outcome.stdout.strip() == "ide"

    def test_working_directory(self, tmp_path):
        """Test child runs in the requested directory."""
        runner = python_runner("import os; print(os.getcwd())")
        outcome = runner.execute(ExecutionRequest(cwd=str(tmp_path), timeout=30))
        assert os.path.realpath(outcome.stdout.strip()) == os.path.realpath(str(tmp_path))


class TestTimeout:
    """Tests for deadline enforcement."""

    def test_timeout_kills_child(self, spawned):
        """Test timed-out child is killed and reaped promptly."""
        runner = python_runner(SLEEP)
        started = time.monotonic()
        outcome = runner.execute(ExecutionRequest(args=("--version",), timeout=0.1))
        elapsed = time.monotonic() - started

        assert isinstance(outcome, Timeout)
        assert outcome.timeout == 0.1
        assert outcome.elapsed >= 0.1
        assert elapsed < 3
        assert len(spawned) == 1
        assert spawned[0].poll() is not None

    def test_timeout_is_not_sticky(self):
        """Test a timeout doesn't affect the next call."""
        runner = python_runner("import sys, time; time.sleep(float(sys.argv[1]))")
        assert isinstance(runner.execute(ExecutionRequest(args=("5",), timeout=0.1)), Timeout)
        assert isinstance(runner.execute(ExecutionRequest(args=("0",), timeout=30)), Success)

    @pytest.mark.skipif(sys.platform == "win32", reason="process groups are POSIX only")
    def test_timeout_kills_grandchild_holding_pipes(self):
        """Test a leftover grandchild can't stall the call past its deadline."""
        runner = python_runner(ORPHAN_SLEEPER)
        started = time.monotonic()
        outcome = runner.execute(ExecutionRequest(timeout=0.3))

        assert isinstance(outcome, Timeout)
        assert time.monotonic() - started < 2

    @pytest.mark.skipif(sys.platform == "win32", reason="process groups are POSIX only")
    def test_kill_signals_group_after_leader_exit(self):
        """Test the group is signalled even when the leader is already reaped."""
        process = MagicMock(pid=4242)
        process.poll.return_value = 0
        with patch("cli_supervisor.runner.os.killpg") as killpg:
            _kill(process)
        killpg.assert_called_once_with(4242, signal.SIGKILL)

    @pytest.mark.skipif(sys.platform == "win32", reason="process groups are POSIX only")
    def test_kill_ignores_vanished_group(self):
        """Test a group that is already gone is not an error."""
        with patch("cli_supervisor.runner.os.killpg", side_effect=ProcessLookupError):
            _kill(MagicMock(pid=4242))


class TestResolutionErrors:
    """Tests for resolver error mapping."""

    def test_not_found(self):
        """Test loud resolution error maps to NotFound."""
        resolver = MagicMock()
        resolver.resolve.side_effect = ToolNotFoundError("pipx not found")
        outcome = ProcessRunner(resolver).execute(ExecutionRequest())
        assert outcome == NotFound("pipx not found", silent=False)

    def test_unavailable(self):
        """Test silent replay maps to Unavailable."""
        resolver = MagicMock()
        resolver.resolve.side_effect = ToolNotFoundError("pipx not found", silent=True)
        outcome = ProcessRunner(resolver).execute(ExecutionRequest())
        assert outcome == Unavailable("pipx not found")

    def test_spawn_error_invalidates_cache(self, tmp_path):
        """Test a vanished binary yields NotFound and forces re-resolution."""
        resolver = MagicMock()
        resolver.resolve.return_value = RunSpec(str(tmp_path / "gone" / "listing-generator"))
        outcome = ProcessRunner(resolver).execute(ExecutionRequest())

        assert isinstance(outcome, NotFound)
        assert outcome.silent is False
        assert "Failed to start" in outcome.message
        resolver.invalidate_cache.assert_called_once()


class TestCancellation:
    """Tests for killing in-flight children."""

    def test_cancel_kills_running_call(self, spawned):
        """Test cancel() terminates a running call from another thread."""
        runner = python_runner(SLEEP)
        outcomes = []

        thread = threading.Thread(
            target=lambda: outcomes.append(runner.execute(ExecutionRequest(timeout=30)))
        )
        started = time.monotonic()
        thread.start()

        deadline = time.monotonic() + 5
        while not runner._invocations and time.monotonic() < deadline:
            time.sleep(0.01)

        assert runner.cancel() == 1
        thread.join(timeout=10)

        assert time.monotonic() - started < 5
        assert len(outcomes) == 1
        assert isinstance(outcomes[0], Failure)
        assert spawned[0].poll() is not None

    def test_cancel_with_nothing_running(self):
        """Test cancel() is a no-op when idle."""
        assert python_runner(SLEEP).cancel() == 0

    def test_cancelled_clean_exit_is_failure(self):
        """Test a cancelled call never reports exit code 0."""
        invocation = _Invocation()
        invocation.cancel()
        runner = python_runner("pass")

        with patch("cli_supervisor.runner._kill"):
            outcome = runner._execute(ExecutionRequest(timeout=30), invocation)

        assert isinstance(outcome, Failure)
        assert outcome.exit_code == CANCELLED_EXIT_CODE
        assert outcome.exit_code != 0


class TestExecuteAsync:
    """Tests for the asyncio entry point."""

    def test_execute_async(self):
        """Test async execution returns the same outcome."""
        runner = python_runner(ECHO_STDIN)
        outcome = asyncio.run(runner.execute_async(ExecutionRequest(stdin="async", timeout=30)))
        assert outcome == Success("async", "")

    def test_task_cancellation_kills_child(self, spawned):
        """Test cancelling the awaiting task kills the child process."""
        runner = python_runner(SLEEP)

        async def scenario():
            task = asyncio.ensure_future(runner.execute_async(ExecutionRequest(timeout=30)))
            await asyncio.sleep(0.3)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        started = time.monotonic()
        asyncio.run(scenario())

        assert time.monotonic() - started < 5
        assert len(spawned) == 1
        spawned[0].wait(timeout=5)
        assert spawned[0].returncode is not None


class TestStdinPayload:
    """Tests for the stdin sentinel helper."""

    def test_with_stdin_payload(self):
        """Test sentinel argument and payload are added."""
        request = with_stdin_payload(["render", "sec:all"], "--task", "long text", timeout=10, cwd="/work")
        assert request.args == ("render", "sec:all", "--task", STDIN_SENTINEL)
        assert request.stdin == "long text"
        assert request.timeout == 10
        assert request.cwd == "/work"

    def test_payload_reaches_child(self):
        """Test payload is readable by a child honoring the sentinel."""
        script = (
            "import sys\n"
            "args = sys.argv[1:]\n"
            "i = args.index('--task')\n"
            "print(sys.stdin.read() if args[i + 1] == '-' else args[i + 1])\n"
        )
        runner = python_runner(script)
        outcome = runner.execute(with_stdin_payload(["render"], "--task", "from stdin"))
        assert outcome.stdout.strip() == "from stdin"
