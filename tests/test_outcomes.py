"""
Tests for execution requests and outcomes (cli_supervisor/outcomes.py).
"""

import pytest

from cli_supervisor.errors import (
    ExecutionFailedError,
    ExecutionTimeoutError,
    ToolNotFoundError,
    ToolUnavailableError,
)
from cli_supervisor.outcomes import (
    ExecutionRequest,
    Failure,
    NotFound,
    Success,
    Timeout,
    Unavailable,
)


class TestExecutionRequest:
    """Tests for ExecutionRequest."""

    def test_args_become_tuple(self):
        """Test list arguments are frozen into a tuple."""
        request = ExecutionRequest(args=["render", "sec:all"])
        assert request.args == ("render", "sec:all")

    def test_non_positive_timeout(self):
        """Test timeout must be positive."""
        with pytest.raises(ValueError, match="timeout"):
            ExecutionRequest(timeout=0)

    def test_with_timeout(self):
        """Test copy with another timeout."""
        request = ExecutionRequest(args=("a",), timeout=5)
        assert request.with_timeout(1).timeout == 1
        assert request.timeout == 5


class TestOutcomes:
    """Tests for ok/unwrap on every outcome."""

    def test_success(self):
        """Test Success unwraps to itself."""
        outcome = Success("out", "warn")
        assert outcome.ok is True
        assert outcome.unwrap() is outcome

    def test_failure(self):
        """Test Failure raises ExecutionFailedError with all streams."""
        outcome = Failure(2, "bad", stdout="{}", command="lg render")
        assert outcome.ok is False
        with pytest.raises(ExecutionFailedError) as exc_info:
            outcome.unwrap()
        error = exc_info.value
        assert error.exit_code == 2
        assert error.stdout == "{}"
        assert str(error) == "Command: lg render\nExit code: 2\nbad"

    def test_timeout(self):
        """Test Timeout raises ExecutionTimeoutError."""
        with pytest.raises(ExecutionTimeoutError) as exc_info:
            Timeout(elapsed=0.12, timeout=0.1).unwrap()
        assert exc_info.value.timeout == 0.1

    def test_not_found(self):
        """Test NotFound keeps the silent flag."""
        with pytest.raises(ToolNotFoundError) as exc_info:
            NotFound("missing", silent=True).unwrap()
        assert exc_info.value.silent is True

    def test_unavailable(self):
        """Test Unavailable raises ToolUnavailableError."""
        outcome = Unavailable("pipx not found")
        assert outcome.ok is False
        with pytest.raises(ToolUnavailableError, match="pipx not found"):
            outcome.unwrap()

    def test_outcomes_are_immutable(self):
        """Test outcomes are frozen."""
        outcome = Success("out")
        with pytest.raises(AttributeError):
            outcome.stdout = "changed"
