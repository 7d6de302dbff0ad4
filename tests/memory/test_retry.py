"""Tests for the bounded conflict-retry driver."""

import pytest

from onewire_logger.errors import InternalConflict, ProtocolError, TransportFault
from onewire_logger.memory.retry import Fatal, Retry, Success, attempt, run_with_retry


class Script:
    """Callable that raises the queued errors, then returns a value."""

    def __init__(self, *errors: Exception, value: str = "done") -> None:
        self.errors = list(errors)
        self.value = value
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.value


class TestAttempt:
    """Tests for outcome classification."""

    def test_success(self) -> None:
        assert attempt(lambda: 3) == Success(3)

    def test_conflict_is_retry(self) -> None:
        assert isinstance(attempt(Script(InternalConflict("x"))), Retry)

    def test_other_fault_is_fatal(self) -> None:
        outcome = attempt(Script(ProtocolError("crc")))
        assert isinstance(outcome, Fatal)
        assert isinstance(outcome.error, ProtocolError)


class TestRunWithRetry:
    """Tests for the retry loop."""

    def test_no_conflict_no_reset(self) -> None:
        resets: list[int] = []
        command = Script()
        assert run_with_retry(command, reset_bus=lambda: resets.append(1), delay=0) == "done"
        assert command.calls == 1
        assert resets == []

    def test_one_conflict_one_retry(self) -> None:
        resets: list[int] = []
        command = Script(InternalConflict("x"))
        assert run_with_retry(command, reset_bus=lambda: resets.append(1), delay=0) == "done"
        assert command.calls == 2
        assert resets == [1]

    def test_budget_exhausted(self) -> None:
        command = Script(*[InternalConflict("x")] * 5)
        with pytest.raises(TransportFault, match="maximum number of retries") as info:
            run_with_retry(command, reset_bus=lambda: None, delay=0, max_attempts=5)
        assert command.calls == 5
        assert isinstance(info.value.__cause__, InternalConflict)

    def test_fatal_not_retried(self) -> None:
        command = Script(ProtocolError("crc"))
        with pytest.raises(ProtocolError):
            run_with_retry(command, reset_bus=lambda: None, delay=0)
        assert command.calls == 1

    def test_recovery_short_circuits(self) -> None:
        """A recovery check that sees the effect ends the loop with its value."""
        command = Script(*[InternalConflict("x")] * 3)
        value = run_with_retry(
            command, reset_bus=lambda: None, recover=lambda: "recovered", delay=0
        )
        assert value == "recovered"
        assert command.calls == 1

    def test_recovery_none_keeps_retrying(self) -> None:
        command = Script(InternalConflict("x"))
        value = run_with_retry(command, reset_bus=lambda: None, recover=lambda: None, delay=0)
        assert value == "done"
        assert command.calls == 2
