"""Unit tests for the polling helper."""

import logging

import pytest

from awsacme.exceptions import Timeout
from awsacme.polling import poll_until


class TestPollUntil:
    """Tests for poll_until."""

    def test_returns_first_result(self):
        """Polling stops at the first non-None result."""
        results = iter([None, None, "done", "late"])
        calls = []

        def attempt():
            calls.append(1)
            return next(results)

        result = poll_until(attempt, timeout=10, interval=0, on_timeout=lambda: Timeout("x", 10))

        assert result == "done"
        assert len(calls) == 3

    def test_attempts_at_least_once(self):
        """A zero timeout still makes one attempt."""
        result = poll_until(lambda: 1, timeout=0, interval=0, on_timeout=lambda: Timeout("x", 0))

        assert result == 1

    def test_raises_built_exception_at_deadline(self, log_capture):
        """The on_timeout exception is raised once the deadline elapses."""
        with pytest.raises(Timeout) as exc_info:
            poll_until(
                lambda: None,
                timeout=0,
                interval=0,
                on_timeout=lambda: Timeout("thing", 0, "pending"),
            )

        assert exc_info.value.last_status == "pending"
        records = log_capture.get_records(logging.DEBUG, name="awsacme.polling")
        assert records[-1].attempts == 1

    def test_attempt_errors_propagate(self):
        """An exception raised by the attempt aborts polling."""

        def attempt():
            raise ValueError("boom")

        with pytest.raises(ValueError, match="boom"):
            poll_until(attempt, timeout=10, interval=0, on_timeout=lambda: Timeout("x", 10))

    def test_sleeps_between_attempts(self, monkeypatch):
        """The helper sleeps the interval between attempts instead of spinning."""
        clock = FakeClock()
        monkeypatch.setattr("awsacme.polling.time", clock)
        results = iter([None, None, True])

        poll_until(
            lambda: next(results), timeout=60, interval=5, on_timeout=lambda: Timeout("x", 60)
        )

        assert clock.sleeps == [5, 5]

    def test_last_sleep_is_capped_by_deadline(self, monkeypatch):
        """No sleep runs past the deadline."""
        clock = FakeClock()
        monkeypatch.setattr("awsacme.polling.time", clock)

        with pytest.raises(Timeout):
            poll_until(lambda: None, timeout=12, interval=5, on_timeout=lambda: Timeout("x", 12))

        assert clock.sleeps == [5, 5, 2]


class FakeClock:
    """Stands in for the time module; sleeping advances the clock."""

    def __init__(self) -> None:
        self.now = 1000.0
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
