"""
Unit tests for retry with exponential backoff.

Sleeps are recorded instead of awaited so the tests run instantly.
"""

import asyncio

import pytest

from src.core.retry import backoff_delays, retry_async


class FlakyOperation:
    """Fails a fixed number of times, then returns a value."""

    def __init__(self, failures: int, error: type[Exception] = ConnectionError):
        self.failures = failures
        self.error = error
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error(f"failure {self.calls}")
        return "done"


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


class TestBackoffDelays:

    def test_delays_double(self):
        assert backoff_delays(4, 1.0, 30.0) == [1.0, 2.0, 4.0]

    def test_delays_are_capped(self):
        assert backoff_delays(6, 2.0, 10.0) == [2.0, 4.0, 8.0, 10.0, 10.0]

    def test_single_attempt_never_sleeps(self):
        assert backoff_delays(1, 1.0, 30.0) == []


class TestRetryAsync:

    def test_success_on_first_attempt(self):
        operation = FlakyOperation(failures=0)
        sleep = RecordingSleep()

        result = asyncio.run(retry_async(operation, attempts=3, sleep=sleep))

        assert result == "done"
        assert operation.calls == 1
        assert sleep.delays == []

    def test_retries_until_success(self):
        """Two failures then success: three calls, two backoff sleeps."""
        operation = FlakyOperation(failures=2)
        sleep = RecordingSleep()

        result = asyncio.run(retry_async(operation, attempts=3, base_delay=0.5, sleep=sleep))

        assert result == "done"
        assert operation.calls == 3
        assert sleep.delays == [0.5, 1.0]

    def test_raises_last_error_when_exhausted(self):
        operation = FlakyOperation(failures=5)
        sleep = RecordingSleep()

        with pytest.raises(ConnectionError, match="failure 3"):
            asyncio.run(retry_async(operation, attempts=3, sleep=sleep))

        assert operation.calls == 3

    def test_non_retryable_error_propagates_immediately(self):
        operation = FlakyOperation(failures=1, error=KeyError)
        sleep = RecordingSleep()

        with pytest.raises(KeyError):
            asyncio.run(retry_async(operation, attempts=5, retry_on=(ConnectionError,), sleep=sleep))

        assert operation.calls == 1
        assert sleep.delays == []

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError, match="at least 1"):
            asyncio.run(retry_async(FlakyOperation(0), attempts=0))
