"""Tests for the retry policy and circuit breaker."""

import pytest

from bookpress.errors import CircuitBreakerTripped, JobTimeoutExceeded, ShutdownRequested
from bookpress.models import RetryConfig
from bookpress.resilience import CircuitBreaker, RetryPolicy


class Flaky:
    """Fails ``failures`` times, then returns ``value``."""

    def __init__(self, failures: int, value="ok", error=RuntimeError):
        self.failures = failures
        self.value = value
        self.error = error
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error(f"attempt {self.calls} failed")
        return self.value


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def policy(sleeps):
    async def record(seconds):
        sleeps.append(seconds)

    return RetryPolicy(max_attempts=3, initial_delay_s=1, multiplier=2, max_delay_s=10, sleep=record)


class TestRetryPolicy:
    @pytest.mark.asyncio(loop_scope="function")
    async def test_first_attempt_success(self, policy, sleeps):
        outcome = await policy.run(Flaky(0), context="op")

        assert outcome.success
        assert outcome.attempts == 1
        assert outcome.result == "ok"
        assert sleeps == []

    @pytest.mark.asyncio(loop_scope="function")
    async def test_recovers_on_last_attempt(self, policy, sleeps):
        """Two failures then success: backoff of 1s then 2s."""
        op = Flaky(2)
        outcome = await policy.run(op, context="op")

        assert outcome.success
        assert outcome.attempts == 3
        assert op.calls == 3
        assert sleeps == [1, 2]

    @pytest.mark.asyncio(loop_scope="function")
    async def test_retry_log_names_the_operation(self, policy, caplog):
        with caplog.at_level("WARNING", logger="bookpress.resilience"):
            await policy.run(Flaky(1), context="Convert page https://chem.example.org/1")

        assert "Convert page https://chem.example.org/1 failed on attempt 1/3, retrying in 1.0s" in caplog.text
        assert "attempt 1 failed" in caplog.text
        assert "<unknown>" not in caplog.text

    @pytest.mark.asyncio(loop_scope="function")
    async def test_exhaustion_reports_last_error(self, policy, sleeps):
        op = Flaky(5)
        outcome = await policy.run(op, context="op")

        assert not outcome.success
        assert outcome.attempts == 3
        assert op.calls == 3
        assert isinstance(outcome.error, RuntimeError)
        assert "attempt 3" in str(outcome.error)
        assert sleeps == [1, 2]

    @pytest.mark.asyncio(loop_scope="function")
    async def test_backoff_is_capped(self, sleeps):
        async def record(seconds):
            sleeps.append(seconds)

        policy = RetryPolicy(max_attempts=6, initial_delay_s=1, multiplier=2, max_delay_s=5, sleep=record)
        await policy.run(Flaky(10))

        assert sleeps == [1, 2, 4, 5, 5]
        assert policy.delays() == [1, 2, 4, 5, 5]

    @pytest.mark.asyncio(loop_scope="function")
    @pytest.mark.parametrize("error", [ShutdownRequested, lambda msg: JobTimeoutExceeded(10, 5)])
    async def test_job_level_errors_are_not_retried(self, policy, sleeps, error):
        op = Flaky(5, error=error)

        with pytest.raises((ShutdownRequested, JobTimeoutExceeded)):
            await policy.run(op)

        assert op.calls == 1
        assert sleeps == []

    def test_delays_from_config(self):
        policy = RetryPolicy.from_config(RetryConfig())
        assert policy.max_attempts == 3
        assert policy.delays() == [1, 2]

    def test_invalid_attempts(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)


class TestCircuitBreaker:
    def test_trips_at_threshold(self):
        breaker = CircuitBreaker(threshold=3)
        breaker.record_failure()
        breaker.record_failure()
        breaker.check()
        assert not breaker.is_open

        assert breaker.record_failure() == 3
        assert breaker.is_open
        with pytest.raises(CircuitBreakerTripped) as exc:
            breaker.check()
        assert exc.value.consecutive_failures == 3
        assert exc.value.threshold == 3

    def test_success_resets_streak(self):
        """Non-consecutive failures never trip the breaker."""
        breaker = CircuitBreaker(threshold=2)
        for _ in range(5):
            breaker.record_failure()
            breaker.record_success()
        assert breaker.consecutive_failures == 0
        breaker.check()

    def test_resumes_from_stored_count(self):
        breaker = CircuitBreaker(threshold=3, consecutive_failures=2)
        breaker.record_failure()
        assert breaker.is_open

    def test_invalid_threshold(self):
        with pytest.raises(ValueError):
            CircuitBreaker(threshold=0)
