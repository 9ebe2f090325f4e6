"""Retry/backoff policy and circuit breaker for conversion tasks.

Both objects are independent of the task loop so they can be tested and
tuned on their own:

- ``RetryPolicy`` wraps Tenacity's ``AsyncRetrying`` with exponential
  backoff (base, multiplier, cap) and a fixed number of attempts. It never
  raises for ordinary failures; it reports them in a ``RetryOutcome``.
- ``CircuitBreaker`` counts consecutive failed tasks and trips once the
  threshold is reached.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional

from tenacity import (
    AsyncRetrying,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .errors import CircuitBreakerTripped, JobAborted, ShutdownRequested
from .models import RetryConfig

logger = logging.getLogger(__name__)

# Never retried: these end the job (or the worker), not just one attempt.
_NON_RETRYABLE = (JobAborted, ShutdownRequested)


@dataclass
class RetryOutcome:
    """Result of running an operation under a retry policy."""
    success: bool
    attempts: int
    result: Any = None
    error: Optional[BaseException] = None


class RetryPolicy:
    """Exponential backoff: ``initial * multiplier**(n-1)`` capped at ``max_delay_s``."""

    def __init__(
        self,
        max_attempts: int = 3,
        initial_delay_s: float = 1.0,
        multiplier: float = 2.0,
        max_delay_s: float = 10.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
        self.max_attempts = max_attempts
        self.initial_delay_s = initial_delay_s
        self.multiplier = multiplier
        self.max_delay_s = max_delay_s
        self._sleep = sleep

    @classmethod
    def from_config(cls, config: RetryConfig, **kwargs) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            initial_delay_s=config.initial_delay_s,
            multiplier=config.backoff_multiplier,
            max_delay_s=config.max_delay_s,
            **kwargs,
        )

    def delays(self) -> List[float]:
        """Backoff slept between attempts (one fewer than ``max_attempts``)."""
        return [
            min(self.initial_delay_s * self.multiplier ** (n - 1), self.max_delay_s)
            for n in range(1, self.max_attempts)
        ]

    def _retrying(self, context: str) -> AsyncRetrying:
        def log_retry(retry_state) -> None:
            logger.warning(
                "%s failed on attempt %d/%d, retrying in %.1fs: %s",
                context or "Operation",
                retry_state.attempt_number,
                self.max_attempts,
                retry_state.next_action.sleep,
                retry_state.outcome.exception(),
            )

        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(
                multiplier=self.initial_delay_s,
                exp_base=self.multiplier,
                min=0,
                max=self.max_delay_s,
            ),
            retry=retry_if_not_exception_type(_NON_RETRYABLE),
            before_sleep=log_retry,
            sleep=self._sleep,
            reraise=True,
        )

    async def run(self, operation: Callable[[], Awaitable[Any]], context: str = "") -> RetryOutcome:
        """Run ``operation`` until it succeeds or attempts are exhausted.

        Args:
            operation: Zero-argument coroutine function, called once per attempt
            context: Short label used in log messages

        Returns:
            RetryOutcome with the result, or the last error after exhaustion

        Raises:
            JobAborted, ShutdownRequested: propagated immediately, never retried
        """
        attempts = 0
        try:
            async for attempt in self._retrying(context):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    result = await operation()
        except _NON_RETRYABLE:
            raise
        except Exception as e:
            logger.warning("%s failed after %d/%d attempts: %s", context, attempts, self.max_attempts, e)
            return RetryOutcome(success=False, attempts=attempts, error=e)

        if attempts > 1:
            logger.info("%s succeeded on attempt %d", context, attempts)
        return RetryOutcome(success=True, attempts=attempts, result=result)


class CircuitBreaker:
    """Trips after ``threshold`` consecutive failures; any success resets it."""

    def __init__(self, threshold: int = 3, consecutive_failures: int = 0):
        if threshold < 1:
            raise ValueError(f"threshold must be >= 1, got {threshold}")
        self.threshold = threshold
        self.consecutive_failures = consecutive_failures

    @property
    def is_open(self) -> bool:
        return self.consecutive_failures >= self.threshold

    def record_success(self) -> None:
        self.consecutive_failures = 0

    def record_failure(self) -> int:
        self.consecutive_failures += 1
        return self.consecutive_failures

    def check(self) -> None:
        """Raise ``CircuitBreakerTripped`` if no more work may run."""
        if self.is_open:
            raise CircuitBreakerTripped(self.consecutive_failures, self.threshold)
