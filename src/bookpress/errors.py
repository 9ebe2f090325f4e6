"""Exception taxonomy for job execution.

Task-level faults (``TransientTaskError``) and rate-limit waits
(``UpstreamRateLimited``) are recovered locally. ``JobAborted`` subclasses
are fatal to a job: it is marked failed and its checkpoint is kept so an
operator can resume it later.
"""


class BookPressError(Exception):
    """Base class for all worker errors."""


class TransientTaskError(BookPressError):
    """A render or network failure inside a single conversion task."""


class JobAborted(BookPressError):
    """The whole conversion must stop; the checkpoint stays on disk."""


class CircuitBreakerTripped(JobAborted):
    def __init__(self, consecutive_failures: int, threshold: int):
        self.consecutive_failures = consecutive_failures
        self.threshold = threshold
        super().__init__(
            f"Circuit breaker tripped: {consecutive_failures} consecutive failures "
            f"(threshold {threshold})"
        )


class JobTimeoutExceeded(JobAborted):
    def __init__(self, elapsed_s: float, limit_s: float):
        self.elapsed_s = elapsed_s
        self.limit_s = limit_s
        super().__init__(f"Job exceeded maximum duration ({elapsed_s:.0f}s > {limit_s:.0f}s)")


class UpstreamRateLimited(BookPressError):
    """Token bucket is empty; retry after ``wait_s`` seconds."""

    def __init__(self, wait_s: float, remaining: float = 0.0):
        self.wait_s = wait_s
        self.remaining = remaining
        super().__init__(f"Upstream rate limit reached, retry in {wait_s:.3f}s")


class ResourceHealthError(BookPressError):
    """The rendering engine is disconnected or failed its health probe."""


class ShutdownRequested(BookPressError):
    """The worker is stopping; the last checkpoint is the resume point."""


class InvalidStatusTransition(BookPressError):
    def __init__(self, job_id: str, current: str, requested: str):
        self.job_id = job_id
        self.current = current
        self.requested = requested
        super().__init__(f"Job {job_id}: cannot move from {current} to {requested}")


class QueueDepthUnavailable(BookPressError):
    """The queue did not report an approximate message count."""


class WorkerCountUnavailable(BookPressError):
    """The container service did not report its running workers."""
