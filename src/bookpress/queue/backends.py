from __future__ import annotations

"""Abstract base classes for the job queue and the job store.

The queue is at-least-once: a received message that is not acked becomes
visible again after the backend's visibility timeout, possibly to another
worker. Nothing here prevents two workers from holding the same job; the
conversion outputs are written by key, so duplicated work only costs time.
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from .models import Job, JobStatus, QueueMessage, StateTransition


class QueueClient(ABC):
    """Priority-partitioned job queue.

    Implementations must provide:
    - Two logical destinations (standard, high-priority) selected per message
    - Deduplication of high-priority enqueues by job id within a window
    - Idempotent ack (unknown or stale receipt tokens are ignored)
    """

    @abstractmethod
    def enqueue(self, job_id: str, is_high_priority: bool = False) -> None:
        """Publish ``{"jobId": job_id, "isHighPriority": is_high_priority}``.

        Args:
            job_id: Job to process
            is_high_priority: Route to the high-priority destination

        Implementation notes:
        - High-priority messages carry a deduplication id equal to job_id
        - Transport errors propagate to the caller
        """
        pass

    @abstractmethod
    def receive(self) -> List["QueueMessage"]:
        """Fetch a small batch (at most two) with a bounded long-poll.

        Returns:
            Decoded messages; possibly empty when the wait elapses

        Implementation notes:
        - Malformed bodies are dropped with a warning, never raised
        - An interruptible worker filters out priority-flagged messages
        - Received messages stay invisible until acked or timed out
        """
        pass

    @abstractmethod
    def ack(self, receipt_token: str) -> None:
        """Delete a received message.

        Args:
            receipt_token: Handle from the matching ``receive`` call

        Implementation notes:
        - Callers ack only after the job's terminal status is stored
        - Must be idempotent
        """
        pass

    @abstractmethod
    def depth(self) -> int:
        """Approximate number of visible messages (backlog signal only).

        Raises:
            QueueDepthUnavailable: the backend did not report a count
        """
        pass


class JobStore(ABC):
    """Key-value persistence for job records.

    The job service is the only writer. Implementations must enforce the
    monotonic lifecycle (see ``JobStatus``) and keep an audit trail of
    every transition.
    """

    @abstractmethod
    def insert(self, job: "Job") -> None:
        """Persist a new job record."""
        pass

    @abstractmethod
    def get(self, job_id: str) -> Optional["Job"]:
        """Return the job or None if it does not exist."""
        pass

    @abstractmethod
    def set_status(self, job_id: str, status: "JobStatus", worker_id: Optional[str] = None) -> "Job":
        """Move a job to ``status``.

        Args:
            job_id: Job identifier
            status: Requested state
            worker_id: Recorded in the audit trail

        Returns:
            The updated job

        Raises:
            KeyError: job does not exist
            InvalidStatusTransition: the move would regress the lifecycle
        """
        pass

    @abstractmethod
    def transitions(self, job_id: str) -> List["StateTransition"]:
        """Audit trail for a job, oldest first."""
        pass
