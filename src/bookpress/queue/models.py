"""Pydantic models for jobs and queue messages.

This module defines the type-safe models shared by the queue backends, the
job store and the job service.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class JobStatus(str, Enum):
    """Job lifecycle states.

    State transitions:
        created → inprogress     (worker picks up the message)
        created → failed         (job rejected before any work started)
        inprogress → inprogress  (redelivered message; no-op)
        inprogress → finished    (conversion and packaging succeeded)
        inprogress → failed      (unresolvable URL, breaker trip, timeout, crash)

    ``finished`` and ``failed`` are terminal and never change again.
    """

    CREATED = "created"
    INPROGRESS = "inprogress"
    FINISHED = "finished"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.FINISHED, JobStatus.FAILED)


_ALLOWED_TRANSITIONS = {
    JobStatus.CREATED: {JobStatus.INPROGRESS, JobStatus.FAILED},
    JobStatus.INPROGRESS: {JobStatus.INPROGRESS, JobStatus.FINISHED, JobStatus.FAILED},
    JobStatus.FINISHED: set(),
    JobStatus.FAILED: set(),
}


def can_transition(current: str, requested: str) -> bool:
    """True if a job in ``current`` may move to ``requested``."""
    return JobStatus(requested) in _ALLOWED_TRANSITIONS[JobStatus(current)]


class Job(BaseModel):
    """A single book-conversion request."""

    id: str = Field(..., description="Job identifier (UUID)")
    status: JobStatus = Field(default=JobStatus.CREATED, description="Lifecycle state")
    is_high_priority: bool = Field(default=False, description="Route through the high-priority queue")
    url: Optional[str] = Field(default=None, description="Source URL of the book's cover page")
    requester_ip: Optional[str] = Field(default=None, description="Address that submitted the job")
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    class Config:
        """Pydantic configuration."""

        use_enum_values = True

    def public_view(self) -> dict:
        """Shape returned to API callers polling for status."""
        return {
            "id": self.id,
            "isHighPriority": self.is_high_priority,
            "status": self.status,
            "url": self.url,
        }


class JobCreate(BaseModel):
    """Input accepted by ``JobService.create``."""

    url: str = Field(..., min_length=1, description="Source URL of the book's cover page")
    is_high_priority: bool = Field(default=False)
    requester_ip: Optional[str] = Field(default=None)


class JobQueueBody(BaseModel):
    """Wire format of a queue message body: ``{"jobId": ..., "isHighPriority": ...}``."""

    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(..., alias="jobId", min_length=1)
    is_high_priority: bool = Field(default=False, alias="isHighPriority")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class QueueMessage(BaseModel):
    """A received message; ``receipt_token`` authorizes its deletion."""

    job_id: str = Field(..., description="Job the message refers to")
    is_high_priority: bool = Field(default=False)
    receipt_token: str = Field(..., description="Opaque handle, rotated on every redelivery")


class StateTransition(BaseModel):
    """Audit log entry for job state changes."""

    id: Optional[int] = Field(default=None, description="Auto-increment ID")
    job_id: str = Field(..., description="Job identifier")
    from_state: Optional[str] = Field(default=None, description="Previous state")
    to_state: str = Field(..., description="New state")
    timestamp: datetime = Field(default_factory=datetime.now, description="Transition time")
    worker_id: Optional[str] = Field(default=None, description="Worker that caused transition")
