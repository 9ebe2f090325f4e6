"""Job queue and job record store."""

from .backends import QueueClient, JobStore
from .models import Job, JobCreate, JobQueueBody, JobStatus, QueueMessage, StateTransition
from .sqlite_backend import SQLiteQueueClient, SQLiteJobStore
from .sqs_backend import SQSQueueClient
from ..models import QueueConfig


def build_queue_client(config: QueueConfig) -> QueueClient:
    """Construct the queue backend named by ``config.backend``."""
    if config.backend == "sqs":
        return SQSQueueClient(config)
    return SQLiteQueueClient(config.sqlite_path, config=config)


__all__ = [
    "QueueClient",
    "JobStore",
    "Job",
    "JobCreate",
    "JobQueueBody",
    "JobStatus",
    "QueueMessage",
    "StateTransition",
    "SQLiteQueueClient",
    "SQLiteJobStore",
    "SQSQueueClient",
    "build_queue_client",
]
