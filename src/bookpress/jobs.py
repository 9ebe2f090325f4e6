"""Job lifecycle orchestration.

``JobService`` is the only writer of job records. A queue message is acked
only after the job's terminal status has been stored, so a crash between
the two leads to a redelivery, never to a lost job. A redelivered message
for a job that already finished or failed is acked without touching the
record.
"""

import logging
import socket
import os
import uuid
from typing import Optional, Union

from .content import BookID, ContentNode, ContentSource, MatterType, Packager, has_matter
from .conversion.pipeline import ConversionPipeline
from .errors import ShutdownRequested
from .queue.backends import JobStore, QueueClient
from .queue.models import Job, JobCreate, JobStatus, QueueMessage

logger = logging.getLogger(__name__)


def default_worker_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


class JobService:
    def __init__(
        self,
        store: JobStore,
        queue: QueueClient,
        content: ContentSource,
        pipeline: ConversionPipeline,
        packager: Packager,
        environment: str = "development",
        worker_id: Optional[str] = None,
    ):
        self.store = store
        self.queue = queue
        self.content = content
        self.pipeline = pipeline
        self.packager = packager
        self.environment = environment
        self.worker_id = worker_id or default_worker_id()

    # Inbound operations ---------------------------------------------------

    def create(self, data: Union[JobCreate, dict]) -> str:
        """Persist a new job with status ``created`` and return its id."""
        request = data if isinstance(data, JobCreate) else JobCreate(**data)
        job = Job(
            id=str(uuid.uuid4()),
            status=JobStatus.CREATED,
            is_high_priority=request.is_high_priority,
            url=request.url,
            requester_ip=request.requester_ip,
        )
        self.store.insert(job)
        logger.info("Created job %s for %s", job.id, job.url)
        return job.id

    def submit(self, data: Union[JobCreate, dict]) -> str:
        """Create a job and publish it to the queue matching its priority."""
        request = data if isinstance(data, JobCreate) else JobCreate(**data)
        job_id = self.create(request)
        self.queue.enqueue(job_id, request.is_high_priority)
        return job_id

    def get(self, job_id: str) -> Optional[Job]:
        return self.store.get(job_id)

    def describe(self, job_id: str) -> Optional[dict]:
        """Status view for pollers; a failed job is a normal answer, not an error."""
        job = self.get(job_id)
        return job.public_view() if job else None

    # Worker side ----------------------------------------------------------

    def set_status(self, job_id: str, status: JobStatus) -> Job:
        return self.store.set_status(job_id, status, worker_id=self.worker_id)

    def run(self, message: QueueMessage) -> None:
        """Process one queue message to a terminal state (or leave it for redelivery)."""
        job = self.get(message.job_id)
        if job is None:
            logger.warning("Received message for unknown job %s; discarding", message.job_id)
            self._ack(message)
            return
        if JobStatus(job.status).is_terminal:
            logger.info("Job %s is already %s; discarding redelivered message", job.id, job.status)
            self._ack(message)
            return

        self.set_status(job.id, JobStatus.INPROGRESS)

        try:
            book_id = self.content.resolve_book_id(job.url) if job.url else None
            if book_id is None:
                logger.warning("Job %s: could not resolve a book from %s", job.id, job.url)
                self.finish(message, JobStatus.FAILED)
                return

            root = self._prepare_content(book_id)
            result = self.pipeline.run(book_id, root)
            logger.info(
                "Job %s: %s converted (%d pages, %d failed tasks)",
                job.id, result.book_key, result.page_count, len(result.failed_tasks),
            )
            self.packager.package(book_id, root)
        except ShutdownRequested:
            logger.info("Job %s interrupted by shutdown; leaving it for redelivery", job.id)
            return
        except Exception:
            logger.exception("Job %s failed", job.id)
            self.finish(message, JobStatus.FAILED)
            return

        self.finish(message, JobStatus.FINISHED)

    def _prepare_content(self, book_id: BookID) -> ContentNode:
        """Discover the book and make sure both matter sections exist."""
        root = self.content.discover(book_id)
        missing = [m for m in (MatterType.FRONT, MatterType.BACK) if not has_matter(root, m)]
        for matter in missing:
            logger.info("Creating %s Matter for %s", matter.value, book_id.key)
            self.content.create_matter(root, matter)
        if missing:
            root = self.content.discover(book_id)
        return root

    def finish(self, message: QueueMessage, status: JobStatus = JobStatus.FINISHED) -> None:
        """Record the terminal status, then ack the message."""
        self.set_status(message.job_id, status)
        self._ack(message)

    def _ack(self, message: QueueMessage) -> None:
        if self.environment != "production":
            logger.debug("Skipping ack of job %s outside production", message.job_id)
            return
        self.queue.ack(message.receipt_token)
