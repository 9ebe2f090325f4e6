"""Single-threaded polling loop for one worker process.

Scaling happens by running more processes; workers coordinate only
through the queue. SIGTERM/SIGINT stop the loop from taking new messages,
and the job in flight stops at its next checkpoint boundary.
"""

import time
import signal
import logging
import threading
from typing import Callable, Optional

from .config import resolve_config
from .content import ContentSource, Packager
from .conversion.checkpoint import CheckpointStore
from .conversion.engine import PlaywrightEngine
from .conversion.pipeline import ConversionPipeline
from .jobs import JobService
from .logs import configure_logging
from .models import WorkerConfig
from .queue import SQLiteJobStore, build_queue_client
from .queue.backends import QueueClient
from .ratelimit import TokenBucketLimiter, build_limiter
from .storage import build_artifact_store

logger = logging.getLogger(__name__)


class Worker:
    def __init__(
        self,
        queue: QueueClient,
        jobs: JobService,
        shutdown_event: Optional[threading.Event] = None,
        error_backoff_s: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.queue = queue
        self.jobs = jobs
        self.shutdown_event = shutdown_event or threading.Event()
        self.error_backoff_s = error_backoff_s
        self._sleep = sleep

    @property
    def stopping(self) -> bool:
        return self.shutdown_event.is_set()

    def request_shutdown(self, signum=None, frame=None) -> None:
        if not self.stopping:
            logger.info("Shutdown requested (signal %s); finishing at the next checkpoint", signum)
        self.shutdown_event.set()

    def install_signal_handlers(self) -> None:
        signal.signal(signal.SIGTERM, self.request_shutdown)
        signal.signal(signal.SIGINT, self.request_shutdown)

    def run_once(self) -> int:
        """One receive plus sequential processing of the batch; returns messages handled."""
        messages = self.queue.receive()
        handled = 0
        for message in messages:
            if self.stopping:
                break
            logger.info("Processing job %s", message.job_id)
            self.jobs.run(message)
            handled += 1
        return handled

    def run_forever(self) -> None:
        logger.info("Worker %s polling for jobs", self.jobs.worker_id)
        while not self.stopping:
            try:
                self.run_once()
            except Exception:
                logger.exception("Polling iteration failed; retrying in %.0fs", self.error_backoff_s)
                self._sleep(self.error_backoff_s)
        logger.info("Worker %s stopped", self.jobs.worker_id)


def build_worker(
    content: ContentSource,
    packager: Packager,
    config: Optional[WorkerConfig] = None,
    limiter: Optional[TokenBucketLimiter] = None,
) -> Worker:
    """Wire a worker from configuration around the given collaborators.

    Pass the same ``limiter`` the content source uses so that discovery and
    rendering draw from one bucket.
    """
    config = config or resolve_config()
    configure_logging(config.log_level)

    shutdown_event = threading.Event()
    queue = build_queue_client(config.queue)
    pipeline = ConversionPipeline(
        config.conversion,
        limiter=limiter or build_limiter(config.rate_limit),
        engine_factory=lambda: PlaywrightEngine(config.conversion.render),
        checkpoints=CheckpointStore(config.conversion.work_root),
        artifact_store=build_artifact_store(config.storage),
        shutdown_event=shutdown_event,
        points_per_fetch=config.rate_limit.points_per_fetch,
    )
    jobs = JobService(
        store=SQLiteJobStore(config.job_store.sqlite_path),
        queue=queue,
        content=content,
        pipeline=pipeline,
        packager=packager,
        environment=config.environment,
    )
    return Worker(queue, jobs, shutdown_event=shutdown_event)
