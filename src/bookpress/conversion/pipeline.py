"""Checkpointed book conversion.

Per book:

1. Initialize: a forced restart deletes the checkpoint and the scratch
   directory; otherwise an existing checkpoint is resumed.
2. Task loop: tasks are recomputed from the current content tree and those
   whose output key is already in the checkpoint are skipped. Before each
   task the loop stops on shutdown, aborts on the wall-clock ceiling or an
   open circuit breaker, and health-checks the browser. Each task is
   retried with backoff; exhausting the retries counts as one breaker
   failure and the loop moves on. The checkpoint is saved after every task.
3. Merge the rendered files in output-key order into ``Content.pdf``.
4. Render the five cover variants concurrently (best effort).
5. Publish, then delete the checkpoint and the scratch directory.

On any failure the checkpoint and scratch files are kept for a later resume
and the error is re-raised.
"""

import time
import shutil
import asyncio
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from functools import partial
from pathlib import Path
from typing import Callable, List, Optional

from .checkpoint import Checkpoint, CheckpointStore
from .covers import COVER_VARIANTS, CoverVariant, cover_height, cover_html, cover_width
from .engine import EngineSupervisor, RenderingEngine
from .merge import merge_pdfs
from .tasks import ConversionTask, build_task_list, sort_output_keys
from ..content import BookID, ContentNode
from ..errors import JobTimeoutExceeded, ShutdownRequested, TransientTaskError
from ..models import ConversionConfig
from ..ratelimit import TokenBucketLimiter
from ..resilience import CircuitBreaker, RetryOutcome, RetryPolicy
from ..storage import ArtifactStore, LocalArtifactStore

logger = logging.getLogger(__name__)

CONTENT_FILENAME = "Content.pdf"


@dataclass
class ConversionProgress:
    current: int
    total: int
    status: str


@dataclass
class ConversionResult:
    """Outcome of a completed book conversion."""
    book_key: str
    content_path: Path
    page_count: int
    tasks_total: int
    tasks_converted: int
    failed_tasks: List[str] = field(default_factory=list)
    covers_generated: List[str] = field(default_factory=list)
    covers_failed: List[str] = field(default_factory=list)
    published: List[str] = field(default_factory=list)
    duration_s: float = 0.0


class ConversionPipeline:
    """Converts one book at a time; safe to reuse across jobs."""

    def __init__(
        self,
        config: ConversionConfig,
        limiter: TokenBucketLimiter,
        engine_factory: Callable[[], RenderingEngine],
        checkpoints: Optional[CheckpointStore] = None,
        artifact_store: Optional[ArtifactStore] = None,
        retry_policy: Optional[RetryPolicy] = None,
        shutdown_event: Optional[threading.Event] = None,
        points_per_fetch: int = 2,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.limiter = limiter
        self.engine_factory = engine_factory
        self.checkpoints = checkpoints or CheckpointStore(config.work_root)
        self.artifact_store = artifact_store or LocalArtifactStore()
        self.retry_policy = retry_policy or RetryPolicy.from_config(config.retry)
        self.shutdown_event = shutdown_event or threading.Event()
        self.points_per_fetch = points_per_fetch
        self._clock = clock

    # Layout -------------------------------------------------------------

    def book_dir(self, book_id: BookID) -> Path:
        return self.checkpoints.book_dir(book_id.key)

    def workdir(self, book_id: BookID) -> Path:
        return self.book_dir(book_id) / "workdir"

    def covers_dir(self, book_id: BookID) -> Path:
        return self.book_dir(book_id) / "covers"

    def _remove_workdir(self, book_id: BookID) -> None:
        workdir = self.workdir(book_id)
        if workdir.exists():
            logger.info("Cleaning up workdir %s", workdir)
            shutil.rmtree(workdir, ignore_errors=True)

    # Entry points -------------------------------------------------------

    def run(self, book_id: BookID, root: ContentNode, force_restart: bool = False,
            on_progress: Optional[Callable[[ConversionProgress], None]] = None) -> ConversionResult:
        """Blocking wrapper for callers outside an event loop."""
        return asyncio.run(self.convert_book(book_id, root, force_restart, on_progress))

    async def convert_book(
        self,
        book_id: BookID,
        root: ContentNode,
        force_restart: bool = False,
        on_progress: Optional[Callable[[ConversionProgress], None]] = None,
    ) -> ConversionResult:
        start = self._clock()
        supervisor = EngineSupervisor(self.engine_factory, self.config.render.restart_threshold)

        async with supervisor:
            try:
                result = await self._convert(supervisor, book_id, root, force_restart, on_progress, start)
            except ShutdownRequested:
                logger.info("Conversion of %s interrupted by shutdown; checkpoint kept", book_id.key)
                raise
            except Exception as e:
                logger.error(
                    "Book conversion of %s failed after %.1fs: %s", book_id.key, self._clock() - start, e
                )
                raise

        # Success: nothing left to resume.
        self.checkpoints.clear(book_id.key)
        self._remove_workdir(book_id)
        logger.info(
            "Book conversion of %s completed in %.1fs (%d tasks)",
            book_id.key, result.duration_s, result.tasks_converted,
        )
        return result

    # Stages -------------------------------------------------------------

    def _initialize(self, book_id: BookID, force_restart: bool) -> Optional[Checkpoint]:
        if force_restart:
            logger.info("Force restart requested for %s, clearing checkpoint and temp files", book_id.key)
            self.checkpoints.clear(book_id.key)
            self._remove_workdir(book_id)
            return None

        checkpoint = self.checkpoints.load(book_id.key)
        if checkpoint is None:
            return None

        threshold = self.config.retry.failure_threshold
        if checkpoint.consecutive_failures >= threshold:
            logger.warning(
                "Checkpoint for %s tripped the breaker last run (%d failures); resetting for resume",
                book_id.key, checkpoint.consecutive_failures,
            )
            checkpoint.consecutive_failures = 0
        logger.info("Resuming %s from %s", book_id.key, checkpoint.last_task_id or "start")
        return checkpoint

    def _check_deadline(self, start: float) -> None:
        elapsed = self._clock() - start
        if elapsed > self.config.max_job_duration_s:
            raise JobTimeoutExceeded(elapsed, self.config.max_job_duration_s)

    def _check_shutdown(self) -> None:
        if self.shutdown_event.is_set():
            raise ShutdownRequested("Worker is shutting down")

    async def _execute(self, supervisor: EngineSupervisor, task: ConversionTask, workdir: Path) -> Path:
        """One attempt: rate-limited fetch and render under the per-task timeout."""
        await self.limiter.wait_until_available_async(self.points_per_fetch)
        engine = await supervisor.acquire()
        out_path = workdir / f"{task.output_key}.pdf"
        timeout = self.config.render.render_timeout_s
        try:
            return await asyncio.wait_for(engine.render_task(task, out_path), timeout=timeout)
        except asyncio.TimeoutError as e:
            await self._replace_if_disconnected(supervisor, engine, task)
            raise TransientTaskError(f"Rendering {task.id} timed out after {timeout:.0f}s") from e
        except Exception:
            await self._replace_if_disconnected(supervisor, engine, task)
            raise

    async def _replace_if_disconnected(
        self, supervisor: EngineSupervisor, engine: RenderingEngine, task: ConversionTask
    ) -> None:
        """Restart a browser that died mid-attempt so the next attempt gets a live one."""
        if engine.is_connected():
            return
        logger.warning("Rendering engine disconnected while rendering %s, restarting", task.id)
        await supervisor.recycle()

    async def _run_tasks(
        self,
        supervisor: EngineSupervisor,
        book_id: BookID,
        tasks: List[ConversionTask],
        checkpoint: Optional[Checkpoint],
        on_progress,
        start: float,
    ) -> tuple:
        breaker = CircuitBreaker(
            self.config.retry.failure_threshold,
            checkpoint.consecutive_failures if checkpoint else 0,
        )
        converted: List[str] = list(checkpoint.converted_task_keys) if checkpoint else []
        processed = checkpoint.total_processed if checkpoint else 0
        done = set(converted)
        pending = [t for t in tasks if t.output_key not in done]
        failed: List[str] = []
        workdir = self.workdir(book_id)
        workdir.mkdir(parents=True, exist_ok=True)

        logger.info("Built %d conversion tasks for %s (%d pending)", len(tasks), book_id.key, len(pending))

        for position, task in enumerate(pending, start=1):
            self._check_shutdown()
            self._check_deadline(start)
            breaker.check()
            await supervisor.ensure_healthy()

            logger.info(
                "Processing %s %d/%d: %s", task.kind, position, len(pending), task.source.title
            )
            outcome: RetryOutcome = await self.retry_policy.run(
                partial(self._execute, supervisor, task, workdir),
                context=f"Convert {task.kind} {task.source.url}",
            )

            if outcome.success:
                converted.append(task.output_key)
                processed += 1
                breaker.record_success()
                if on_progress:
                    on_progress(ConversionProgress(
                        current=processed,
                        total=len(tasks),
                        status=f"Converted {task.kind}: {task.source.title}",
                    ))
            else:
                breaker.record_failure()
                failed.append(task.id)
                logger.error("Task %s failed after retries: %s", task.id, outcome.error)

            self.checkpoints.save(book_id.key, Checkpoint(
                converted_task_keys=list(converted),
                last_task_id=task.id,
                total_processed=processed,
                consecutive_failures=breaker.consecutive_failures,
                timestamp=datetime.now(),
            ))
            supervisor.record_task()

        # A run that ends on a streak of failures is just as broken.
        breaker.check()
        return converted, failed

    def _merge(self, book_id: BookID, root: ContentNode, tasks: List[ConversionTask],
               converted: List[str]) -> tuple:
        current_keys = {t.output_key for t in tasks}
        workdir = self.workdir(book_id)

        files = []
        for key in sort_output_keys(converted):
            if key not in current_keys:
                logger.info("Skipping %s: no longer part of the book", key)
                continue
            path = workdir / f"{key}.pdf"
            if not path.exists():
                logger.warning("Converted file %s is missing from the workdir", path.name)
                continue
            files.append(path)

        content_path = self.book_dir(book_id) / CONTENT_FILENAME
        page_count = merge_pdfs(
            files,
            content_path,
            title=root.print_info.title or root.title,
            author=root.print_info.author_name or None,
        )
        return content_path, page_count

    async def _render_cover(self, supervisor: EngineSupervisor, root: ContentNode,
                            variant: CoverVariant, num_pages: int, out_dir: Path) -> RetryOutcome:
        pages = None if variant.front_only else num_pages
        html = cover_html(root, variant, pages, self.config.render.main_color)
        out_path = out_dir / f"{variant.name}.pdf"

        async def attempt() -> Path:
            await self.limiter.wait_until_available_async(self.points_per_fetch)
            engine = await supervisor.acquire()
            return await asyncio.wait_for(
                engine.render_cover(html, out_path, cover_width(variant, pages), cover_height(variant, pages)),
                timeout=self.config.render.render_timeout_s,
            )

        outcome = await self.retry_policy.run(attempt, context=f"Generate cover {variant.name}")
        if not outcome.success:
            logger.error("Cover %s failed after retries: %s", variant.name, outcome.error)
        return outcome

    async def _generate_covers(self, supervisor: EngineSupervisor, book_id: BookID,
                               root: ContentNode, num_pages: int) -> tuple:
        out_dir = self.covers_dir(book_id)
        out_dir.mkdir(parents=True, exist_ok=True)
        outcomes = await asyncio.gather(
            *(self._render_cover(supervisor, root, v, num_pages, out_dir) for v in COVER_VARIANTS),
            return_exceptions=True,
        )

        generated, failed = [], []
        for variant, outcome in zip(COVER_VARIANTS, outcomes):
            if isinstance(outcome, BaseException):
                logger.error("Cover %s raised: %s", variant.name, outcome)
                failed.append(variant.name)
            elif outcome.success:
                generated.append(variant.name)
            else:
                failed.append(variant.name)

        if failed:
            logger.warning("%d of %d covers failed to generate: %s", len(failed), len(COVER_VARIANTS), failed)
        return generated, failed

    async def _convert(self, supervisor: EngineSupervisor, book_id: BookID, root: ContentNode,
                       force_restart: bool, on_progress, start: float) -> ConversionResult:
        checkpoint = self._initialize(book_id, force_restart)
        tasks = build_task_list(root)

        converted, failed = await self._run_tasks(supervisor, book_id, tasks, checkpoint, on_progress, start)

        logger.info("All tasks processed for %s, merging content", book_id.key)
        content_path, page_count = self._merge(book_id, root, tasks, converted)

        self._check_shutdown()
        covers_ok, covers_failed = await self._generate_covers(supervisor, book_id, root, page_count)

        cover_files = [self.covers_dir(book_id) / f"{name}.pdf" for name in covers_ok]
        published = self.artifact_store.publish(
            book_id.key, [content_path] + cover_files, self.book_dir(book_id)
        )

        current_keys = {t.output_key for t in tasks}
        return ConversionResult(
            book_key=book_id.key,
            content_path=content_path,
            page_count=page_count,
            tasks_total=len(tasks),
            tasks_converted=sum(1 for k in converted if k in current_keys),
            failed_tasks=failed,
            covers_generated=covers_ok,
            covers_failed=covers_failed,
            published=published,
            duration_s=self._clock() - start,
        )
