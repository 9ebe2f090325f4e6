"""SQLite implementations of QueueClient and JobStore.

Used for local runs and tests, and as the job record store of a single-host
deployment. The queue mirrors the delivery semantics of the SQS backend:
- Visibility timeout: a received message is hidden until acked or expired
- Receipt tokens rotate on every delivery, so a stale token cannot delete
  a message that has since been handed to another worker
- Priority enqueues are deduplicated by job id within a window
- Long-poll receive bounded by ``wait_time_s``

Concurrency follows the usual pattern for this store: WAL mode, BEGIN
IMMEDIATE for every read-modify-write, exponential backoff when the
database is locked by another process.
"""

import sqlite3
import time
import uuid
import logging
from pathlib import Path
from typing import Callable, List, Optional, TypeVar
from datetime import datetime

from pydantic import ValidationError
from sqlite_utils import Database

from .backends import QueueClient, JobStore
from .models import (
    Job,
    JobQueueBody,
    JobStatus,
    QueueMessage,
    StateTransition,
    can_transition,
)
from ..errors import InvalidStatusTransition
from ..models import QueueConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

STANDARD_QUEUE = "standard"
HIGH_PRIORITY_QUEUE = "high"

QUEUE_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS queue_messages (
    message_id TEXT PRIMARY KEY,
    queue TEXT NOT NULL,
    body TEXT NOT NULL,
    enqueued_at REAL NOT NULL,
    visible_at REAL NOT NULL,
    receipt_token TEXT,
    receive_count INTEGER DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_queue_visible ON queue_messages(queue, visible_at, enqueued_at);
CREATE UNIQUE INDEX IF NOT EXISTS idx_queue_receipt ON queue_messages(receipt_token);

-- Deduplication ids of recent priority enqueues
CREATE TABLE IF NOT EXISTS queue_dedup (
    dedup_id TEXT NOT NULL,
    queue TEXT NOT NULL,
    enqueued_at REAL NOT NULL,
    PRIMARY KEY (dedup_id, queue)
);
"""

JOBS_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS jobs (
    id TEXT PRIMARY KEY,
    status TEXT NOT NULL,
    is_high_priority INTEGER NOT NULL DEFAULT 0,
    url TEXT,
    requester_ip TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(status);

-- State transition log (audit trail)
CREATE TABLE IF NOT EXISTS job_transitions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    job_id TEXT NOT NULL,
    from_state TEXT,
    to_state TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    worker_id TEXT,
    FOREIGN KEY(job_id) REFERENCES jobs(id)
);

CREATE INDEX IF NOT EXISTS idx_transitions_job ON job_transitions(job_id, timestamp);
"""


def open_database(db_path: str) -> Database:
    """Open (creating if needed) a WAL-mode SQLite database."""
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    db = Database(str(path))
    db.conn.execute("PRAGMA journal_mode=WAL")
    db.conn.execute("PRAGMA synchronous=NORMAL")  # Faster writes, still crash-safe
    db.conn.commit()
    return db


def run_immediate(db: Database, fn: Callable[[sqlite3.Connection], T], max_retries: int = 3) -> T:
    """Run ``fn`` inside BEGIN IMMEDIATE, retrying with backoff on SQLITE_BUSY.

    BEGIN IMMEDIATE takes the write lock at transaction start, so a
    read-modify-write cannot interleave with another worker's.
    Backoff: 100ms, 200ms, 400ms.
    """
    for attempt in range(max_retries):
        try:
            with db.conn:
                db.conn.execute("BEGIN IMMEDIATE")
                try:
                    result = fn(db.conn)
                    db.conn.commit()
                    return result
                except Exception:
                    db.conn.rollback()
                    raise
        except sqlite3.OperationalError as e:
            if "database is locked" in str(e).lower() and attempt < max_retries - 1:
                time.sleep(0.1 * (2 ** attempt))
                continue
            raise
    raise sqlite3.OperationalError("database is locked")


class SQLiteQueueClient(QueueClient):
    """SQLite-backed queue with SQS-like delivery semantics.

    One database file holds both logical queues; the worker's role picks
    which one ``receive`` and ``depth`` read from.
    """

    def __init__(
        self,
        db_path: str,
        config: Optional[QueueConfig] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
        poll_interval_s: float = 0.5,
    ):
        """Initialize queue database.

        Args:
            db_path: Path to SQLite database file
            config: Consumption settings (batch size, waits, role flags)
            clock: Wall clock in epoch seconds; injectable for tests
            sleep: Used between polls while long-polling
            poll_interval_s: Delay between polls of an empty queue
        """
        self.config = config or QueueConfig(backend="sqlite", sqlite_path=db_path)
        self.db = open_database(db_path)
        self.db.executescript(QUEUE_SCHEMA_SQL)
        self._clock = clock
        self._sleep = sleep
        self.poll_interval_s = poll_interval_s

    @property
    def receive_queue(self) -> str:
        return HIGH_PRIORITY_QUEUE if self.config.high_priority_processor else STANDARD_QUEUE

    def enqueue(self, job_id: str, is_high_priority: bool = False) -> None:
        """Insert a message; priority messages collapse within the dedup window."""
        queue = HIGH_PRIORITY_QUEUE if is_high_priority else STANDARD_QUEUE
        body = JobQueueBody(job_id=job_id, is_high_priority=is_high_priority).to_json()
        now = self._clock()

        def _insert(conn: sqlite3.Connection) -> bool:
            if is_high_priority:
                row = conn.execute(
                    "SELECT enqueued_at FROM queue_dedup WHERE dedup_id = ? AND queue = ?",
                    (job_id, queue),
                ).fetchone()
                if row and row[0] > now - self.config.dedup_window_s:
                    return False
                conn.execute(
                    "INSERT OR REPLACE INTO queue_dedup (dedup_id, queue, enqueued_at) VALUES (?, ?, ?)",
                    (job_id, queue, now),
                )
            conn.execute(
                """
                INSERT INTO queue_messages (message_id, queue, body, enqueued_at, visible_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (uuid.uuid4().hex, queue, body, now, now),
            )
            return True

        if run_immediate(self.db, _insert):
            logger.info("Enqueued job %s on %s queue", job_id, queue)
        else:
            logger.info("Duplicate priority enqueue of job %s ignored", job_id)

    def _claim_batch(self) -> List[tuple]:
        """Hide up to ``max_messages`` visible messages and hand out fresh tokens."""
        now = self._clock()

        def _claim(conn: sqlite3.Connection) -> List[tuple]:
            rows = conn.execute(
                """
                SELECT message_id, body FROM queue_messages
                WHERE queue = ? AND visible_at <= ?
                ORDER BY enqueued_at ASC, rowid ASC
                LIMIT ?
                """,
                (self.receive_queue, now, self.config.max_messages),
            ).fetchall()
            claimed = []
            for message_id, body in rows:
                token = uuid.uuid4().hex
                conn.execute(
                    """
                    UPDATE queue_messages
                    SET visible_at = ?, receipt_token = ?, receive_count = receive_count + 1
                    WHERE message_id = ?
                    """,
                    (now + self.config.visibility_timeout_s, token, message_id),
                )
                claimed.append((message_id, body, token))
            return claimed

        return run_immediate(self.db, _claim)

    def receive(self) -> List[QueueMessage]:
        deadline = self._clock() + self.config.wait_time_s
        while True:
            claimed = self._claim_batch()
            if claimed:
                return self._decode(claimed)
            remaining = deadline - self._clock()
            if remaining <= 0:
                return []
            self._sleep(min(self.poll_interval_s, remaining))

    def _decode(self, claimed: List[tuple]) -> List[QueueMessage]:
        messages = []
        for message_id, body, token in claimed:
            try:
                parsed = JobQueueBody.model_validate_json(body)
            except ValidationError as e:
                # Poison message: nothing can ever process it.
                logger.warning("Dropping malformed message %s: %s", message_id, e)
                self.ack(token)
                continue

            if self.config.interruptible and parsed.is_high_priority:
                logger.debug("Interruptible worker skipping priority job %s", parsed.job_id)
                continue

            messages.append(QueueMessage(
                job_id=parsed.job_id,
                is_high_priority=parsed.is_high_priority,
                receipt_token=token,
            ))
        return messages

    def ack(self, receipt_token: str) -> None:
        def _delete(conn: sqlite3.Connection) -> int:
            cursor = conn.execute(
                "DELETE FROM queue_messages WHERE receipt_token = ?", (receipt_token,)
            )
            return cursor.rowcount

        if not run_immediate(self.db, _delete):
            logger.debug("Ack with unknown or stale receipt token ignored")

    def depth(self) -> int:
        row = self.db.execute(
            "SELECT COUNT(*) FROM queue_messages WHERE queue = ? AND visible_at <= ?",
            [self.receive_queue, self._clock()],
        ).fetchone()
        return int(row[0])


class SQLiteJobStore(JobStore):
    """Job records with a monotonic lifecycle and an audit trail."""

    def __init__(self, db_path: str):
        self.db = open_database(db_path)
        self.db.executescript(JOBS_SCHEMA_SQL)

    def insert(self, job: Job) -> None:
        self.db["jobs"].insert({
            "id": job.id,
            "status": JobStatus(job.status).value,
            "is_high_priority": int(job.is_high_priority),
            "url": job.url,
            "requester_ip": job.requester_ip,
            "created_at": job.created_at.isoformat(),
            "updated_at": job.updated_at.isoformat(),
        }, pk="id")
        self._log_transition(job.id, None, JobStatus(job.status).value)

    def get(self, job_id: str) -> Optional[Job]:
        rows = list(self.db["jobs"].rows_where("id = ?", [job_id]))
        if not rows:
            return None
        return self._row_to_job(rows[0])

    def set_status(self, job_id: str, status: JobStatus, worker_id: Optional[str] = None) -> Job:
        requested = JobStatus(status).value

        def _update(conn: sqlite3.Connection) -> Optional[str]:
            row = conn.execute("SELECT status FROM jobs WHERE id = ?", (job_id,)).fetchone()
            if row is None:
                raise KeyError(job_id)
            current = row[0]
            if current == requested and JobStatus(current).is_terminal:
                return None
            if not can_transition(current, requested):
                raise InvalidStatusTransition(job_id, current, requested)
            now = datetime.now().isoformat()
            conn.execute(
                "UPDATE jobs SET status = ?, updated_at = ? WHERE id = ?",
                (requested, now, job_id),
            )
            conn.execute(
                """
                INSERT INTO job_transitions (job_id, from_state, to_state, timestamp, worker_id)
                VALUES (?, ?, ?, ?, ?)
                """,
                (job_id, current, requested, now, worker_id),
            )
            return current

        previous = run_immediate(self.db, _update)
        if previous is not None:
            logger.info("Job %s: %s -> %s", job_id, previous, requested)
        return self.get(job_id)

    def transitions(self, job_id: str) -> List[StateTransition]:
        rows = self.db["job_transitions"].rows_where(
            "job_id = ?", [job_id], order_by="id"
        )
        return [StateTransition(**row) for row in rows]

    def _log_transition(self, job_id: str, from_state: Optional[str], to_state: str,
                        worker_id: Optional[str] = None) -> None:
        self.db["job_transitions"].insert({
            "job_id": job_id,
            "from_state": from_state,
            "to_state": to_state,
            "timestamp": datetime.now().isoformat(),
            "worker_id": worker_id,
        })

    def _row_to_job(self, row: dict) -> Job:
        return Job(
            id=row["id"],
            status=JobStatus(row["status"]),
            is_high_priority=bool(row["is_high_priority"]),
            url=row["url"],
            requester_ip=row["requester_ip"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

