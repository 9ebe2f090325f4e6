"""Durable per-book progress record for resumable conversions.

Layout under the work root::

    pdf/<lib>-<pageId>/checkpoint.json

Writes go to a temporary file in the same directory, are fsynced, then
renamed over the previous record, so a crash mid-write leaves either the
old checkpoint or the new one, never a torn file.
"""

import os
import json
import logging
import tempfile
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)

CHECKPOINT_FILENAME = "checkpoint.json"


class Checkpoint(BaseModel):
    """Progress of one book conversion; persisted with camelCase keys."""

    model_config = ConfigDict(populate_by_name=True)

    converted_task_keys: List[str] = Field(
        default_factory=list, alias="convertedPages", description="Output keys already rendered"
    )
    last_task_id: str = Field(default="", alias="lastProcessedPageId")
    total_processed: int = Field(default=0, ge=0, alias="totalPagesProcessed")
    consecutive_failures: int = Field(default=0, ge=0, alias="consecutiveFailures")
    timestamp: datetime = Field(default_factory=datetime.now)


class CheckpointStore:
    """Filesystem checkpoint store keyed by job key (``<lib>-<pageId>``)."""

    def __init__(self, work_root: str):
        self.work_root = Path(work_root)

    def book_dir(self, job_key: str) -> Path:
        return self.work_root / "pdf" / job_key

    def path_for(self, job_key: str) -> Path:
        return self.book_dir(job_key) / CHECKPOINT_FILENAME

    def save(self, job_key: str, checkpoint: Checkpoint) -> None:
        path = self.path_for(job_key)
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = checkpoint.model_dump_json(by_alias=True, indent=2)

        fd, tmp_name = tempfile.mkstemp(prefix=".checkpoint-", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "w") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        logger.debug(
            "Checkpoint saved for %s (%d processed)", job_key, checkpoint.total_processed
        )

    def load(self, job_key: str) -> Optional[Checkpoint]:
        """Return the stored checkpoint, or None for a fresh run.

        An unreadable record is logged and treated as absent.
        """
        path = self.path_for(job_key)
        try:
            raw = path.read_text()
        except FileNotFoundError:
            return None

        try:
            checkpoint = Checkpoint.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as e:
            logger.warning("Ignoring unreadable checkpoint %s: %s", path, e)
            return None

        logger.info("Checkpoint loaded for %s (%d processed)", job_key, checkpoint.total_processed)
        return checkpoint

    def clear(self, job_key: str) -> None:
        path = self.path_for(job_key)
        try:
            path.unlink()
        except FileNotFoundError:
            return
        logger.info("Checkpoint cleared for %s", job_key)
