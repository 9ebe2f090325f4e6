"""Publishing finished book artifacts.

Local runs keep everything under the work root. Deployed workers upload the
merged content and the covers to S3 under the same relative layout
(``pdf/<lib>-<pageId>/Content.pdf``, ``pdf/<lib>-<pageId>/covers/<Variant>.pdf``).
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional

import boto3

from .models import StorageConfig

logger = logging.getLogger(__name__)


class ArtifactStore(ABC):
    @abstractmethod
    def publish(self, book_key: str, files: List[Path], base_dir: Path) -> List[str]:
        """Make ``files`` available; returns their published locations.

        Args:
            book_key: ``<lib>-<pageId>``
            files: Paths inside ``base_dir``
            base_dir: The book's output directory
        """
        pass


class LocalArtifactStore(ArtifactStore):
    """Artifacts already live on local disk; nothing to copy."""

    def publish(self, book_key: str, files: List[Path], base_dir: Path) -> List[str]:
        locations = [str(Path(f).resolve()) for f in files]
        logger.info("Artifacts for %s kept locally in %s", book_key, base_dir)
        return locations


class S3ArtifactStore(ArtifactStore):
    def __init__(self, bucket: str, client=None, region: Optional[str] = None):
        self.bucket = bucket
        self.client = client or boto3.client("s3", region_name=region)

    def publish(self, book_key: str, files: List[Path], base_dir: Path) -> List[str]:
        locations = []
        for path in files:
            relative = Path(path).relative_to(base_dir).as_posix()
            key = f"pdf/{book_key}/{relative}"
            self.client.upload_file(
                str(path), self.bucket, key, ExtraArgs={"ContentType": "application/pdf"}
            )
            logger.info("Uploaded %s to s3://%s/%s", path.name, self.bucket, key)
            locations.append(f"s3://{self.bucket}/{key}")
        return locations


def build_artifact_store(config: StorageConfig) -> ArtifactStore:
    if config.use_local_storage:
        return LocalArtifactStore()
    return S3ArtifactStore(config.bucket, region=config.region)
