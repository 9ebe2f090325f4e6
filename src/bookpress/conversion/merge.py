"""Concatenation of per-task PDFs into the book's content file."""

import logging
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

from pypdf import PdfReader, PdfWriter

from .tasks import natural_sort_key

logger = logging.getLogger(__name__)

PRODUCER = "Bookpress"
CREATOR = "Bookpress PDF worker"


def pdf_date(moment: datetime) -> str:
    """PDF date string, e.g. ``D:20240131120000``."""
    return moment.strftime("D:%Y%m%d%H%M%S")


def page_count(path: Path) -> int:
    return len(PdfReader(str(path)).pages)


def merge_pdfs(
    files: Iterable[Path],
    out_path: Path,
    title: Optional[str] = None,
    author: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> int:
    """Append every page of ``files`` in numeric-aware file-name order.

    Args:
        files: Per-task artifacts; their stems are output keys
        out_path: Destination of the merged document (parent is created)
        title: Document title metadata
        author: Document author metadata
        created_at: Creation timestamp (defaults to now)

    Returns:
        Number of pages written
    """
    ordered = sorted((Path(f) for f in files), key=lambda p: natural_sort_key(p.name))

    writer = PdfWriter()
    for path in ordered:
        for page in PdfReader(str(path)).pages:
            writer.add_page(page)

    metadata = {
        "/Producer": PRODUCER,
        "/Creator": CREATOR,
        "/CreationDate": pdf_date(created_at or datetime.now()),
    }
    if title:
        metadata["/Title"] = title
    if author:
        metadata["/Author"] = author
    writer.add_metadata(metadata)

    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    with open(out_path, "wb") as f:
        writer.write(f)

    total = len(writer.pages)
    logger.info("Merged %d files (%d pages) into %s", len(ordered), total, out_path)
    return total
