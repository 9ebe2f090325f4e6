"""Decomposition of a content tree into ordered conversion tasks.

Every task's ``output_key`` embeds its position in reading order, so a
numeric-aware sort of the produced files reproduces the book:

    00000-<n>_<lib>-<id>   front matter pages
    <index>_TOC            section/chapter overview pages
    <index>_<lib>-<id>     body pages
    99999-<n>_<lib>-<id>   back matter pages

The index is the number of tasks emitted so far plus one, zero-padded. The
same tree always yields the same key sequence, which is what makes resuming
from a checkpoint safe.
"""

import re
from dataclasses import dataclass
from typing import ClassVar, List, Union

from ..content import ContentNode, MatterType

KEY_WIDTH = 5
FRONT_MATTER_PREFIX = "0" * KEY_WIDTH
BACK_MATTER_PREFIX = "9" * KEY_WIDTH

TOC_TAGS = ("article:topic-category", "article:topic-guide")


@dataclass(frozen=True)
class PageTask:
    """Render one content page as-is."""
    kind: ClassVar[str] = "page"
    id: str
    source: ContentNode
    output_key: str


@dataclass(frozen=True)
class TocTask:
    """Render a synthesized directory listing for a category or guide page."""
    kind: ClassVar[str] = "toc"
    id: str
    source: ContentNode
    output_key: str


ConversionTask = Union[PageTask, TocTask]


def is_toc_node(node: ContentNode) -> bool:
    """Category/guide pages with more than one child get a listing instead of a page."""
    return (
        len(node.subpages) > 1
        and any(tag in node.tags for tag in TOC_TAGS)
        and not node.is_matter_container
    )


def build_task_list(root: ContentNode) -> List[ConversionTask]:
    """Flatten the tree depth-first into tasks in reading order."""
    tasks: List[ConversionTask] = []
    front_idx = 0
    back_idx = 0

    def visit(node: ContentNode) -> None:
        nonlocal front_idx, back_idx
        idx = f"{len(tasks) + 1:0{KEY_WIDTH}d}"

        if is_toc_node(node):
            tasks.append(TocTask(id=f"toc-{node.key}", source=node, output_key=f"{idx}_TOC"))
        elif not node.is_matter_container:
            prefix = idx
            if node.matter_type == MatterType.FRONT:
                front_idx += 1
                prefix = f"{FRONT_MATTER_PREFIX}-{front_idx}"
            elif node.matter_type == MatterType.BACK:
                back_idx += 1
                prefix = f"{BACK_MATTER_PREFIX}-{back_idx}"
            tasks.append(PageTask(id=f"page-{node.key}", source=node, output_key=f"{prefix}_{node.key}"))

        # Matter containers are skipped above but their children still count.
        for child in node.subpages:
            visit(child)

    visit(root)
    return tasks


_DIGITS = re.compile(r"(\d+)")


def natural_sort_key(key: str) -> list:
    """Numeric-aware, case-insensitive sort key ("2" before "10")."""
    return [int(part) if part.isdigit() else part.lower() for part in _DIGITS.split(key)]


def sort_output_keys(keys: List[str]) -> List[str]:
    return sorted(keys, key=natural_sort_key)
