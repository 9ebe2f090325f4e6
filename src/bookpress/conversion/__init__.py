"""Checkpointed book-to-PDF conversion."""

from .checkpoint import Checkpoint, CheckpointStore
from .engine import EngineSupervisor, PlaywrightEngine, RenderingEngine
from .pipeline import ConversionPipeline, ConversionProgress, ConversionResult
from .tasks import ConversionTask, PageTask, TocTask, build_task_list, natural_sort_key

__all__ = [
    "Checkpoint",
    "CheckpointStore",
    "EngineSupervisor",
    "PlaywrightEngine",
    "RenderingEngine",
    "ConversionPipeline",
    "ConversionProgress",
    "ConversionResult",
    "ConversionTask",
    "PageTask",
    "TocTask",
    "build_task_list",
    "natural_sort_key",
]
