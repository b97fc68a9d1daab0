"""Execution: batching, aggregation, persistence, watching and rebuilds."""

from contented.execution.coordinator import (
    BuildResult,
    FileError,
    PipelineState,
    RebuildCoordinator,
    WatchState,
)
from contented.execution.index import ContentIndex
from contented.execution.runner import ContentRunner, RunReport
from contented.execution.store import IndexStore
from contented.execution.watcher import ChangeEvent, ChangeKind, PollingWatcher

__all__ = [
    "BuildResult",
    "FileError",
    "PipelineState",
    "RebuildCoordinator",
    "WatchState",
    "ContentIndex",
    "ContentRunner",
    "RunReport",
    "IndexStore",
    "ChangeEvent",
    "ChangeKind",
    "PollingWatcher",
]
