"""File discovery and change detection for one pipeline.

``discover`` expands a pipeline's glob patterns under its root.
``PollingWatcher`` takes periodic snapshots of the matching files
(``mtime_ns`` and size) and emits the difference between consecutive
snapshots as create/modify/delete events. Polling keeps event scope exactly
equal to the pipeline's root and patterns, and makes each batch a
deterministic function of two snapshots.

Each pipeline owns its own watcher instance; there is no process-wide
watcher.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import AsyncIterator, Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from contented.core.logging import get_logger

logger = get_logger(__name__)

Snapshot = dict[str, tuple[int, int]]


class ChangeKind(str, Enum):
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"


@dataclass(frozen=True)
class ChangeEvent:
    """A change to one file, relative to the pipeline root (POSIX separators)."""

    kind: ChangeKind
    file: str


def discover(root: Path, patterns: Iterable[str]) -> list[str]:
    """Sorted relative paths of regular files under ``root`` matching any pattern."""
    if not root.is_dir():
        return []
    files: set[str] = set()
    for pattern in patterns:
        for path in root.glob(pattern):
            if path.is_file():
                files.add(path.relative_to(root).as_posix())
    return sorted(files)


def take_snapshot(root: Path, patterns: Iterable[str]) -> Snapshot:
    """Map every matching file to ``(mtime_ns, size)``."""
    snapshot: Snapshot = {}
    for file in discover(root, patterns):
        try:
            stats = os.stat(root / file)
        except FileNotFoundError:
            continue
        snapshot[file] = (stats.st_mtime_ns, stats.st_size)
    return snapshot


def diff_snapshots(before: Mapping[str, tuple[int, int]], after: Mapping[str, tuple[int, int]]) -> list[ChangeEvent]:
    """Events that turn ``before`` into ``after``, sorted by file."""
    events = []
    for file in sorted(set(before) | set(after)):
        if file not in after:
            events.append(ChangeEvent(ChangeKind.DELETED, file))
        elif file not in before:
            events.append(ChangeEvent(ChangeKind.CREATED, file))
        elif before[file] != after[file]:
            events.append(ChangeEvent(ChangeKind.MODIFIED, file))
    return events


class PollingWatcher:
    """Snapshot poller scoped to one pipeline root and its patterns.

    Args:
        root: Absolute pipeline root
        patterns: Glob patterns relative to ``root``
        interval: Seconds between snapshots
    """

    def __init__(self, root: Path, patterns: Iterable[str], interval: float = 0.5):
        self.root = root
        self.patterns = tuple(patterns)
        self.interval = interval
        self._baseline: Snapshot = {}
        self._stop = asyncio.Event()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def baseline(self) -> Snapshot:
        return dict(self._baseline)

    async def snapshot(self) -> Snapshot:
        return await asyncio.to_thread(take_snapshot, self.root, self.patterns)

    def reset(self, baseline: Snapshot) -> None:
        """Set the snapshot the next poll is compared against."""
        self._baseline = dict(baseline)

    def start(self, baseline: Snapshot | None = None) -> None:
        if baseline is not None:
            self.reset(baseline)
        self._stop.clear()
        self._running = True
        logger.debug("watcher.started", root=str(self.root), patterns=list(self.patterns))

    def stop(self) -> None:
        self._running = False
        self._stop.set()

    async def poll(self) -> list[ChangeEvent]:
        """Take one snapshot and return the changes since the baseline."""
        current = await self.snapshot()
        events = diff_snapshots(self._baseline, current)
        self._baseline = current
        return events

    async def changes(self) -> AsyncIterator[list[ChangeEvent]]:
        """Yield non-empty event batches until ``stop()``."""
        while self._running:
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
            if not self._running:
                return
            events = await self.poll()
            if events:
                logger.debug("watcher.changes", root=str(self.root), events=len(events))
                yield events
