"""
Rebuild coordinator: full and incremental builds for one pipeline.

Manifesto:
    Readers of the persisted index must never see a half-applied rebuild.
    Every build, full or incremental, computes a complete new aggregate
    off to the side and commits it with one atomic write; only then does
    the in-memory index move forward.

    - **Single-flight:** one build or rebuild at a time per pipeline; events
      that arrive meanwhile are coalesced into the next batch
    - **Skip and report:** a failing file never changes the aggregate and
      never blocks its siblings
    - **Full resort:** the comparator runs over the whole patched
      aggregate after every change

Architecture:
    ::

        IDLE ──start()──► BUILDING ──► WATCHING ⇄ REBUILDING
                              │             │
                              ▼             ▼ stop()
                            FAILED        STOPPED

        PollingWatcher ──events──► notify() ──► WatchState.pending
                                                   │ (coalesced)
        rebuild loop ◄── wakeup ───────────────────┘
            │ drain → process changed files (FileBatch)
            │ patch ContentIndex (replace / remove by id)
            │ sort → IndexStore.write (atomic)
            ▼
          commit: self.index = patched

Error policy:
    A file that fails (IO, parse, validation, transform, path collision)
    keeps whatever it had in the last committed index: nothing in a full
    build, its previous records in an incremental one. The failure is
    returned in ``BuildResult.errors`` and logged. A file that disappears
    before it is read is treated as deleted.

Tags:
    contented, execution, rebuild, watch, incremental, coordinator
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from contented.core.errors import (
    ContentedError,
    ProcessorResolutionError,
    SourceIOError,
)
from contented.core.hashing import absolute_file_path, compute_file_id
from contented.core.logging import LogContext, get_logger
from contented.core.settings import ContentedSettings
from contented.execution.batch import FileBatch
from contented.execution.index import ContentIndex
from contented.execution.store import IndexStore
from contented.execution.watcher import ChangeEvent, ChangeKind, PollingWatcher
from contented.framework.models import FileContent
from contented.framework.pipeline import ContentedPipeline, PipelineConfig
from contented.framework.registry import ProcessorRegistry

logger = get_logger(__name__)

CommitHook = Callable[["RebuildCoordinator", "BuildResult"], Awaitable[None]]


class PipelineState(str, Enum):
    IDLE = "idle"
    BUILDING = "building"
    WATCHING = "watching"
    REBUILDING = "rebuilding"
    STOPPED = "stopped"
    FAILED = "failed"


def coalesce_kind(previous: ChangeKind | None, new: ChangeKind) -> ChangeKind:
    """Combine two events for the same file into one."""
    if previous is None:
        return new
    if previous == ChangeKind.CREATED and new == ChangeKind.MODIFIED:
        return ChangeKind.CREATED
    if previous == ChangeKind.DELETED and new == ChangeKind.CREATED:
        return ChangeKind.MODIFIED
    return new


@dataclass
class WatchState:
    """Lifecycle state and pending events of one pipeline."""

    state: PipelineState = PipelineState.IDLE
    pending: dict[str, ChangeKind] = field(default_factory=dict)
    in_flight: bool = False
    builds: int = 0
    rejected: set[str] = field(default_factory=set)

    def coalesce(self, events: list[ChangeEvent]) -> None:
        for event in events:
            self.pending[event.file] = coalesce_kind(self.pending.get(event.file), event.kind)

    def drain(self) -> list[ChangeEvent]:
        events = [ChangeEvent(kind, file) for file, kind in sorted(self.pending.items())]
        self.pending.clear()
        return events


@dataclass
class FileError:
    """A per-file failure reported by a build."""

    file: str
    error: ContentedError

    def to_dict(self) -> dict[str, Any]:
        return {"file": self.file, **self.error.to_dict()}


@dataclass
class BuildResult:
    """Outcome of one committed build batch."""

    pipeline: str
    kind: str
    records: int = 0
    processed: int = 0
    removed: int = 0
    errors: list[FileError] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def duration_seconds(self) -> float | None:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "pipeline": self.pipeline,
            "kind": self.kind,
            "records": self.records,
            "processed": self.processed,
            "removed": self.removed,
            "errors": [e.to_dict() for e in self.errors],
            "duration_seconds": self.duration_seconds,
        }


@dataclass
class _FileOutcome:
    file: str
    file_id: str
    records: list[FileContent] | None = None
    error: ContentedError | None = None
    missing: bool = False


class RebuildCoordinator:
    """
    Builds, watches and incrementally rebuilds one pipeline.

    Args:
        pipeline: The pipeline declaration
        root_dir: Config root that ``pipeline.root`` is relative to
        store: Where the index is persisted
        registry: Resolves ``pipeline.processor``
        settings: Concurrency, poll interval and coalescing window
        on_commit: Awaited after every committed build with
            ``(coordinator, result)``
    """

    def __init__(
        self,
        pipeline: PipelineConfig,
        root_dir: str | Path,
        store: IndexStore,
        registry: ProcessorRegistry | None = None,
        settings: ContentedSettings | None = None,
        on_commit: CommitHook | None = None,
    ):
        self.pipeline = pipeline
        self.root_path = pipeline.root_path(root_dir)
        self.store = store
        self.registry = registry or ProcessorRegistry()
        self.settings = settings or ContentedSettings()
        self.index = ContentIndex(pipeline.type)
        self.watch_state = WatchState()
        self.processor: ContentedPipeline | None = None
        self.watcher = PollingWatcher(self.root_path, pipeline.patterns, self.settings.poll_interval)
        self._wakeup = asyncio.Event()
        self._stopping = False
        self.on_commit = on_commit
        self._build_lock = asyncio.Lock()

    @property
    def type(self) -> str:
        return self.pipeline.type

    @property
    def state(self) -> PipelineState:
        return self.watch_state.state

    # ── Lifecycle ────────────────────────────────────────────────────

    async def start(self) -> BuildResult:
        """Resolve and initialize the processor, then run a full build.

        Raises:
            ProcessorResolutionError: the processor cannot be resolved,
                constructed or initialized.
            SortError: the comparator failed, so nothing was committed.

        Either way only this pipeline is affected.
        """
        try:
            processor = self.registry.create(self.pipeline.processor, self.root_path, self.pipeline)
            try:
                await processor.init()
            except Exception as e:
                raise ProcessorResolutionError(
                    self.pipeline.processor_name,
                    f"Processor '{self.pipeline.processor_name}' failed to initialize: {e}",
                    cause=e,
                ) from e
        except ProcessorResolutionError as e:
            self.watch_state.state = PipelineState.FAILED
            e.with_context(pipeline=self.type)
            logger.error("coordinator.start.failed", **e.to_dict())
            raise

        self.processor = processor
        try:
            return await self.build()
        except Exception:
            self.watch_state.state = PipelineState.FAILED
            logger.error("coordinator.start.failed", pipeline=self.type, exc_info=True)
            raise

    async def watch(self) -> None:
        """Watch for changes and rebuild incrementally until ``stop()``.

        Requires a prior ``start()``.
        """
        if self.processor is None:
            raise RuntimeError(f"Pipeline '{self.type}' must be started before watching")

        self.watcher.start()
        self.watch_state.state = PipelineState.WATCHING
        poll_task = asyncio.create_task(self._poll_loop())
        try:
            await self._rebuild_loop()
        finally:
            self.watcher.stop()
            poll_task.cancel()
            await asyncio.gather(poll_task, return_exceptions=True)
            self.watch_state.state = PipelineState.STOPPED

    def stop(self) -> None:
        self._stopping = True
        self.watcher.stop()
        self._wakeup.set()

    def notify(self, events: list[ChangeEvent]) -> None:
        """Queue change events; they are coalesced into the next rebuild."""
        if not events:
            return
        self.watch_state.coalesce(events)
        self._wakeup.set()

    # ── Builds ───────────────────────────────────────────────────────

    async def build(self) -> BuildResult:
        """Full build: discover, process every file, commit a new index."""
        processor = self._require_processor()
        async with self._single_flight("full"):
            result = BuildResult(pipeline=self.type, kind="full")
            snapshot = await self.watcher.snapshot()
            files = sorted(snapshot)
            logger.info("coordinator.build.start", files=len(files), root=str(self.root_path))

            outcomes = await self._process_files(processor, files)
            upserts: dict[str, list[FileContent]] = {}
            for outcome in outcomes:
                if outcome.error is not None:
                    result.errors.append(FileError(outcome.file, outcome.error))
                elif outcome.records is not None:
                    upserts[outcome.file_id] = outcome.records

            patched, collisions = ContentIndex(self.type).patched(upserts)
            result.errors.extend(FileError(c.file, c) for c in collisions)
            result.processed = len(files)
            await self._commit(processor, patched, result)
            self.watch_state.rejected = {c.file for c in collisions}
            self.watcher.reset(snapshot)
        await self._after_commit(result)
        return result

    async def rebuild(self, events: list[ChangeEvent]) -> BuildResult:
        """Incremental build for a batch of change events.

        Calls that overlap a running build wait for it and then patch the
        index it committed.
        """
        processor = self._require_processor()
        if self.watch_state.in_flight:
            logger.debug("coordinator.rebuild.queued", pipeline=self.type, events=len(events))
        async with self._single_flight("incremental"):
            result = BuildResult(pipeline=self.type, kind="incremental")
            logger.info("coordinator.rebuild.start", events=len(events))
            removals: list[str] = []
            changed: list[str] = []
            deleted: set[str] = set()
            for event in sorted(events, key=lambda e: e.file):
                if event.kind == ChangeKind.DELETED:
                    deleted.add(event.file)
                    removals.append(self._file_id(event.file))
                else:
                    changed.append(event.file)
            retried = sorted(self.watch_state.rejected - deleted - set(changed))
            changed.extend(retried)

            upserts: dict[str, list[FileContent]] = {}
            for outcome in await self._process_files(processor, changed):
                if outcome.missing:
                    removals.append(outcome.file_id)
                elif outcome.error is not None:
                    result.errors.append(FileError(outcome.file, outcome.error))
                else:
                    upserts[outcome.file_id] = outcome.records or []

            patched, collisions = self.index.patched(upserts, removals)
            result.errors.extend(FileError(c.file, c) for c in collisions)
            result.processed = len(changed)
            result.removed = sum(1 for file_id in set(removals) if file_id in self.index)
            await self._commit(processor, patched, result)
            self.watch_state.rejected = {c.file for c in collisions}
        await self._after_commit(result)
        return result

    # ── Internals ────────────────────────────────────────────────────

    def _require_processor(self) -> ContentedPipeline:
        if self.processor is None:
            raise RuntimeError(f"Pipeline '{self.type}' has not been started")
        return self.processor

    def _resting_state(self) -> PipelineState:
        if self._stopping:
            return PipelineState.STOPPED
        return PipelineState.WATCHING if self.watcher.is_running else PipelineState.IDLE

    @asynccontextmanager
    async def _single_flight(self, kind: str) -> AsyncIterator[None]:
        """Hold the pipeline build lock from reading the index to committing."""
        async with self._build_lock, LogContext(pipeline=self.type):
            self.watch_state.in_flight = True
            self.watch_state.state = PipelineState.BUILDING if kind == "full" else PipelineState.REBUILDING
            try:
                yield
            finally:
                self.watch_state.in_flight = False
                self.watch_state.state = self._resting_state()

    async def _after_commit(self, result: BuildResult) -> None:
        if self.on_commit is not None:
            await self.on_commit(self, result)

    def _file_id(self, file: str) -> str:
        return compute_file_id(absolute_file_path(self.root_path, file))

    async def _process_files(self, processor: ContentedPipeline, files: list[str]) -> list[_FileOutcome]:
        async def handler(file: str) -> list[FileContent]:
            return await processor.process(self.root_path, file)

        batch = FileBatch(max_concurrency=self.settings.max_concurrency)
        for file in files:
            batch.add(file, handler)
        batch_result = await batch.run_all()

        outcomes = []
        for item in batch_result.items:
            outcome = _FileOutcome(file=item.file, file_id=self._file_id(item.file))
            if item.ok:
                outcome.records = item.result
            else:
                error = item.error
                if not isinstance(error, ContentedError):
                    error = ContentedError(f"Unexpected failure processing {item.file}: {error}", cause=error)
                error.with_context(pipeline=self.type, file=item.file, file_id=outcome.file_id)
                if isinstance(error, SourceIOError) and isinstance(error.cause, FileNotFoundError):
                    outcome.missing = True
                else:
                    outcome.error = error
                    logger.warning("coordinator.file.failed", **error.to_dict())
            outcomes.append(outcome)
        return outcomes

    async def _commit(self, processor: ContentedPipeline, patched: ContentIndex, result: BuildResult) -> None:
        """Sort the complete aggregate, persist atomically, then swap it in."""
        records = processor.sort(patched.records())
        await asyncio.to_thread(self.store.write, self.type, records)
        self.index = patched
        self.watch_state.builds += 1

        result.records = len(records)
        result.completed_at = datetime.now(UTC)
        event = "coordinator.build.complete" if result.kind == "full" else "coordinator.rebuild.complete"
        logger.info(
            event,
            records=result.records,
            processed=result.processed,
            removed=result.removed,
            errors=len(result.errors),
            duration_seconds=result.duration_seconds,
        )

    async def _poll_loop(self) -> None:
        async for events in self.watcher.changes():
            self.notify(events)

    async def _rebuild_loop(self) -> None:
        while not self._stopping:
            await self._wakeup.wait()
            if self._stopping:
                break
            if self.settings.debounce:
                await asyncio.sleep(self.settings.debounce)
            self._wakeup.clear()
            events = self.watch_state.drain()
            if not events:
                continue
            try:
                await self.rebuild(events)
            except Exception as e:
                # Nothing was committed; retry these files with the next change.
                self.watch_state.coalesce(events)
                logger.error("coordinator.rebuild.failed", pipeline=self.type, error=str(e), exc_info=True)
