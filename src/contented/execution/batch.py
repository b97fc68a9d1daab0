"""File batch: bounded asyncio fan-out over source files.

A build stats, reads and parses every matching file. That work is I/O-bound,
so files share one event loop and a semaphore caps how many are open at once.
Items come back in the order they were added, whatever order they finish
in, so aggregation downstream is deterministic.

::

    FileBatch(max_concurrency=16)
      .add(file, handler)      handler(file) is awaited at run time
      .run_all()  ──────────►  FileBatchResult
                                 .items      one FileBatchItem per file
                                 .succeeded / .failed / .to_dict()

Example::

    batch = FileBatch(max_concurrency=16)
    for file in files:
        batch.add(file, handler)
    result = await batch.run_all()
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from contented.core.logging import get_logger

logger = get_logger(__name__)

Handler = Callable[[str], Awaitable[Any]]


class ItemStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class FileBatchItem:
    """One source file and what happened to it."""

    file: str
    handler: Handler
    status: ItemStatus = ItemStatus.PENDING
    result: Any = None
    error: Exception | None = None
    elapsed: float | None = None

    @property
    def ok(self) -> bool:
        return self.status == ItemStatus.COMPLETED


@dataclass
class FileBatchResult:
    batch_id: str
    items: list[FileBatchItem] = field(default_factory=list)
    elapsed: float = 0.0

    @property
    def succeeded(self) -> int:
        return sum(1 for item in self.items if item.status == ItemStatus.COMPLETED)

    @property
    def failed(self) -> int:
        return sum(1 for item in self.items if item.status == ItemStatus.FAILED)

    @property
    def total(self) -> int:
        return len(self.items)

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "elapsed": self.elapsed,
            "items": [
                {
                    "file": item.file,
                    "status": item.status.value,
                    "elapsed": item.elapsed,
                    "error": str(item.error) if item.error is not None else None,
                }
                for item in self.items
            ],
        }


class FileBatch:
    """Runs one handler per file with at most ``max_concurrency`` in flight."""

    def __init__(self, max_concurrency: int = 16) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self.max_concurrency = max_concurrency
        self.batch_id = uuid.uuid4().hex[:12]
        self._items: list[FileBatchItem] = []

    def add(self, file: str, handler: Handler) -> FileBatch:
        self._items.append(FileBatchItem(file=file, handler=handler))
        return self

    @property
    def item_count(self) -> int:
        return len(self._items)

    async def run_all(self) -> FileBatchResult:
        """Await every handler; an exception fails only its own item.

        Cancelling the batch cancels every in-flight handler.
        """
        gate = asyncio.Semaphore(self.max_concurrency)
        began = time.perf_counter()

        async def run(item: FileBatchItem) -> None:
            async with gate:
                item.status = ItemStatus.RUNNING
                start = time.perf_counter()
                try:
                    item.result = await item.handler(item.file)
                except Exception as e:
                    item.error = e
                    item.status = ItemStatus.FAILED
                else:
                    item.status = ItemStatus.COMPLETED
                finally:
                    item.elapsed = time.perf_counter() - start

        await asyncio.gather(*(run(item) for item in self._items))

        result = FileBatchResult(
            batch_id=self.batch_id,
            items=list(self._items),
            elapsed=time.perf_counter() - began,
        )
        logger.debug(
            "file_batch.complete",
            batch_id=self.batch_id,
            files=result.total,
            failed=result.failed,
            elapsed=round(result.elapsed, 4),
        )
        return result
