"""Pipeline declarations and the per-file processing engine.

Manifesto:
    The engine never interprets file content. It builds the identity of a
    file, hands the file to a processor, and then applies the same three
    steps to whatever comes back: field schema, transform hook, path check.
    Output order is decided later by the pipeline comparator, never here.

Tags:
    contented, framework, pipeline, processor, engine
"""

from __future__ import annotations

import asyncio
import inspect
import os
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from functools import cmp_to_key
from pathlib import Path
from types import MappingProxyType
from typing import Any, TypeVar, Union

from contented.core.errors import (
    ContentedError,
    ContentParseError,
    PathCollisionError,
    SortError,
    SourceIOError,
    TransformError,
)
from contented.core.hashing import absolute_file_path, compute_file_id
from contented.core.logging import get_logger
from contented.core.paths import DEFAULT_STRIP_PATTERNS, PathResolver, StripPattern
from contented.framework.fields import FieldSpec, merge_schema, resolve_fields
from contented.framework.models import FileContent, FileIndex

logger = get_logger(__name__)

Transform = Callable[[FileContent], Union[FileContent, Awaitable[FileContent]]]
Comparator = Callable[[Any, Any], int]
ProcessorFactory = Callable[..., "ContentedPipeline"]
R = TypeVar("R", bound=FileIndex)


@dataclass(frozen=True)
class PipelineConfig:
    """One declared pipeline. Immutable once loaded.

    Attributes:
        type: Pipeline type name; also the output namespace
        pattern: Glob pattern(s) relative to ``root``
        processor: Built-in/plugin identifier, or a processor class/factory
        fields: Field name → FieldSpec (defaults are merged in by the engine)
        transform: Pure hook ``FileContent -> FileContent`` (may be async)
        sort: Comparator ``(a, b) -> int`` over records
        root: Pipeline root directory, relative to the config root
        strip_patterns: Extra ordering-marker patterns, tried before the
            built-in ones
    """

    type: str
    pattern: str | Sequence[str]
    processor: str | ProcessorFactory
    fields: Mapping[str, FieldSpec] = field(default_factory=dict)
    transform: Transform | None = None
    sort: Comparator | None = None
    root: str = "."
    strip_patterns: Sequence[StripPattern] = ()

    def __post_init__(self):
        object.__setattr__(self, "strip_patterns", tuple(self.strip_patterns))
        patterns = (self.pattern,) if isinstance(self.pattern, str) else tuple(self.pattern)
        object.__setattr__(self, "pattern", patterns)
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))

    @property
    def patterns(self) -> tuple[str, ...]:
        return self.pattern  # type: ignore[return-value]

    @property
    def processor_name(self) -> str:
        if isinstance(self.processor, str):
            return self.processor
        return getattr(self.processor, "__name__", repr(self.processor))

    def root_path(self, base: str | Path) -> Path:
        """Absolute pipeline root for a config base directory."""
        return (Path(base) / self.root).resolve()


class ContentedPipeline(ABC):
    """
    Base class every processor implements (built-in or plugin).

    Constructed with ``(root_path, pipeline)``. Subclasses implement
    ``process_file_index`` and may override ``init`` for async setup. The
    records a subclass returns carry *raw* field values; ``process`` resolves
    them against the pipeline schema.
    """

    def __init__(
        self,
        root_path: str | Path,
        pipeline: PipelineConfig,
        resolver: PathResolver | None = None,
    ):
        self.root_path = Path(root_path)
        self.pipeline = pipeline
        self.fields: dict[str, FieldSpec] = merge_schema(pipeline.fields)
        self.resolver = resolver or PathResolver((*pipeline.strip_patterns, *DEFAULT_STRIP_PATTERNS))

    async def init(self) -> None:
        """Optional async setup, awaited once before any file is processed."""

    @property
    def type(self) -> str:
        return self.pipeline.type

    @abstractmethod
    async def process_file_index(
        self, file_index: FileIndex, root_path: Path, file: str
    ) -> list[FileContent] | None:
        """Extract zero, one or many records for ``file``.

        Returning ``None`` or ``[]`` skips the file.
        """

    async def process(self, root_path: str | Path, file: str) -> list[FileContent]:
        """
        Run one file through the pipeline.

        Returns:
            Records in the order the processor produced them.

        Raises:
            ContentedError: any file-scoped failure (IO, parse, validation,
                transform, duplicate path within the file).
        """
        root_path = Path(root_path)
        file = Path(file).as_posix()
        file_index = await self.new_file_index(root_path, file)

        try:
            contents = await self.process_file_index(file_index, root_path, file)
        except ContentedError:
            raise
        except OSError as e:
            raise SourceIOError(file, f"Unable to read {file}: {e}", cause=e) from e
        except Exception as e:
            raise ContentParseError(file, f"Processor failed on {file}: {e}", cause=e) from e

        if not contents:
            logger.debug("pipeline.file.skipped", pipeline=self.type, file=file)
            return []

        records = [self.apply_fields(content, file) for content in contents]
        if self.pipeline.transform is not None:
            records = [await self.apply_transform(record, file) for record in records]

        self.check_paths(records, file)
        return records

    def apply_fields(self, content: FileContent, file: str) -> FileContent:
        return content.copy(fields=resolve_fields(self.fields, content.fields, file))

    async def apply_transform(self, record: FileContent, file: str) -> FileContent:
        """Apply the transform hook; only its return value is used."""
        try:
            result = self.pipeline.transform(record.copy())
            if inspect.isawaitable(result):
                result = await result
        except ContentedError:
            raise
        except Exception as e:
            raise TransformError(file, f"Transform failed for {file}: {e}", cause=e) from e

        if not isinstance(result, FileContent):
            raise TransformError(file, f"Transform for {file} returned {type(result).__name__}")
        if result.id != record.id or result.type != record.type:
            raise TransformError(file, f"Transform for {file} changed the record identity")
        if not result.path.startswith("/"):
            raise TransformError(file, f"Transform for {file} produced path {result.path!r}")
        return result

    def check_paths(self, records: Sequence[FileContent], file: str) -> None:
        seen: set[str] = set()
        for record in records:
            if record.path in seen:
                raise PathCollisionError(record.path, file, file)
            seen.add(record.path)

    def sort(self, files: Sequence[R]) -> list[R]:
        """Order records by the pipeline comparator (stable), else keep order."""
        if self.pipeline.sort is None:
            return list(files)
        try:
            return sorted(files, key=cmp_to_key(self.pipeline.sort))
        except Exception as e:
            raise SortError(self.type, f"Pipeline '{self.type}' comparator failed: {e}", cause=e) from e

    async def new_file_index(self, root_path: str | Path, file: str) -> FileIndex:
        file_path = absolute_file_path(root_path, file)
        sections, path = self.resolver.compute(file)
        return FileIndex(
            id=compute_file_id(file_path),
            type=self.type,
            path=path,
            file=file,
            modified_date=await self.compute_modified_date(file_path, file),
            sections=sections,
            fields={},
        )

    def get_sanitized_path(self, file: str) -> str:
        """Canonical path of ``file`` without the leading slash."""
        return self.resolver.sanitized_path(Path(file).as_posix())

    async def compute_modified_date(self, file_path: str, file: str) -> int:
        """Last-modified time in epoch milliseconds."""
        try:
            stats = await asyncio.to_thread(os.stat, file_path)
        except OSError as e:
            raise SourceIOError(file, f"Unable to stat {file}: {e}", cause=e) from e
        return stats.st_mtime_ns // 1_000_000

    async def read_text(self, root_path: str | Path, file: str) -> str:
        """Read a source file as UTF-8; failures are SourceIOError."""
        file_path = absolute_file_path(root_path, file)
        try:
            return await asyncio.to_thread(Path(file_path).read_text, encoding="utf-8")
        except OSError as e:
            raise SourceIOError(file, f"Unable to read {file}: {e}", cause=e) from e
        except UnicodeDecodeError as e:
            raise ContentParseError(file, f"{file} is not valid UTF-8", cause=e) from e
