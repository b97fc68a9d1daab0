"""In-memory content index for one pipeline.

Records are grouped by the id of the source file that produced them, in
the order files were first added. The index is never mutated in place:
``patched`` returns a new index, so a rebuild either commits a complete
new aggregate or leaves the previous one untouched.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, Sequence

from contented.core.errors import PathCollisionError
from contented.core.logging import get_logger
from contented.framework.models import FileContent

logger = get_logger(__name__)


class ContentIndex:
    """Aggregate of FileContent records keyed by source file id."""

    def __init__(self, type: str, entries: Mapping[str, Sequence[FileContent]] | None = None):
        self.type = type
        self._entries: dict[str, tuple[FileContent, ...]] = {
            file_id: tuple(records) for file_id, records in (entries or {}).items()
        }

    def __contains__(self, file_id: object) -> bool:
        return file_id in self._entries

    def __len__(self) -> int:
        return sum(len(records) for records in self._entries.values())

    def __iter__(self) -> Iterator[FileContent]:
        return iter(self.records())

    def get(self, file_id: str) -> tuple[FileContent, ...]:
        return self._entries.get(file_id, ())

    def file_ids(self) -> list[str]:
        return list(self._entries)

    def files(self) -> dict[str, str]:
        """Source file (relative) → file id, for every file with records."""
        return {records[0].file: file_id for file_id, records in self._entries.items() if records}

    def records(self) -> list[FileContent]:
        """All records, in file insertion order (pre-sort aggregate order)."""
        return [record for records in self._entries.values() for record in records]

    def patched(
        self,
        upserts: Mapping[str, Sequence[FileContent]],
        removals: Iterable[str] = (),
    ) -> tuple[ContentIndex, list[PathCollisionError]]:
        """
        Return a new index with ``removals`` dropped and ``upserts`` applied.

        Upserts replace by file id; an empty record list removes the file.
        An upsert that would reuse a canonical path owned by another file
        is rejected with a PathCollisionError and that file keeps its
        previous records (if any). Upserts are considered in mapping order,
        so the caller's ordering decides which of two colliding new files
        wins.
        """
        entries = dict(self._entries)
        for file_id in removals:
            entries.pop(file_id, None)

        pending = {file_id: tuple(records) for file_id, records in upserts.items()}
        rejected: dict[str, PathCollisionError] = {}

        while True:
            owners: dict[str, tuple[str, str]] = {}
            for file_id, records in entries.items():
                if file_id in pending and file_id not in rejected:
                    continue
                for record in records:
                    owners[record.path] = (file_id, record.file)

            newly_rejected = False
            for file_id, records in pending.items():
                if file_id in rejected:
                    continue
                clash = next(
                    (r for r in records if r.path in owners and owners[r.path][0] != file_id),
                    None,
                )
                if clash is not None:
                    rejected[file_id] = PathCollisionError(
                        clash.path, clash.file, owners[clash.path][1]
                    ).with_context(pipeline=self.type, file_id=file_id)
                    newly_rejected = True
                    break
                for record in records:
                    owners[record.path] = (file_id, record.file)
            if not newly_rejected:
                break

        for file_id, records in pending.items():
            if file_id in rejected:
                continue
            if records:
                entries[file_id] = records
            else:
                entries.pop(file_id, None)

        for error in rejected.values():
            logger.warning("content_index.path_collision", **error.to_dict())

        return ContentIndex(self.type, entries), list(rejected.values())
